"""
JSON parsing utilities using orjson.
"""

from typing import Any

import orjson


def loads(s: str | bytes) -> Any:
    """
    Deserialize JSON string/bytes to Python object using orjson.

    Raises:
        orjson.JSONDecodeError (a ValueError subclass) on malformed input.
    """
    if isinstance(s, str):
        s = s.encode("utf-8")
    return orjson.loads(s)
