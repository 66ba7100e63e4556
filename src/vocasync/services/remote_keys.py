"""Reversible escaping of progress keys for remote key namespaces.

Some remote stores reject keys containing ``. # $ / [ ]`` or control
characters. Those characters, the ``|`` of the progress key separator and
``%`` itself are written as ``%XX``. Because ``%`` is always escaped, every
``%XX`` in an encoded key came from this transform, so decoding is exact.
"""
import re
from typing import Any, Dict

_ESCAPED = set("%.#$/[]|")
_ESCAPE_SEQUENCE = re.compile(r"%([0-9A-F]{2})")


def _needs_escape(char: str) -> bool:
    return char in _ESCAPED or ord(char) < 0x20 or ord(char) == 0x7F


def encode_key(key: str) -> str:
    """Escape a progress key for use as a remote key."""
    return "".join(f"%{ord(char):02X}" if _needs_escape(char) else char for char in key)


def decode_key(encoded: str) -> str:
    """Reverse :func:`encode_key`."""
    return _ESCAPE_SEQUENCE.sub(lambda match: chr(int(match.group(1), 16)), encoded)


def encode_progress_map(progress: Dict[str, Any]) -> Dict[str, Any]:
    """Escape every key of a JSON progress map."""
    return {encode_key(key): value for key, value in progress.items()}


def decode_progress_map(progress: Any) -> Dict[str, Any]:
    """Unescape every key of a remote progress map; non-maps decode to empty."""
    if not isinstance(progress, dict):
        return {}
    return {decode_key(key): value for key, value in progress.items()}
