"""
Mitthi - Base64 helpers for the wire format.

Author: orpheus497
Version: 1.0.0

All binary fields on the wire are standard (not URL-safe) base64 text.
Decoding is strict: characters outside the alphabet and bad padding raise
EncodingError.
"""

import base64
import binascii
from typing import Any

from .errors import EncodingError, ErrorCode


def b64encode(data: bytes) -> str:
    """Encode bytes as standard base64 text."""
    return base64.b64encode(data).decode("ascii")


def b64decode(value: Any, field: str = "value") -> bytes:
    """Decode standard base64 text.

    Args:
        value: Base64 text (str or ASCII bytes)
        field: Field name used in the error details

    Returns:
        Decoded bytes

    Raises:
        EncodingError: If the value is not valid base64
    """
    if isinstance(value, str):
        try:
            value = value.encode("ascii")
        except UnicodeEncodeError as e:
            raise EncodingError(
                ErrorCode.E206_INVALID_MESSAGE, "Cannot decode", {"field": field}
            ) from e
    if not isinstance(value, (bytes, bytearray)):
        raise EncodingError(ErrorCode.E206_INVALID_MESSAGE, "Cannot decode", {"field": field})

    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncodingError(
            ErrorCode.E206_INVALID_MESSAGE, "Cannot decode", {"field": field}
        ) from e
