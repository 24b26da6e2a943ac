"""
Mitthi - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
the Mitthi package. Each error has a unique code for logging and debugging.

Decryption failures deliberately carry generic messages: callers treat
AuthenticationError and EncodingError the same way, and neither tells an
observer which check failed.

Author: orpheus497
Version: 1.0.0
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all Mitthi error codes."""

    # General Errors (E001-E099)
    E002_INVALID_ARGUMENT = "E002"

    # Crypto Errors (E100-E199)
    E100_CRYPTO_ERROR = "E100"
    E102_DECRYPTION_FAILED = "E102"
    E106_VERIFICATION_FAILED = "E106"
    E108_KEY_DERIVATION_FAILED = "E108"

    # Encoding Errors (E200-E299)
    E206_INVALID_MESSAGE = "E206"
    E207_MESSAGE_TOO_LARGE = "E207"

    # Stream Errors (E600-E699)
    E601_FILE_TOO_LARGE = "E601"
    E606_INVALID_CHUNK = "E606"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E702_CONFIG_SAVE_FAILED = "E702"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"


class MitthiError(Exception):
    """Base exception class for all Mitthi errors.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize a Mitthi error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            details: Additional error context (optional)
        """
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization.

        Returns:
            Dictionary containing error information
        """
        return {"code": self.code.value, "message": self.message, "details": self.details}


class CryptoError(MitthiError):
    """Exception raised for cryptographic operation failures."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E100_CRYPTO_ERROR,
        message: str = "Cryptographic operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class KeyDerivationError(CryptoError):
    """Raised for a malformed room code or salt.

    The caller must re-prompt for input; derivation is never retried
    automatically.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E108_KEY_DERIVATION_FAILED,
        message: str = "Key derivation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class AuthenticationError(CryptoError):
    """Raised when an AEAD tag does not verify on an envelope or chunk."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E102_DECRYPTION_FAILED,
        message: str = "Cannot decrypt",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class EncodingError(CryptoError):
    """Raised for malformed base64, framing or size limits on input."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E206_INVALID_MESSAGE,
        message: str = "Cannot decode",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class RoomCodeError(CryptoError):
    """Raised by the join flow when the room code does not match the verifier."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E106_VERIFICATION_FAILED,
        message: str = "Invalid room code",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ConfigError(MitthiError):
    """Exception raised for configuration failures.

    This includes loading, parsing, and validating configuration files.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
