"""
Unit tests for mitthi.errors and mitthi.log modules.

Created by orpheus497
"""

import logging

from mitthi.errors import (
    AuthenticationError,
    ConfigError,
    CryptoError,
    EncodingError,
    ErrorCode,
    KeyDerivationError,
    MitthiError,
    RoomCodeError,
)
from mitthi.log import setup_logging


class TestErrorTaxonomy:
    """Test error classes and codes."""

    def test_hierarchy(self):
        """Test every crypto failure is a CryptoError and a MitthiError."""
        for cls in (KeyDerivationError, AuthenticationError, EncodingError, RoomCodeError):
            assert issubclass(cls, CryptoError)
            assert issubclass(cls, MitthiError)
        assert not issubclass(ConfigError, CryptoError)

    def test_defaults(self):
        """Test default codes and generic messages."""
        assert AuthenticationError().code is ErrorCode.E102_DECRYPTION_FAILED
        assert AuthenticationError().message == "Cannot decrypt"
        assert EncodingError().message == "Cannot decode"
        assert RoomCodeError().code is ErrorCode.E106_VERIFICATION_FAILED
        assert KeyDerivationError().code is ErrorCode.E108_KEY_DERIVATION_FAILED

    def test_to_dict(self):
        """Test errors serialize with code, message and details."""
        error = EncodingError(ErrorCode.E601_FILE_TOO_LARGE, "Payload too large", {"max_size": 10})

        assert error.to_dict() == {
            "code": "E601",
            "message": "Payload too large",
            "details": {"max_size": 10},
        }
        assert str(error) == "[E601] Payload too large"


class TestLogging:
    """Test logger configuration."""

    def test_file_logging(self, temp_dir):
        """Test log records reach the rotating log file."""
        log_file = temp_dir / "logs" / "mitthi.log"
        logger = setup_logging("DEBUG", log_file=log_file, console=False)

        logging.getLogger("mitthi.room").info("Joined room 1234abcd")
        for handler in logger.handlers:
            handler.flush()

        assert "Joined room 1234abcd" in log_file.read_text()
        assert logger.propagate is False

    def test_no_handlers(self):
        """Test disabling all outputs leaves a NullHandler."""
        logger = setup_logging("WARNING", console=False)

        assert logger.level == logging.WARNING
        assert [type(h) for h in logger.handlers] == [logging.NullHandler]

    def test_reconfigure_replaces_handlers(self):
        """Test calling setup_logging twice does not duplicate handlers."""
        setup_logging("INFO")
        logger = setup_logging("INFO")

        assert len(logger.handlers) == 1
