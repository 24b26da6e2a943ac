"""
Mitthi - Global Constants and Configuration Values

This module defines all constants used throughout the Mitthi package.
All magic numbers and configuration defaults are centralized here.

Author: orpheus497
Version: 1.0.0
"""

# Version Information
VERSION = "1.0.0"
APP_NAME = "Mitthi"
AUTHOR = "orpheus497"

# Cryptography Constants
KEY_SIZE = 32  # 256 bits for AES-256-GCM
NONCE_SIZE = 12  # 96 bits for AES-GCM
TAG_SIZE = 16  # 128-bit GCM authentication tag
SALT_SIZE = 16  # 128 bits
VERIFIER_SIZE = 32  # SHA-256 digest
# Versioned: raising it requires a new room format, never lower it
PBKDF2_ITERATIONS = 200000
VERIFIER_HKDF_INFO = b"mitthi-room-verifier-v1"
ROOM_ID_SALT = b"mitthi-room-id-v1"
ROOM_ID_LENGTH = 32  # hex characters

# Stream Cipher Constants
STREAM_CHUNK_SIZE = 2 * 1024 * 1024  # 2 MiB chunks
STREAM_INDEX_SIZE = 8  # big-endian chunk counter folded into the nonce
STREAM_FINAL_FLAG = b"\x01"
STREAM_NOT_FINAL_FLAG = b"\x00"
STREAM_QUEUE_SIZE = 2  # encrypted chunks buffered between producer and consumer
MIN_STREAM_CHUNK_SIZE = 1024
MAX_STREAM_CHUNK_SIZE = 64 * 1024 * 1024  # 64 MiB

# Message Limits
MAX_TEXT_MESSAGE_SIZE = 100 * 1024  # 100 KB
MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MB
MAX_METADATA_FIELD_SIZE = 1024

# File Paths
DEFAULT_DATA_DIR = "~/.mitthi"
CONFIG_FILENAME = "config.toml"
LOGS_DIR = "logs"
LOG_FILENAME = "mitthi.log"
PARTIAL_SUFFIX = ".part"

# Logging Configuration
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
LOG_BACKUP_COUNT = 5

# Environment
ENV_PREFIX = "MITTHI"
ROOM_CODE_ENV = "MITTHI_ROOM_CODE"
