"""
Mitthi - Command-line entry point.

Created by orpheus497

Room management and file encryption from the shell. The room code is read
interactively, or from the MITTHI_ROOM_CODE environment variable with
--room-code-env; it is never accepted as a command-line argument.
"""

import argparse
import getpass
import json
import os
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .config import Config
from .constants import DEFAULT_DATA_DIR, LOG_FILENAME, LOGS_DIR, ROOM_CODE_ENV
from .errors import AuthenticationError, ConfigError, EncodingError, KeyDerivationError, RoomCodeError
from .log import setup_logging
from .room import RoomMetadata, RoomSession
from .stream import StreamHeader, decrypt_file, encrypt_file
from .verifier import verify

console = Console()
err_console = Console(stderr=True)


def _read_room_code(args: argparse.Namespace) -> str:
    if args.room_code_env:
        room_code = os.environ.get(ROOM_CODE_ENV, "")
        if not room_code:
            raise KeyDerivationError(message=f"{ROOM_CODE_ENV} is not set")
        return room_code
    return getpass.getpass("Room code: ")


def _load_json(path: Path) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise EncodingError(message=f"Cannot read {path}: {e}") from e


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.write("\n")


def _header_path(args: argparse.Namespace, blob: Path) -> Path:
    if args.header:
        return Path(args.header)
    return blob.with_name(blob.name + ".json")


def cmd_create_room(args: argparse.Namespace, config: Config) -> int:
    session, metadata = RoomSession.create(_read_room_code(args), config)

    if args.output:
        _write_json(Path(args.output), metadata.to_dict())

    table = Table(title="Room created")
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Room ID", session.room_id)
    for field, value in metadata.to_dict().items():
        table.add_row(field, value)
    console.print(table)
    return 0


def cmd_verify(args: argparse.Namespace, config: Config) -> int:
    metadata = RoomMetadata.from_dict(_load_json(Path(args.metadata)))
    if metadata.verifier_hash is None:
        err_console.print("Room metadata has no verifier")
        return 1

    if verify(_read_room_code(args), metadata.salt, metadata.verifier_hash):
        console.print("[green]Room code is valid[/green]")
        return 0
    console.print("[red]Invalid room code[/red]")
    return 1


def cmd_encrypt_file(args: argparse.Namespace, config: Config) -> int:
    source = Path(args.input)
    output = Path(args.output)
    if not source.is_file():
        err_console.print(f"File not found: {source}")
        return 1

    session = RoomSession.join(_read_room_code(args), _load_json(Path(args.metadata)), config)
    header = encrypt_file(
        source,
        output,
        session.key,
        chunk_size=session.chunk_size,
        max_size=session.max_file_size,
    )
    header_path = _header_path(args, output)
    _write_json(header_path, header.to_dict())

    console.print(f"Encrypted {source.name} -> {output} ({header.chunk_count} chunks)")
    console.print(f"Stream header written to {header_path}")
    return 0


def cmd_decrypt_file(args: argparse.Namespace, config: Config) -> int:
    source = Path(args.input)
    output = Path(args.output)
    if not source.is_file():
        err_console.print(f"File not found: {source}")
        return 1

    session = RoomSession.join(_read_room_code(args), _load_json(Path(args.metadata)), config)
    header = StreamHeader.from_dict(_load_json(_header_path(args, source)))
    written = decrypt_file(source, output, header, session.key)

    console.print(f"Decrypted {source.name} -> {output} ({written} bytes)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mitthi",
        description="Mitthi - end-to-end encryption for shared-code chat rooms",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mitthi create-room -o room.json
  mitthi verify room.json
  mitthi encrypt-file photo.jpg photo.enc room.json
  mitthi decrypt-file photo.enc photo.jpg room.json

Created by orpheus497
        """,
    )

    parser.add_argument("--version", action="version", version=f"Mitthi {__version__}")
    parser.add_argument("--config", type=str, default=None, help="Path to config.toml")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--room-code-env",
        action="store_true",
        help=f"Read the room code from ${ROOM_CODE_ENV} instead of prompting",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create-room", help="Create a room and print its metadata")
    create.add_argument("-o", "--output", help="Write room metadata JSON to this file")
    create.set_defaults(func=cmd_create_room)

    check = subparsers.add_parser("verify", help="Check a room code against room metadata")
    check.add_argument("metadata", help="Room metadata JSON file")
    check.set_defaults(func=cmd_verify)

    enc = subparsers.add_parser("encrypt-file", help="Encrypt a file for a room")
    enc.add_argument("input", help="Plaintext file")
    enc.add_argument("output", help="Ciphertext blob to write")
    enc.add_argument("metadata", help="Room metadata JSON file")
    enc.add_argument("--header", help="Stream header JSON path (default: OUTPUT.json)")
    enc.set_defaults(func=cmd_encrypt_file)

    dec = subparsers.add_parser("decrypt-file", help="Decrypt a room file")
    dec.add_argument("input", help="Ciphertext blob")
    dec.add_argument("output", help="Plaintext file to write")
    dec.add_argument("metadata", help="Room metadata JSON file")
    dec.add_argument("--header", help="Stream header JSON path (default: INPUT.json)")
    dec.set_defaults(func=cmd_decrypt_file)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the mitthi command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config(Path(args.config) if args.config else None)
    except ConfigError as e:
        err_console.print(f"Configuration error: {e.message}")
        return 2

    log_file = None
    if config.get("logging", "file_logging"):
        log_file = Path(DEFAULT_DATA_DIR).expanduser() / LOGS_DIR / LOG_FILENAME
    setup_logging(
        "DEBUG" if args.debug else config.get("logging", "level"),
        log_file=log_file,
        console=config.get("logging", "console_logging"),
    )

    try:
        return args.func(args, config)
    except RoomCodeError:
        err_console.print("Invalid room code. Please check and try again.")
    except KeyDerivationError as e:
        err_console.print(e.message)
    except AuthenticationError:
        err_console.print("Failed to decrypt")
    except EncodingError as e:
        # Decode failures must look the same as authentication failures
        err_console.print("Failed to decrypt" if args.command == "decrypt-file" else e.message)
    except KeyboardInterrupt:
        err_console.print("Cancelled")
    return 1


if __name__ == "__main__":
    sys.exit(main())
