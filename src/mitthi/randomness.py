"""
Mitthi - Random byte sources for nonces and salts.

Author: orpheus497
Version: 1.0.0

Every operation that draws a nonce or a salt takes an optional
``random_source`` so callers can substitute their own source. The default
is the operating system CSPRNG via ``secrets``, which is safe to share
between threads and concurrent tasks.
"""

import secrets
from typing import Optional


class RandomSource:
    """Interface for a source of random bytes."""

    def token_bytes(self, n: int) -> bytes:
        """Return ``n`` random bytes."""
        raise NotImplementedError


class SystemRandomSource(RandomSource):
    """Cryptographically secure source backed by the OS CSPRNG."""

    def token_bytes(self, n: int) -> bytes:
        return secrets.token_bytes(n)

    def __repr__(self) -> str:
        return "SystemRandomSource()"


_SYSTEM_SOURCE = SystemRandomSource()


def default_random_source() -> RandomSource:
    """Get the process-wide system random source."""
    return _SYSTEM_SOURCE


def resolve(random_source: Optional[RandomSource]) -> RandomSource:
    """Return ``random_source`` or the system source when it is None."""
    return random_source if random_source is not None else _SYSTEM_SOURCE
