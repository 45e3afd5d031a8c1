"""Proxy secrets: a fake-TLS marker byte, a 16-byte key and a fronting hostname."""

from __future__ import annotations

import base64
import binascii
import re
import secrets as _random
from dataclasses import dataclass

SECRET_KEY_LENGTH = 16
SECRET_FAKE_TLS_FIRST_BYTE = 0xEE

_URLSAFE_BASE64 = re.compile(r"[A-Za-z0-9_-]*")


class SecretError(ValueError):
    """Raised when a secret cannot be parsed or built."""


@dataclass(frozen=True)
class Secret:
    """A serialisable proxy secret.

    The serialised form is ``0xee`` followed by the key and then the
    hostname bytes; it can be written as hex or as unpadded URL-safe base64.
    """

    key: bytes = bytes(SECRET_KEY_LENGTH)
    host: str = ""

    def __post_init__(self) -> None:
        if len(self.key) != SECRET_KEY_LENGTH:
            raise SecretError(
                f"key must be {SECRET_KEY_LENGTH} bytes long, got {len(self.key)}"
            )
        object.__setattr__(self, "key", bytes(self.key))

    def is_valid(self) -> bool:
        """Return True if the secret has a non-zero key and a hostname."""
        return self.key != bytes(SECRET_KEY_LENGTH) and self.host != ""

    def to_base64(self) -> str:
        """Return the unpadded URL-safe base64 form."""
        return base64.urlsafe_b64encode(self._to_bytes()).decode("ascii").rstrip("=")

    def to_hex(self) -> str:
        """Return the hex form (an 'ee' secret)."""
        return self._to_bytes().hex()

    def to_text(self) -> str:
        """Return the text form used for serialisation, or '' if invalid."""
        return self.to_base64() if self.is_valid() else ""

    def __str__(self) -> str:
        return self.to_base64()

    def _to_bytes(self) -> bytes:
        return (
            bytes([SECRET_FAKE_TLS_FIRST_BYTE])
            + self.key
            + self.host.encode("utf-8", "surrogateescape")
        )


def _decode_hex(text: str) -> bytes | None:
    try:
        return binascii.unhexlify(text.encode("ascii"))
    except (UnicodeEncodeError, binascii.Error, ValueError):
        return None


def _decode_base64(text: str) -> bytes | None:
    if not _URLSAFE_BASE64.fullmatch(text) or len(text) % 4 == 1:
        return None
    try:
        return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError):
        return None


def parse_secret(text: str | bytes) -> Secret:
    """Parse a secret from its hex or base64 form."""
    if isinstance(text, (bytes, bytearray)):
        text = bytes(text).decode("utf-8", "surrogateescape")

    if text == "":
        raise SecretError("secret is empty")

    decoded = _decode_hex(text)
    if decoded is None:
        decoded = _decode_base64(text)
    if decoded is None:
        raise SecretError("incorrect secret format")

    if len(decoded) < 2:
        raise SecretError(f"secret is truncated, length={len(decoded)}")

    if decoded[0] != SECRET_FAKE_TLS_FIRST_BYTE:
        raise SecretError(f"incorrect first byte of secret: {decoded[0]:#x}")

    decoded = decoded[1:]
    if len(decoded) < SECRET_KEY_LENGTH:
        raise SecretError(f"secret has incorrect length {len(decoded)}")

    host = decoded[SECRET_KEY_LENGTH:].decode("utf-8", "surrogateescape")
    if host == "":
        raise SecretError(f"hostname cannot be empty: {text}")

    return Secret(key=decoded[:SECRET_KEY_LENGTH], host=host)


def generate_secret(hostname: str) -> Secret:
    """Make a new secret with a random key for the given hostname."""
    return Secret(key=_random.token_bytes(SECRET_KEY_LENGTH), host=hostname)