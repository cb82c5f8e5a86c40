"""Verification of signify-signed lists of release file hashes."""

from __future__ import annotations

import base64
import binascii

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .versions import RELEASE_PUBLIC_KEY_BASE64

HASH_SIZE = 32

_KEY_HEADER_SIZE = 10
_PUBLIC_KEY_SIZE = 32
_SIGNATURE_SIZE = 64
_COMMENT_PREFIX = b"untrusted comment: "


class SignifyError(ValueError):
    """Raised when a signed file list cannot be trusted or parsed."""


def _decode_base64(text: bytes | str) -> bytes:
    if isinstance(text, str):
        text = text.encode("ascii", errors="replace")
    # Line breaks inside the encoded text are ignored, as by the signing tool.
    cleaned = text.replace(b"\r", b"").replace(b"\n", b"")
    return base64.b64decode(cleaned, validate=True)


def _load_public_key(public_key_base64: str) -> tuple[bytes, Ed25519PublicKey]:
    try:
        key_bytes = _decode_base64(public_key_base64)
    except (binascii.Error, ValueError):
        raise SignifyError("Invalid public key") from None
    if len(key_bytes) != _PUBLIC_KEY_SIZE + _KEY_HEADER_SIZE or key_bytes[:2] != b"Ed":
        raise SignifyError("Invalid public key")
    public_key = Ed25519PublicKey.from_public_bytes(key_bytes[_KEY_HEADER_SIZE:])
    return key_bytes[:_KEY_HEADER_SIZE], public_key


def _parse_hash_lines(body: bytes) -> dict[str, bytes]:
    file_lines = body.decode("utf-8", errors="surrogateescape").split("\n")
    last = len(file_lines) - 1
    hashes: dict[str, bytes] = {}
    for index, line in enumerate(file_lines):
        if not line and index == last:
            break
        first, separator, second = line.partition("  ")
        if not separator:
            raise SignifyError("File hash line has too few components")
        try:
            digest = binascii.unhexlify(first)
        except (binascii.Error, ValueError):
            digest = b""
        if len(digest) != HASH_SIZE:
            raise SignifyError("File hash is invalid base64 or incorrect number of bytes")
        hashes[second] = digest
    if not hashes:
        raise SignifyError("No file hashes found in signed input")
    return hashes


def read_file_list(
    data: bytes, public_key_base64: str = RELEASE_PUBLIC_KEY_BASE64
) -> dict[str, bytes]:
    """Verify a signify-signed hash list and map each file name to its hash."""
    key_header, public_key = _load_public_key(public_key_base64)
    lines = bytes(data).split(b"\n", 2)
    if len(lines) != 3:
        raise SignifyError("Signature input has too few lines")
    comment, signature_line, body = lines
    if not comment.startswith(_COMMENT_PREFIX):
        raise SignifyError("Signature input is missing untrusted comment")
    try:
        signature = _decode_base64(signature_line)
    except (binascii.Error, ValueError):
        raise SignifyError("Signature input is not valid base64") from None
    if (
        len(signature) != _SIGNATURE_SIZE + _KEY_HEADER_SIZE
        or signature[:_KEY_HEADER_SIZE] != key_header
    ):
        raise SignifyError("Signature input bytes are incorrect length, type, or keyid")
    try:
        public_key.verify(signature[_KEY_HEADER_SIZE:], body)
    except InvalidSignature:
        raise SignifyError("Signature is invalid") from None
    return _parse_hash_lines(body)