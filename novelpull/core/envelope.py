"""Encrypted chapter envelope used by the reader API.

Wire format: ``[arr:|str:]<iv>:<short>:<long>`` with each field base64.
The AES-GCM ciphertext (tag included, 128 bits) is ``long || short``.
``arr:`` bodies decrypt to a JSON array of paragraph strings; ``str:`` and
untagged bodies decrypt to a single paragraph.
"""
import base64
import binascii
import json
from dataclasses import dataclass
from typing import List, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..models import PayloadKind
from ..errors import DecryptError, ParseError

KEY_LENGTH = 32
TAG_LENGTH = 16


@dataclass(frozen=True)
class Envelope:
    kind: PayloadKind
    iv: bytes
    short_cipher: bytes
    long_cipher: bytes

    @property
    def ciphertext(self) -> bytes:
        return self.long_cipher + self.short_cipher


def _b64(field: str, name: str) -> bytes:
    cleaned = "".join(field.split())
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptError(f"Envelope {name} is not valid base64: {e}") from e


def parse_envelope(text: str) -> Envelope:
    if not text:
        raise DecryptError("Empty envelope")
    kind = PayloadKind.ENCRYPTED_SINGLE
    body = text
    if text.startswith("arr:"):
        kind = PayloadKind.ENCRYPTED_ARRAY
        body = text[4:]
    elif text.startswith("str:"):
        body = text[4:]

    parts = body.split(":")
    if len(parts) != 3:
        raise DecryptError(f"Envelope must have 3 fields, got {len(parts)}")
    iv = _b64(parts[0], "iv")
    if not iv:
        raise DecryptError("Envelope iv is empty")
    return Envelope(kind, iv, _b64(parts[1], "short half"), _b64(parts[2], "long half"))


def _key_bytes(key: Union[str, bytes]) -> bytes:
    raw = key.encode("ascii") if isinstance(key, str) else bytes(key)
    if len(raw) != KEY_LENGTH:
        raise DecryptError(f"Key must be {KEY_LENGTH} bytes, got {len(raw)}")
    return raw


def decrypt_text(envelope: Envelope, key: Union[str, bytes]) -> str:
    aes = AESGCM(_key_bytes(key))
    if len(envelope.ciphertext) < TAG_LENGTH:
        raise DecryptError("Ciphertext shorter than the authentication tag")
    try:
        plain = aes.decrypt(envelope.iv, envelope.ciphertext, None)
    except InvalidTag as e:
        raise DecryptError("Authentication tag mismatch") from e
    except ValueError as e:
        # cryptography rejects unsupported nonce lengths with ValueError
        raise DecryptError(f"Invalid iv: {e}") from e
    try:
        return plain.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptError(f"Decrypted body is not UTF-8: {e}") from e


def decrypt_envelope(text: str, key: Union[str, bytes]) -> List[str]:
    """Decrypt an envelope into paragraphs.

    Raises DecryptError for any envelope fault and ParseError when an
    ``arr:`` body is not a JSON array of strings.
    """
    envelope = parse_envelope(text)
    plain = decrypt_text(envelope, key)
    if envelope.kind is not PayloadKind.ENCRYPTED_ARRAY:
        return [plain]
    try:
        paragraphs = json.loads(plain)
    except json.JSONDecodeError as e:
        raise ParseError(f"Decrypted array is not JSON: {e}") from e
    if not isinstance(paragraphs, list) or not all(isinstance(p, str) for p in paragraphs):
        raise ParseError("Decrypted array is not a list of strings")
    return paragraphs
