"""State codec: turns a :class:`CalendarState` into a URL-fragment token and back.

Token layout (first character is the format tag)::

    0<base64url(zlib(json))>
    1<base64url(salt[16] || nonce[12] || AES-256-GCM(zlib(json)) || tag[16])>

Compression happens before encryption because ciphertext does not compress.
The key is derived per encode from the password and a fresh random salt with
PBKDF2-HMAC-SHA256, so the same password never reuses a key/nonce pair.
There is no stored password check: authentication failure of the cipher is
the only wrong-password signal.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import json
import logging
import os
import re
import zlib
from collections.abc import Mapping
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from hashcal.core.errors import DecodeError, WrongPasswordError
from hashcal.core.models import CalendarState, normalize_state
from hashcal.core.telemetry import codec_span

logger = logging.getLogger(__name__)

TAG_PLAIN = "0"
TAG_ENCRYPTED = "1"

SALT_BYTES = 16
NONCE_BYTES = 12
KEY_BYTES = 32
GCM_TAG_BYTES = 16
DEFAULT_KDF_ITERATIONS = 210_000
COMPRESSION_LEVEL = 9

_TOKEN_ALPHABET = re.compile(r"[A-Za-z0-9_-]*")


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def to_text(data: bytes) -> str:
    """base64url without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def from_text(text: str) -> bytes:
    """Inverse of :func:`to_text`; raises DecodeError on a bad alphabet or length."""
    if not _TOKEN_ALPHABET.fullmatch(text):
        raise DecodeError("Token contains characters outside the base64url alphabet")
    try:
        return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Token payload is not valid base64url: {exc}") from exc


def compress(data: bytes) -> bytes:
    return zlib.compress(data, COMPRESSION_LEVEL)


def decompress(data: bytes) -> bytes:
    try:
        return zlib.decompress(data)
    except zlib.error as exc:
        raise DecodeError(f"Token payload is not a valid compressed stream: {exc}") from exc


def derive_key(password: str, salt: bytes, iterations: int = DEFAULT_KDF_ITERATIONS) -> bytes:
    """Deliberately slow password-to-key derivation (PBKDF2-HMAC-SHA256)."""
    return hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt, iterations, dklen=KEY_BYTES
    )


def _serialize(state: CalendarState | Mapping[str, Any]) -> bytes:
    if not isinstance(state, CalendarState):
        state = normalize_state(state)
    compact = state.to_compact()
    return json.dumps(compact, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _deserialize(data: bytes) -> dict[str, Any]:
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DecodeError(f"Token payload is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise DecodeError(f"Token payload must be an object, got {type(payload).__name__}")
    return payload


def _strip_hash(token: str) -> str:
    return token[1:] if token.startswith("#") else token


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def peek_is_encrypted(token: str | None) -> bool:
    """Return True when *token* carries the encrypted tag.

    Only the tag is inspected: no password is needed and nothing is decoded.
    """
    if not token:
        return False
    return _strip_hash(token)[:1] == TAG_ENCRYPTED


def encode(
    state: CalendarState | Mapping[str, Any],
    password: str | None = None,
    *,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> str:
    """Serialize *state* to a URL-safe token, encrypting when *password* is given."""
    encrypted = bool(password)
    with codec_span("encode", encrypted=encrypted) as span:
        compressed = compress(_serialize(state))
        if not encrypted:
            token = TAG_PLAIN + to_text(compressed)
        else:
            salt = os.urandom(SALT_BYTES)
            nonce = os.urandom(NONCE_BYTES)
            key = derive_key(password, salt, iterations)
            sealed = AESGCM(key).encrypt(nonce, compressed, TAG_ENCRYPTED.encode("ascii"))
            token = TAG_ENCRYPTED + to_text(salt + nonce + sealed)
        span.set_attribute("hashcal.token_length", len(token))
    logger.debug("Encoded calendar state (encrypted=%s, length=%d)", encrypted, len(token))
    return token


def decode_payload(
    token: str,
    password: str | None = None,
    *,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> dict[str, Any]:
    """Decode *token* to the raw compact mapping without normalizing it.

    Raises
    ------
    DecodeError
        If the token is empty, has an unknown tag, a bad alphabet, is
        truncated, or its payload does not decompress to a JSON object.
    WrongPasswordError
        If the token is encrypted and *password* is missing or wrong, or the
        ciphertext was tampered with.
    """
    token = _strip_hash(token or "")
    if not token:
        raise DecodeError("Token is empty")

    tag, body = token[0], token[1:]
    encrypted = tag == TAG_ENCRYPTED
    with codec_span("decode", encrypted=encrypted):
        if tag == TAG_PLAIN:
            return _deserialize(decompress(from_text(body)))
        if not encrypted:
            raise DecodeError(f"Unknown token format tag: {tag!r}")
        if not password:
            raise WrongPasswordError("Token is encrypted and no password was supplied")

        raw = from_text(body)
        header = SALT_BYTES + NONCE_BYTES
        if len(raw) < header + GCM_TAG_BYTES:
            raise DecodeError("Encrypted token is truncated")
        salt, nonce, sealed = raw[:SALT_BYTES], raw[SALT_BYTES:header], raw[header:]

        key = derive_key(password, salt, iterations)
        try:
            compressed = AESGCM(key).decrypt(nonce, sealed, TAG_ENCRYPTED.encode("ascii"))
        except InvalidTag as exc:
            raise WrongPasswordError("Incorrect password or tampered token") from exc
        return _deserialize(decompress(compressed))


def decode(
    token: str,
    password: str | None = None,
    *,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> CalendarState:
    """Decode *token* and normalize the result into a :class:`CalendarState`."""
    return normalize_state(decode_payload(token, password, iterations=iterations))


async def encode_async(
    state: CalendarState | Mapping[str, Any],
    password: str | None = None,
    *,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> str:
    """:func:`encode` off the event loop; the KDF is deliberately expensive."""
    return await asyncio.to_thread(encode, state, password, iterations=iterations)


async def decode_async(
    token: str,
    password: str | None = None,
    *,
    iterations: int = DEFAULT_KDF_ITERATIONS,
) -> CalendarState:
    """:func:`decode` off the event loop."""
    return await asyncio.to_thread(decode, token, password, iterations=iterations)
