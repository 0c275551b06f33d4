"""
Encryption of OAuth tokens at rest (AES-256-GCM).

Stored format: ``base64(nonce[12] || tag[16] || ciphertext)``.
"""

import base64
import binascii
import hashlib
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


class TokenAuthenticationError(Exception):
    """Stored token could not be authenticated and decrypted."""


def normalize_key(secret: str) -> bytes:
    """
    Derive the 256-bit key from a configured secret.

    Accepts a 64-character hex string or base64 of exactly 32 bytes; any other
    secret is hashed with SHA-256.
    """
    if _HEX_KEY.match(secret):
        return bytes.fromhex(secret)

    try:
        decoded = base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == KEY_SIZE:
        return decoded

    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt_token(plaintext: str, secret: str) -> str:
    """Encrypt a token with a fresh random nonce."""
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(normalize_key(secret)).encrypt(
        nonce, plaintext.encode("utf-8"), None
    )
    # cryptography appends the tag; the stored layout puts it before the ciphertext
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return base64.b64encode(nonce + tag + ciphertext).decode("ascii")


def decrypt_token(blob: str, secret: str) -> str:
    """
    Decrypt a token produced by ``encrypt_token``.

    Raises:
        TokenAuthenticationError: If the blob is malformed or fails
            authentication (wrong key or tampered data)
    """
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError) as e:
        raise TokenAuthenticationError("Encrypted token is not valid base64") from e

    # Reject alternative encodings of the same bytes
    if base64.b64encode(raw).decode("ascii") != blob:
        raise TokenAuthenticationError("Encrypted token is not canonical base64")

    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise TokenAuthenticationError("Encrypted token is too short")

    nonce = raw[:NONCE_SIZE]
    tag = raw[NONCE_SIZE : NONCE_SIZE + TAG_SIZE]
    ciphertext = raw[NONCE_SIZE + TAG_SIZE :]

    try:
        plaintext = AESGCM(normalize_key(secret)).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as e:
        raise TokenAuthenticationError("Encrypted token failed authentication") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise TokenAuthenticationError("Decrypted token is not valid UTF-8") from e
