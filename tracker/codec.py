"""
Opaque identifiers.

Raw integer ids never appear in URLs. They are encrypted with AES-GCM
under a process-wide key and the result is base64url encoded:

    urlsafe_b64(nonce[12] || ciphertext || tag[16])

Every call draws a fresh nonce, so the same id yields a different token
each time while decrypting to the same value.
"""

import base64
import binascii

from Crypto.Cipher import AES
from Crypto.Random import get_random_bytes
from loguru import logger

from tracker.errors import DecodeError

NONCE_SIZE = 12
TAG_SIZE = 16
VALID_KEY_SIZES = (16, 24, 32)


class CodecConfigError(RuntimeError):
    """Encryption key is missing or has an unusable length."""


class SymmetricCodec:
    def __init__(self, key: bytes):
        if not key:
            raise CodecConfigError("Encryption key is empty")
        if len(key) not in VALID_KEY_SIZES:
            raise CodecConfigError(
                f"Encryption key must be 16, 24 or 32 bytes, got {len(key)}"
            )
        self._key = key

    @classmethod
    def from_setting(cls, value: str) -> "SymmetricCodec":
        return cls(value.encode("utf-8") if value else b"")

    def encrypt(self, plaintext: str) -> str:
        cipher = AES.new(self._key, AES.MODE_GCM, nonce=get_random_bytes(NONCE_SIZE))
        ciphertext, tag = cipher.encrypt_and_digest(plaintext.encode("utf-8"))
        return base64.urlsafe_b64encode(cipher.nonce + ciphertext + tag).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            raw = base64.b64decode(token.encode("ascii"), altchars=b"-_", validate=True)
        except (binascii.Error, UnicodeEncodeError, ValueError):
            raise DecodeError()

        # One token per ciphertext: no "+" or "/", no stray padding bits
        if base64.urlsafe_b64encode(raw).decode("ascii") != token:
            raise DecodeError()

        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise DecodeError()

        nonce, body, tag = raw[:NONCE_SIZE], raw[NONCE_SIZE:-TAG_SIZE], raw[-TAG_SIZE:]
        cipher = AES.new(self._key, AES.MODE_GCM, nonce=nonce)
        try:
            plaintext = cipher.decrypt_and_verify(body, tag)
            return plaintext.decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            # Tag mismatch and garbage input look the same from outside
            logger.debug("Rejected opaque identifier ({} bytes)", len(raw))
            raise DecodeError()

    def encrypt_id(self, value: int) -> str:
        return self.encrypt(str(value))

    def decrypt_id(self, token: str) -> int:
        plaintext = self.decrypt(token)
        if not (plaintext.isascii() and plaintext.isdigit()):
            raise DecodeError()
        return int(plaintext)
