import base64
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import FILE_SECRET

NONCE_SIZE = 12


def _key(secret: str | None = None) -> bytes:
    key = bytes.fromhex(secret or FILE_SECRET)
    if len(key) not in (16, 24, 32):
        raise ValueError("FILE_SECRET must be a 16, 24 or 32 byte hex string")
    return key


def encrypt_bytes(plaintext: bytes, secret: str | None = None) -> bytes:
    """AES-GCM encrypt, returning nonce || ciphertext."""
    nonce = os.urandom(NONCE_SIZE)
    return nonce + AESGCM(_key(secret)).encrypt(nonce, plaintext, None)


def decrypt_bytes(blob: bytes, secret: str | None = None) -> bytes:
    nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    return AESGCM(_key(secret)).decrypt(nonce, ciphertext, None)


def enc_field(value: str) -> str:
    if not value:
        return ""
    return base64.urlsafe_b64encode(encrypt_bytes(value.encode())).decode("ascii")


def dec_field(value: str) -> str:
    if not value:
        return ""
    return decrypt_bytes(base64.urlsafe_b64decode(value.encode("ascii"))).decode()
