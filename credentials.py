import os
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from errors import CredentialUnavailable
from models import Link

NONCE_BYTES = 12


class CredentialResolver(Protocol):
    def resolve(self, link: Link) -> str: ...


class AesGcmCredentialStore:
    """Encrypts provider access tokens at rest as ``nonce_hex:ciphertext_hex``."""

    def __init__(self, key_hex: str) -> None:
        try:
            key = bytes.fromhex(key_hex)
        except ValueError as exc:
            raise ValueError("Token key must be hex encoded") from exc
        if len(key) != 32:
            raise ValueError("Token key must decode to 32 bytes")
        self._aead = AESGCM(key)

    def encrypt(self, token: str) -> str:
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = self._aead.encrypt(nonce, token.encode("utf-8"), None)
        return f"{nonce.hex()}:{ciphertext.hex()}"

    def decrypt(self, payload: str) -> str:
        nonce_hex, sep, ciphertext_hex = (payload or "").partition(":")
        if not sep or not nonce_hex or not ciphertext_hex:
            raise CredentialUnavailable("Malformed encrypted token payload")
        try:
            plaintext = self._aead.decrypt(
                bytes.fromhex(nonce_hex), bytes.fromhex(ciphertext_hex), None
            )
        except (InvalidTag, ValueError) as exc:
            raise CredentialUnavailable("Stored access token cannot be decrypted") from exc
        return plaintext.decode("utf-8")

    def resolve(self, link: Link) -> str:
        return self.decrypt(link.access_token_encrypted)
