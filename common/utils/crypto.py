"""Encryption, key derivation and request signing helpers."""

import os
from typing import Optional, Union
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class CryptoError(Exception):
    """Exception raised for cryptographic operations."""

    pass


class AES256GCM:
    """AES-256-GCM encryption/decryption utility."""

    KEY_SIZE = 32  # 256 bits
    NONCE_SIZE = 12  # 96 bits for GCM
    TAG_SIZE = 16  # 128 bits for authentication tag

    def __init__(self, key: Optional[bytes] = None):
        """
        Initialize AES-256-GCM cipher.

        Args:
            key: 32-byte encryption key. If None, generates a random key.
        """
        if key is None:
            key = os.urandom(self.KEY_SIZE)
        elif len(key) != self.KEY_SIZE:
            raise CryptoError(f"Key must be {self.KEY_SIZE} bytes, got {len(key)}")

        self.key = key
        self.cipher = AESGCM(key)

    @classmethod
    def generate_key(cls) -> bytes:
        """
        Generate a random 32-byte key.

        Returns:
            Random 32-byte key
        """
        return os.urandom(cls.KEY_SIZE)

    def encrypt(
        self, plaintext: bytes, associated_data: Optional[bytes] = None
    ) -> bytes:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            plaintext: Data to encrypt
            associated_data: Optional associated data for authentication (not encrypted)

        Returns:
            Encrypted data in format: nonce (12 bytes) + ciphertext + tag (16 bytes)
        """
        nonce = os.urandom(self.NONCE_SIZE)
        ciphertext = self.cipher.encrypt(nonce, plaintext, associated_data)
        return nonce + ciphertext

    def decrypt(
        self, ciphertext: bytes, associated_data: Optional[bytes] = None
    ) -> bytes:
        """
        Decrypt ciphertext using AES-256-GCM.

        Args:
            ciphertext: Encrypted data in format: nonce (12 bytes) + ciphertext + tag (16 bytes)
            associated_data: Optional associated data (must match encryption)

        Returns:
            Decrypted plaintext

        Raises:
            CryptoError: If decryption fails (invalid key, tampered data, etc.)
        """
        if len(ciphertext) < self.NONCE_SIZE + self.TAG_SIZE:
            raise CryptoError(
                f"Ciphertext too short. Expected at least {self.NONCE_SIZE + self.TAG_SIZE} bytes"
            )

        nonce = ciphertext[: self.NONCE_SIZE]
        encrypted_data = ciphertext[self.NONCE_SIZE :]

        try:
            return self.cipher.decrypt(nonce, encrypted_data, associated_data)
        except Exception as e:
            raise CryptoError(f"Decryption failed: {str(e)}") from e


def derive_key(secret: str, salt: bytes, iterations: int = 100000) -> bytes:
    """
    Derive a 32-byte key from a secret (private key, mnemonic) using PBKDF2.

    The salt is fixed per purpose so the same secret always yields the same key.

    Args:
        secret: Secret string
        salt: Purpose-specific salt
        iterations: PBKDF2 iterations

    Returns:
        32-byte key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=AES256GCM.KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret.encode("utf-8"))


def sign_message(key: bytes, message: Union[bytes, str]) -> str:
    """
    Compute a hex HMAC-SHA256 signature of message.

    Args:
        key: Signing key
        message: Data to sign

    Returns:
        Hexadecimal signature
    """
    if isinstance(message, str):
        message = message.encode("utf-8")
    mac = hmac.HMAC(key, hashes.SHA256())
    mac.update(message)
    return mac.finalize().hex()


def verify_signature(key: bytes, message: Union[bytes, str], signature: str) -> bool:
    """
    Check a signature produced by sign_message.

    Returns:
        True if the signature matches
    """
    if isinstance(message, str):
        message = message.encode("utf-8")
    try:
        expected = bytes.fromhex(signature)
    except ValueError:
        return False
    mac = hmac.HMAC(key, hashes.SHA256())
    mac.update(message)
    try:
        mac.verify(expected)
        return True
    except InvalidSignature:
        return False
