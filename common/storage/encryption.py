"""Client-side encryption of artifacts using AES-256-GCM."""

from common.utils.crypto import AES256GCM, CryptoError
from common.logger import setup_logger

logger = setup_logger(__name__)


class EncryptionService:
    """Encrypts artifacts before they leave the node.

    The artifact path is bound as associated data, so a ciphertext copied
    to another path fails to decrypt.
    """

    def __init__(self, key: bytes):
        """
        Initialize encryption service.

        Args:
            key: 32-byte encryption key (see Settings.get_encryption_key)
        """
        self.cipher = AES256GCM(key)

    def encrypt_artifact(self, data: bytes, path: str) -> bytes:
        """
        Encrypt artifact bytes.

        Args:
            data: Plain artifact bytes
            path: Storage path the artifact is written to

        Returns:
            Encrypted bytes (nonce + ciphertext + tag)
        """
        encrypted = self.cipher.encrypt(data, path.encode("utf-8"))
        logger.debug(f"Encrypted {len(data)} bytes to {len(encrypted)} bytes")
        return encrypted

    def decrypt_artifact(self, encrypted: bytes, path: str) -> bytes:
        """
        Decrypt artifact bytes read from path.

        Raises:
            CryptoError: If decryption fails
        """
        try:
            decrypted = self.cipher.decrypt(encrypted, path.encode("utf-8"))
        except CryptoError as e:
            logger.error(f"Decryption of {path} failed: {str(e)}")
            raise
        logger.debug(f"Decrypted {len(encrypted)} bytes to {len(decrypted)} bytes")
        return decrypted
