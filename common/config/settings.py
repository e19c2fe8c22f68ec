"""Process environment settings (everything that is not in config.toml)."""

import base64
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
from common.utils.crypto import AES256GCM

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Environment settings for the executor process."""

    # Path of the TOML configuration file
    executor_config: str = "./conf/config.toml"

    # Overrides [log] Level from the configuration file when set
    log_level: Optional[str] = None
    environment: str = "development"

    # Optional client-side encryption of artifacts written to XuperDB
    # Must be a Base64-encoded 32-byte key
    # Generate with: python scripts/generate_encryption_key.py
    encryption_key: Optional[str] = None

    # Seconds between two passes over queued blockchain records
    reconcile_interval: float = 30.0

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    def get_encryption_key(self) -> Optional[bytes]:
        """
        Get encryption key from ENCRYPTION_KEY environment variable.

        Returns:
            bytes: 32-byte encryption key, or None when encryption is disabled

        Raises:
            ValueError: If ENCRYPTION_KEY is set but invalid
        """
        if not self.encryption_key:
            return None

        try:
            key = base64.b64decode(self.encryption_key, validate=True)
        except ValueError as e:
            raise ValueError(
                f"Invalid ENCRYPTION_KEY: must be valid Base64. Error: {str(e)}"
            ) from e

        if len(key) != AES256GCM.KEY_SIZE:
            raise ValueError(
                f"Encryption key must be {AES256GCM.KEY_SIZE} bytes after Base64 decoding, "
                f"got {len(key)} bytes"
            )
        return key
