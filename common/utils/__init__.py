# Shared utilities

from common.utils.crypto import (
    AES256GCM,
    CryptoError,
    derive_key,
    sign_message,
    verify_signature,
)
from common.utils.encoding import decode_blob, encode_blob
from common.utils.hashing import compute_hash, verify_hash

__all__ = [
    "AES256GCM",
    "CryptoError",
    "derive_key",
    "sign_message",
    "verify_signature",
    "encode_blob",
    "decode_blob",
    "compute_hash",
    "verify_hash",
]
