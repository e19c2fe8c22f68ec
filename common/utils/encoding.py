"""Base64 helpers for carrying binary fragments in JSON messages."""

import base64
import binascii


def encode_blob(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_blob(text: str) -> bytes:
    """
    Decode a Base64 string produced by encode_blob.

    Raises:
        ValueError: If text is not valid Base64
    """
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 blob: {str(e)}") from e

