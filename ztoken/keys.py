"""
Key loading for ztoken.

Private keys come from PEM files on disk; public keys (the authority's, or a
registered service key on the authority side) may be given either as PEM or
as a JWK JSON string. Key generation and rotation are left to the key
management infrastructure.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from jwcrypto import jwk

from ztoken.crypto import PrivateKey, PublicKey
from ztoken.errors import KeyLoadError

logger = logging.getLogger(__name__)


def load_private_key(path: Union[str, Path], password: Optional[bytes] = None) -> PrivateKey:
    """
    Load an RSA, EC or Ed25519 private key from a PEM file.

    Args:
        path: Path to the PEM encoded private key.
        password: Passphrase for encrypted keys.

    Returns:
        A cryptography private key object.

    Raises:
        KeyLoadError: If the file cannot be read or does not hold a private key.
    """
    key_path = Path(path)
    try:
        data = key_path.read_bytes()
    except OSError as e:
        raise KeyLoadError(f"Unable to read private key {key_path}: {e}")

    try:
        key = jwk.JWK.from_pem(data, password=password)
    except Exception as e:
        raise KeyLoadError(f"Invalid private key {key_path}: {e}")

    if not key.has_private:
        raise KeyLoadError(f"{key_path} does not contain a private key")

    logger.debug(f"Loaded {key['kty']} private key from {key_path}")
    return key.get_op_key("sign")


def load_public_key(data: Union[str, bytes]) -> PublicKey:
    """
    Load a public key from PEM text or a JWK JSON string.

    Raises:
        KeyLoadError: If the data is neither a PEM public key nor a JWK.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8")

    try:
        if data.lstrip().startswith("{"):
            key = jwk.JWK.from_json(data)
        else:
            key = jwk.JWK.from_pem(data.encode("utf-8"))
        return key.get_op_key("verify")
    except Exception as e:
        raise KeyLoadError(f"Invalid public key: {e}")
