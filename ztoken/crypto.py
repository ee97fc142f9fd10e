"""
Signature primitives shared by principal and role tokens.

Tokens are signed over the UTF-8 bytes of their unsigned string form and the
signature travels as YBase64 text: standard Base64 with ``+``, ``/`` and ``=``
replaced by ``.``, ``_`` and ``-`` so that it survives headers and cookies
without escaping.
"""

import base64
import secrets
from typing import Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey, Ed25519PrivateKey]
PublicKey = Union[rsa.RSAPublicKey, ec.EllipticCurvePublicKey, Ed25519PublicKey]

_TO_YBASE64 = str.maketrans("+/=", "._-")
_FROM_YBASE64 = str.maketrans("._-", "+/=")


def ybase64_encode(data: bytes) -> str:
    """Encode bytes as YBase64 text."""
    return base64.b64encode(data).decode("ascii").translate(_TO_YBASE64)


def ybase64_decode(text: str) -> bytes:
    """
    Decode YBase64 text.

    Raises:
        ValueError: If the text is not valid YBase64.
    """
    try:
        return base64.b64decode(text.translate(_FROM_YBASE64), validate=True)
    except Exception as e:
        raise ValueError(f"Invalid YBase64 data: {e}")


def generate_salt() -> str:
    """Random per-token salt (8 bytes, hex)."""
    return secrets.token_hex(8)


def sign_data(private_key: PrivateKey, data: bytes) -> str:
    """
    Sign data and return the YBase64 signature.

    RSA keys sign with PKCS#1 v1.5 / SHA-256, EC keys with ECDSA / SHA-256,
    Ed25519 keys with pure EdDSA.

    Raises:
        TypeError: If the key type is not supported.
    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        signature = private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
    elif isinstance(private_key, ec.EllipticCurvePrivateKey):
        signature = private_key.sign(data, ec.ECDSA(hashes.SHA256()))
    elif isinstance(private_key, Ed25519PrivateKey):
        signature = private_key.sign(data)
    else:
        raise TypeError(f"Unsupported private key type: {type(private_key).__name__}")
    return ybase64_encode(signature)


def verify_data(public_key: PublicKey, data: bytes, signature: str) -> bool:
    """Return True if the YBase64 signature over data verifies with public_key."""
    try:
        raw = ybase64_decode(signature)
    except ValueError:
        return False

    try:
        if isinstance(public_key, rsa.RSAPublicKey):
            public_key.verify(raw, data, padding.PKCS1v15(), hashes.SHA256())
        elif isinstance(public_key, ec.EllipticCurvePublicKey):
            public_key.verify(raw, data, ec.ECDSA(hashes.SHA256()))
        elif isinstance(public_key, Ed25519PublicKey):
            public_key.verify(raw, data)
        else:
            raise TypeError(f"Unsupported public key type: {type(public_key).__name__}")
    except InvalidSignature:
        return False
    return True
