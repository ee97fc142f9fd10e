"""
Token string helpers.

Principal and role tokens share one wire layout: ``key=value`` pairs joined
by ``;`` with the signature as the final ``s=`` field. The signed bytes are
everything before ``;s=``.
"""

from typing import Dict, Iterable, Optional, Tuple

SIGNATURE_FIELD = ";s="


def join_fields(fields: Iterable[Tuple[str, Optional[object]]]) -> str:
    """Join (key, value) pairs, skipping pairs whose value is None."""
    return ";".join(f"{key}={value}" for key, value in fields if value is not None)


def split_fields(token: str) -> Dict[str, str]:
    """
    Split a token string into its fields.

    Raises:
        ValueError: On empty tokens, fields without '=' or repeated keys.
    """
    if not token:
        raise ValueError("Empty token")

    fields: Dict[str, str] = {}
    for part in token.split(";"):
        key, sep, value = part.partition("=")
        if not sep or not key:
            raise ValueError(f"Malformed token field: {part!r}")
        if key in fields:
            raise ValueError(f"Duplicate token field: {key}")
        fields[key] = value
    return fields


def unsigned_part(token: str) -> str:
    """Return the signed portion of a token (everything before ';s=')."""
    index = token.rfind(SIGNATURE_FIELD)
    return token if index < 0 else token[:index]


def require_int(fields: Dict[str, str], key: str) -> int:
    """Fetch a mandatory integer field."""
    if key not in fields:
        raise ValueError(f"Missing token field: {key}")
    try:
        return int(fields[key])
    except ValueError:
        raise ValueError(f"Token field {key} is not an integer: {fields[key]!r}")


def require(fields: Dict[str, str], key: str) -> str:
    """Fetch a mandatory non-empty field."""
    value = fields.get(key)
    if not value:
        raise ValueError(f"Missing token field: {key}")
    return value
