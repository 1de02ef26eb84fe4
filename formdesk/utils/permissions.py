"""
Permission rules for API keys and tokens

Permissions are free-form strings such as "forms:read"; "*" grants all.
"""

from typing import Iterable

WILDCARD = "*"


def grants(permissions: Iterable[str], required: str) -> bool:
    """True if the set holds the exact permission or the wildcard"""
    held = set(permissions or ())
    return WILDCARD in held or required in held
