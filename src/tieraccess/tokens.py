"""Invitation token primitives.

An invitation token is an opaque bearer lookup key: random bytes rendered
as lowercase hex. It encodes no claims; level, organization, parent and
expiry all live server-side on the pending profile.
"""

from __future__ import annotations

import hmac
import re
import secrets
from datetime import datetime

DEFAULT_TOKEN_BYTES = 32  # 256 bits -> 64 hex chars

_HEX_RE = re.compile(r"[0-9a-f]+")


def mint_invitation_token(nbytes: int = DEFAULT_TOKEN_BYTES) -> str:
    """Create a new unguessable invitation token.

    Args:
        nbytes: Random bytes of entropy (minimum 32).

    Returns:
        Lowercase hex string of ``2 * nbytes`` characters.
    """
    if nbytes < DEFAULT_TOKEN_BYTES:
        raise ValueError(f"Invitation tokens need at least {DEFAULT_TOKEN_BYTES} bytes of entropy")
    return secrets.token_hex(nbytes)


def is_well_formed(token: object, nbytes: int = DEFAULT_TOKEN_BYTES) -> bool:
    """Cheap format check run before any store lookup."""
    if not isinstance(token, str) or len(token) != 2 * nbytes:
        return False
    return _HEX_RE.fullmatch(token) is not None


def tokens_match(presented: str, stored: str | None) -> bool:
    """Constant-time token comparison."""
    if stored is None:
        return False
    return hmac.compare_digest(presented.encode("ascii", "replace"), stored.encode("ascii", "replace"))


def is_expired(expiry: datetime | None, *, now: datetime) -> bool:
    """Expiry rule shared by every check: expired iff ``now >= expiry``.

    A missing expiry counts as expired; pending invitations always carry one.
    """
    if expiry is None:
        return True
    return now >= expiry


__all__ = [
    "DEFAULT_TOKEN_BYTES",
    "is_expired",
    "is_well_formed",
    "mint_invitation_token",
    "tokens_match",
]
