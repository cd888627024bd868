from __future__ import annotations

import hashlib

DEFAULT_LENGTH = 10
_MAX_LENGTH = hashlib.sha256().digest_size * 2


def fingerprint(url: str, length: int = DEFAULT_LENGTH) -> str:
    """
    Content address for a link: SHA-256 hex digest of the URL, truncated.

    Truncation keeps the persisted state small. Distinct URLs may collide;
    at a few hundred links per month the odds are negligible and a collision
    only suppresses one notification until the entry expires.
    """
    if not 1 <= length <= _MAX_LENGTH:
        raise ValueError(f"fingerprint length must be between 1 and {_MAX_LENGTH} (got {length})")
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:length]
