"""Pseudonymous user identifiers derived from request credentials.

The credential (the model API key the browser sends along) is never stored.
Instead it is hashed and the first 16 hex characters of the digest name the
user's storage namespace.  This is namespacing, not authentication: nothing
here checks that the credential is valid.
"""

from __future__ import annotations

import hashlib

ANONYMOUS_USER_ID = "anonymous"
USER_ID_LENGTH = 16


def derive_user_id(credential: str) -> str:
    """Map a credential to a stable user identifier.

    Args:
        credential: Opaque credential string, possibly empty.

    Returns:
        ``"anonymous"`` for an empty credential, otherwise the first 16 hex
        characters of the credential's SHA-256 digest.
    """
    if not credential:
        return ANONYMOUS_USER_ID
    digest = hashlib.sha256(credential.encode("utf-8")).hexdigest()
    return digest[:USER_ID_LENGTH]
