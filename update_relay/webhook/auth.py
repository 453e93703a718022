"""Shared-secret verification for the trigger endpoint."""

from __future__ import annotations

import hmac

SECRET_HEADER = "x-update-secret"


def verify_secret(provided: str | None, configured: str) -> bool:
    """Return True iff *provided* exactly equals *configured*.

    Absent or empty values never match. Uses constant-time comparison; the
    caller logs only the fact of a failure, never the submitted value.
    """
    if not provided or not configured:
        return False
    return hmac.compare_digest(provided.encode(), configured.encode())
