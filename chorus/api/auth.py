"""CHORUS reset gate — shared-secret check for the destructive reset.

Environment variables:
- CHORUS_RESET_SECRET: the shared secret. Unset disables reset entirely.

Generate one:
    python scripts/gen_reset_secret.py
"""

from __future__ import annotations

import secrets

from fastapi import HTTPException, status


def verify_reset_secret(provided: str, expected: str) -> bool:
    """Constant-time comparison. An empty expected secret never matches."""
    if not expected or not provided:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


def require_reset_secret(provided: str, expected: str) -> None:
    """Raise 403 unless ``provided`` matches the configured secret."""
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Reset is disabled on this server",
        )
    if not verify_reset_secret(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid secret key",
        )
