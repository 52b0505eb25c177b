"""
FastAPI dependencies for authentication and authorization.

WHY: Dependencies provide reusable authentication and authorization logic
that can be injected into route handlers, ensuring consistent security
across the billing API.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from billing.core.auth import verify_token
from billing.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    TokenExpiredError,
    TokenInvalidError,
    ValidationError,
)

ADMIN_ROLE = "ADMIN"

# HTTP Bearer token security scheme
# Format: "Authorization: Bearer <token>"
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """
    The authenticated caller as described by the token claims.

    Fields:
    - id: Stable identifier of the admin (``sub`` claim)
    - name: Display name recorded on delete-log entries
    - email: Contact email, if present in the token
    - role: Role name (only ADMIN may use the billing API)
    """

    id: str
    name: str
    email: Optional[str]
    role: str


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Actor:
    """
    Get the current actor from the bearer token.

    Raises:
        AuthenticationError: If the token is missing, invalid or expired
    """
    if credentials is None:
        raise AuthenticationError(message="Not authenticated")

    try:
        payload = verify_token(credentials.credentials)
    except (TokenExpiredError, TokenInvalidError) as e:
        # WHY: Re-raise as AuthenticationError for consistent API responses
        raise AuthenticationError(
            message=str(e),
            status_code=e.status_code,
        )

    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError(message="Invalid token: missing subject")

    return Actor(
        id=str(subject),
        name=payload.get("name") or str(subject),
        email=payload.get("email"),
        role=str(payload.get("role", "")).upper(),
    )


async def require_admin(
    actor: Actor = Depends(get_current_actor),
) -> Actor:
    """
    Require the actor to have the ADMIN role.

    WHY: Invoices, payments and the delete log are administrative data;
    clients never reach these routes.

    Raises:
        AuthorizationError: If the actor is not ADMIN
    """
    if actor.role != ADMIN_ROLE:
        raise AuthorizationError(
            message="Admin access required",
            actor_id=actor.id,
            actor_role=actor.role,
            required_role=ADMIN_ROLE,
        )
    return actor


def get_expected_version(
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
) -> Optional[int]:
    """
    Parse the optional ``If-Match`` header into an invoice version.

    WHY: A dashboard that still shows an old copy of an invoice sends the
    version it last read; the ledger rejects the write with 409 if the
    invoice has moved on since. Both ``3`` and ``"3"`` (ETag form) are
    accepted.
    """
    if if_match is None or not if_match.strip():
        return None
    raw = if_match.strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    raw = raw.strip('"')
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(
            message="If-Match must be an invoice version number",
            if_match=if_match,
        )
