"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Mirrors activity/models.py -- dataclasses own the domain
shape; the provider adapter and the session services do the work.

Layer rule: no imports from api/, web/, or activity/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping


def _from_epoch(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


@dataclass(frozen=True)
class Principal:
    """The identity behind a verified credential or assertion.

    Scoped to a single request. It is rebuilt from a fresh provider
    verification every time and never cached across requests.

    subject is the provider's opaque user ID (Firebase "uid"). claims keeps the
    full verified claim set for handlers that need more (audit attribution).
    """

    subject: str
    issued_at: datetime | None = None
    expires_at: datetime | None = None
    email: str | None = None
    claims: Mapping[str, Any] = field(default_factory=dict, hash=False, repr=False)

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "Principal":
        """Build a Principal from a verified claim set.

        Raises ValueError if the claims carry no subject -- a verified token
        without a subject is unusable and must be treated as a rejection.
        """
        subject = claims.get("uid") or claims.get("sub")
        if not subject:
            raise ValueError("verified claims carry no subject")
        return cls(
            subject=str(subject),
            issued_at=_from_epoch(claims.get("iat")),
            expires_at=_from_epoch(claims.get("exp")),
            email=claims.get("email"),
            claims=dict(claims),
        )


@dataclass(frozen=True)
class IssuedSession:
    """Result of a successful login: the credential and how long it lives.

    credential is opaque. The gateway hands it to the client as the session
    cookie and never decodes it; max_age is in seconds.
    """

    credential: str = field(repr=False)
    principal: Principal
    max_age: int
