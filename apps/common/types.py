"""
Shared types for the subscription platform.
Business error taxonomy and the caller identity handed in by the HTTP layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

# ===============================================================================
# CALLER IDENTITY
# ===============================================================================

ROLE_ADMIN = "admin"
ROLE_USER = "user"


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller as produced by the authentication middleware."""

    user_id: str
    role: str = ROLE_USER

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def scoped_user_id(self) -> str | None:
        """User id to scope data-layer lookups to, or None for admins."""
        return None if self.is_admin else self.user_id


# ===============================================================================
# COMMON EXCEPTIONS
# ===============================================================================


class BusinessError(Exception):
    """Base exception for business logic errors"""

    code: ClassVar[str] = "internal"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class NotFoundError(BusinessError):
    """Entity id does not resolve"""

    code: ClassVar[str] = "not_found"


class ValidationError(BusinessError):
    """Malformed input or business-rule violation, with optional field information"""

    code: ClassVar[str] = "bad_request"

    def __init__(self, message: str, field: str = ""):
        self.field = field
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data["field"] = self.field
        return data


class ConflictError(BusinessError):
    """Concurrent state change lost the race (usage limit reached, duplicate redemption)"""

    code: ClassVar[str] = "conflict"


class InternalError(BusinessError):
    """Unexpected storage failure"""
