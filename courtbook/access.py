"""
Access gate for restricted (private-venue) courts.

Membership and access grants live in another service; the engine only asks
whether a user may book a court. Public courts never reach the checker.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from loguru import logger

from courtbook.errors import AuthorizationError
from courtbook.models import Resource


class AccessChecker(Protocol):
    async def can_access(self, user_id: UUID, resource: Resource) -> bool:
        """Return True if `user_id` may book `resource`."""
        ...


class AccessGate:
    """Wraps an AccessChecker and memoizes answers for the lifetime of one request."""

    def __init__(self, checker: AccessChecker) -> None:
        self._checker = checker
        self._answers: dict[tuple[UUID, UUID], bool] = {}

    async def ensure(self, user_id: UUID, resource: Resource) -> None:
        if not resource.is_restricted:
            return
        key = (user_id, resource.id)
        if key not in self._answers:
            self._answers[key] = await self._checker.can_access(user_id, resource)
        if not self._answers[key]:
            logger.warning(
                "Access denied: user_id={} resource_id={}", user_id, resource.id
            )
            raise AuthorizationError(
                f"No access to private court {resource.name}",
                code="ACCESS_DENIED",
                details={"resource_id": str(resource.id)},
            )
