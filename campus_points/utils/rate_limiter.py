"""
Per-user rate limiting for self-service ledger requests

Counters live in the injected ExpiringStore; each window starts with the
first request and expires on its own.
"""
import logging
from fastapi import Depends, HTTPException, Request, status

from campus_points.models.user import User
from campus_points.utils.expiring_store import (
    ExpiringStore,
    StoreUnavailableError,
    get_expiring_store,
)
from campus_points.utils.security import get_current_user

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, scope: str, times: int = 5, seconds: int = 60):
        """
        Args:
            scope: counter namespace, one per protected operation
            times: requests allowed per window
            seconds: window length
        """
        self.scope = scope
        self.times = times
        self.seconds = seconds

    def key_for(self, user_id: str) -> str:
        return f"rate_limit:{self.scope}:user:{user_id}"

    async def hit(self, store: ExpiringStore, user_id: str) -> bool:
        """Count one request; False when the window is already full"""
        try:
            count = await store.incr(self.key_for(user_id), self.seconds)
        except StoreUnavailableError as exc:
            # fail open
            logger.warning("Rate limit store unavailable for %s: %s", self.scope, exc)
            return True
        return count <= self.times

    async def __call__(
        self,
        request: Request,
        current_user: User = Depends(get_current_user),
        store: ExpiringStore = Depends(get_expiring_store),
    ):
        if not await self.hit(store, current_user.id):
            logger.info(
                "Rate limit exceeded: %s %s by %s", request.method, request.url.path, current_user.utorid
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests, please try again later",
            )
