"""Redis-backed review-state store.

Raw infos are stored as JSON strings under
`forgereview:raw-infos:{forge}:{owner}/{repo}#{number}` with no expiry; a review
session decides itself when cached metadata is stale.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import redis.asyncio as redis

from forgereview.store.base import ReviewStateStore
from forgereview.utils.config import get_redis_url
from forgereview.utils.logging import get_logger

if TYPE_CHECKING:
    from forgereview.backends.models import PullRequestIdentity

logger = get_logger(__name__)

KEY_PREFIX = "forgereview:raw-infos"


class RedisReviewStateStore(ReviewStateStore):
    """Review-state store on top of redis.asyncio."""

    def __init__(self, connection_url: str | None = None, client: redis.Redis | None = None):
        self._connection_url = connection_url
        self._client = client

    @property
    def connection_url(self) -> str:
        if not self._connection_url:
            self._connection_url = get_redis_url()
        return self._connection_url

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self.connection_url,
                decode_responses=True,
                retry_on_timeout=True,
                health_check_interval=30,
            )
        return self._client

    @staticmethod
    def key_for(identity: PullRequestIdentity) -> str:
        return f"{KEY_PREFIX}:{identity.cache_key}"

    async def load_raw_infos(self, identity: PullRequestIdentity) -> dict[str, Any] | None:
        value = await self._get_client().get(self.key_for(identity))
        if value is None:
            logger.debug(f"No cached raw infos for {identity}")
            return None
        return json.loads(value)

    async def save_raw_infos(self, identity: PullRequestIdentity, raw_infos: dict[str, Any]) -> None:
        await self._get_client().set(self.key_for(identity), json.dumps(raw_infos))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
