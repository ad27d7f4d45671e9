"""In-process review-state store."""

from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any

from forgereview.store.base import ReviewStateStore

if TYPE_CHECKING:
    from forgereview.backends.models import PullRequestIdentity


class MemoryReviewStateStore(ReviewStateStore):
    """Keeps raw infos in a dict. Values are deep-copied in and out so callers can't alias them."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}

    async def load_raw_infos(self, identity: PullRequestIdentity) -> dict[str, Any] | None:
        stored = self._data.get(identity.cache_key)
        return copy.deepcopy(stored) if stored is not None else None

    async def save_raw_infos(self, identity: PullRequestIdentity, raw_infos: dict[str, Any]) -> None:
        self._data[identity.cache_key] = copy.deepcopy(raw_infos)
