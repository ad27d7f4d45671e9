"""Abstract review-state store interface.

The review session keeps the last fetched metadata graph of a pull request
("raw infos") in a key-value store keyed by the pull request identity. Backends
depend on ReviewStateStore, not on a concrete store, so the persistence layer
is swappable without touching backend code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from forgereview.backends.models import PullRequestIdentity


class ReviewStateStore(ABC):
    """Pluggable persistence for cached pull request metadata."""

    @abstractmethod
    async def load_raw_infos(self, identity: PullRequestIdentity) -> dict[str, Any] | None:
        """Return the cached metadata graph for a pull request, or None if nothing is stored."""

    @abstractmethod
    async def save_raw_infos(self, identity: PullRequestIdentity, raw_infos: dict[str, Any]) -> None:
        """Replace the cached metadata graph for a pull request."""

    async def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional, the default is a no-op so callers can always call close() safely.
        """
