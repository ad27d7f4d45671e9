"""Provider backend capability interface.

Each forge (GitHub, GitLab, ...) implements ProviderBackend for one pull
request. Callers depend on ProviderBackend, never on a concrete forge, so every
operation must behave the same on every variant:

- operations are coroutines; failures raise a classified ForgeError
- local working fields change only after the forge confirmed the write
- raw_infos is write-through: every change is saved to the ReviewStateStore
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Iterable
from typing import Any

from forgereview.backends.models import (
    AssignableUser,
    MergeStrategy,
    Milestone,
    PullRequestIdentity,
    ReactionTarget,
    ReplyBatch,
    ReviewSubmission,
)
from forgereview.clients.transport import ForgeTransport, TransportResult, next_page_url
from forgereview.core.batch import join_all
from forgereview.core.continuation import resolve, settle
from forgereview.core.pagination import CursorPaginator
from forgereview.store.base import ReviewStateStore
from forgereview.store.memory import MemoryReviewStateStore
from forgereview.utils.errors import DiagnosticLog, StructlogDiagnosticLog
from forgereview.utils.logging import LogContext, get_logger

ASSIGNABLE_USERS_KEY = "assignableUsers"

# Keys derived by this layer rather than fetched with the metadata graph.
# A metadata refresh keeps them.
DERIVED_RAW_INFO_KEYS = (ASSIGNABLE_USERS_KEY,)


def parse_merge_strategy(strategy: str | MergeStrategy) -> MergeStrategy:
    try:
        return MergeStrategy(strategy)
    except ValueError:
        raise ValueError(
            f"Unknown merge strategy {strategy!r}, expected one of "
            f"{', '.join(s.value for s in MergeStrategy)}"
        ) from None


def parse_reaction_target(target: str | ReactionTarget) -> ReactionTarget:
    try:
        return ReactionTarget(target)
    except ValueError:
        raise ValueError(f"Unknown reaction target {target!r}") from None


def unique(values: Iterable[str]) -> list[str]:
    """De-duplicate while keeping the caller's order."""
    return list(dict.fromkeys(values))


class ProviderBackend(ABC):
    """One pull request on one forge."""

    forge: str = ""

    def __init__(
        self,
        identity: PullRequestIdentity,
        transport: ForgeTransport,
        store: ReviewStateStore | None = None,
        diagnostics: DiagnosticLog | None = None,
    ):
        self.identity = identity
        self.transport = transport
        self.store = store if store is not None else MemoryReviewStateStore()
        self.diagnostics = diagnostics if diagnostics is not None else StructlogDiagnosticLog()

        # Working copy of the pull request's editable attributes
        self.sha: str | None = None
        self.title: str | None = None
        self.description: str | None = None
        self.labels: set[str] = set()
        self.assignees: set[str] = set()
        self.milestone: str | None = None
        self.state: str | None = None

        self.raw_infos: dict[str, Any] = {}
        self._raw_infos_lock = asyncio.Lock()
        self._store_loaded = False

        self.logger = get_logger(
            f"forgereview.backends.{self.forge}", forge=self.forge, pull_request=str(identity)
        )

    async def aclose(self) -> None:
        await self.transport.aclose()

    async def __aenter__(self) -> ProviderBackend:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identity})"

    # ========== Plumbing ==========

    async def _settle(self, call: Awaitable[TransportResult], origin: str) -> Any:
        with LogContext(forge=self.forge, pull_request=str(self.identity), operation=origin):
            return await settle(call, origin, self.diagnostics)

    async def _get_all_pages(
        self, path: str, origin: str, params: dict[str, Any] | None = None
    ) -> list[Any]:
        """GET a REST list endpoint and follow its Link rel="next" pages to the end."""
        items: list[Any] = []
        seen: set[str] = set()
        url: str | None = path
        with LogContext(forge=self.forge, pull_request=str(self.identity), operation=origin):
            while url is not None:
                seen.add(url)
                # The next link already carries the query string
                result = await self.transport.rest("GET", url, params=params if url == path else None)
                items.extend(resolve(result, origin, self.diagnostics) or [])
                url = next_page_url(result.headers)
                if url in seen:
                    self.logger.warning(f"{origin}: next page {url} was already fetched, stopping")
                    break
        return items

    async def _load_store_locked(self) -> None:
        """Merge what the store holds for this identity into raw_infos, once per backend.

        Must be called with _raw_infos_lock held. In-memory keys win over stored ones.
        """
        if self._store_loaded:
            return
        stored = await self.store.load_raw_infos(self.identity)
        self._store_loaded = True
        if not stored:
            return
        was_empty = not self.raw_infos
        self.raw_infos = {**stored, **self.raw_infos}
        if was_empty:
            self._refresh_fields(stored)

    async def _ensure_raw_infos(self) -> dict[str, Any]:
        async with self._raw_infos_lock:
            await self._load_store_locked()
        return self.raw_infos

    async def _update_raw_infos(self, **updates: Any) -> None:
        """Merge keys into raw_infos and write the result through to the store."""
        async with self._raw_infos_lock:
            await self._load_store_locked()
            merged = {**self.raw_infos, **updates}
            await self.store.save_raw_infos(self.identity, merged)
            self.raw_infos = merged

    async def _replace_raw_infos(self, graph: dict[str, Any]) -> None:
        """Install a freshly fetched metadata graph, keeping derived keys."""
        async with self._raw_infos_lock:
            await self._load_store_locked()
            replaced = dict(graph)
            for key in DERIVED_RAW_INFO_KEYS:
                if key in self.raw_infos and key not in replaced:
                    replaced[key] = self.raw_infos[key]
            await self.store.save_raw_infos(self.identity, replaced)
            self.raw_infos = replaced

    async def restore_raw_infos(self) -> dict[str, Any]:
        """Load raw_infos from the store without touching the network."""
        stored = await self.store.load_raw_infos(self.identity)
        async with self._raw_infos_lock:
            self.raw_infos = stored or {}
            self._store_loaded = True
        if stored:
            self._refresh_fields(stored)
        return self.raw_infos

    # ========== Shared capability implementations ==========

    async def fetch_full_metadata(self) -> dict[str, Any]:
        """Fetch the full metadata graph, cache it and refresh the working fields."""
        graph = await self._fetch_metadata_graph()
        await self._replace_raw_infos(graph)
        self._refresh_fields(graph)
        self.logger.info("Fetched pull request metadata", sha=self.sha)
        return self.raw_infos

    async def list_assignable_users(self) -> list[AssignableUser]:
        """Every user that can be assigned or asked for review, walked once and cached."""
        raw_infos = await self._ensure_raw_infos()
        cached = raw_infos.get(ASSIGNABLE_USERS_KEY)
        if cached is not None:
            return [AssignableUser.from_node(node) for node in cached]

        paginator = CursorPaginator(
            self._fetch_assignable_users_page, "list-assignable-users", self.diagnostics
        )
        with LogContext(forge=self.forge, pull_request=str(self.identity), operation="list-assignable-users"):
            walked = await paginator.walk()
        nodes = [node for node in walked if node is not None]
        await self._update_raw_infos(**{ASSIGNABLE_USERS_KEY: nodes})
        self.logger.info(
            f"Cached {len(nodes)} assignable users from {paginator.pages_fetched} page(s)"
        )
        return [AssignableUser.from_node(node) for node in nodes]

    async def send_replies(self, batch: ReplyBatch) -> list[Any]:
        """Post every reply concurrently; raises the first failure once all have settled."""
        if batch.identity != self.identity:
            raise ValueError(f"Reply batch targets {batch.identity}, backend is {self.identity}")
        if not batch.replies:
            return []
        with LogContext(forge=self.forge, pull_request=str(self.identity), operation="send-replies"):
            return await join_all(
                [self._send_reply(reply.reply_to_id, reply.body) for reply in batch.replies],
                "send-replies",
            )

    # ========== Forge-specific hooks ==========

    @abstractmethod
    async def _fetch_metadata_graph(self) -> dict[str, Any]:
        """Fetch the full metadata graph of the pull request."""

    @abstractmethod
    def _refresh_fields(self, graph: dict[str, Any]) -> None:
        """Copy the editable attributes out of a metadata graph."""

    @abstractmethod
    async def _fetch_assignable_users_page(self, cursor: str | None) -> dict[str, Any]:
        """Return one connection page ({nodes, pageInfo}) of assignable users."""

    @abstractmethod
    async def _send_reply(self, reply_to_id: int | str, body: str) -> Any:
        """Post one reply to an existing review comment thread."""

    # ========== Capability operations ==========

    @abstractmethod
    async def fetch_diff(self) -> str:
        """Unified diff of the pull request's current head."""

    @abstractmethod
    async def fetch_commit_diff(self, sha: str) -> str:
        """Unified diff of a single commit."""

    @abstractmethod
    async def list_labels(self) -> list[str]:
        """Label names available in the repository."""

    @abstractmethod
    async def list_assignees(self) -> list[str]:
        """Logins that can be assigned."""

    @abstractmethod
    async def list_milestones(self) -> list[Milestone]:
        """Milestones of the repository."""

    @abstractmethod
    async def set_labels(self, labels: Iterable[str]) -> None:
        """Make the remote label set exactly `labels`. An empty iterable clears them."""

    @abstractmethod
    async def set_assignees(self, assignees: Iterable[str]) -> None:
        """Make the remote assignee set exactly `assignees`. An empty iterable clears them."""

    @abstractmethod
    async def set_milestone(self, milestone_number: int) -> bool:
        """Set the milestone.

        Returns False (after logging a warning) when the forge accepted the call
        but did not echo a milestone back. That is not an error.
        """

    @abstractmethod
    async def set_title(self, title: str) -> None: ...

    @abstractmethod
    async def set_description(self, description: str) -> None: ...

    @abstractmethod
    async def merge(self, strategy: str | MergeStrategy) -> dict[str, Any]:
        """Merge the pull request. Local fields are left alone."""

    @abstractmethod
    async def set_reaction(
        self, target: str | ReactionTarget, subject_id: int | str | None, content: str
    ) -> dict[str, Any]:
        """Add a reaction. subject_id is the comment id (ignored for the PR description)."""

    @abstractmethod
    async def delete_reaction(
        self, target: str | ReactionTarget, subject_id: int | str | None, reaction_id: int | str
    ) -> None: ...

    @abstractmethod
    async def send_review(self, submission: ReviewSubmission) -> dict[str, Any]:
        """Submit a review; inline comments go out ordered by position."""

    @abstractmethod
    async def request_review(self, user_ids: list[str]) -> dict[str, Any]: ...

    @abstractmethod
    async def new_issue(self, title: str, body: str) -> dict[str, Any]: ...

    @abstractmethod
    async def new_issue_comment(self, body: str) -> dict[str, Any]: ...

    @abstractmethod
    def resolve_binary_file_url(self, sha: str, filename: str, blob: bool = True) -> str:
        """Browsable blob URL (blob=True) or raw-content API URL (blob=False)."""

    @abstractmethod
    async def fetch_binary_file(self, sha: str, filename: str) -> bytes:
        """Download a file's bytes at a commit through the raw-content URL."""
