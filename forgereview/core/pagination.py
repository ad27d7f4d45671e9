"""Cursor pagination over GraphQL connections.

A connection page looks like:

    {"nodes": [...], "pageInfo": {"hasNextPage": true, "endCursor": "Y3Vyc29y"}}

CursorPaginator requests one page at a time, passing the previous page's
endCursor, and appends each page's nodes in server order until hasNextPage is
false.
"""

from collections.abc import Awaitable, Callable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from forgereview.utils.errors import DiagnosticLog, UnknownError, record_failure
from forgereview.utils.logging import get_logger

logger = get_logger(__name__)

# ruff: noqa: N815  # Allow camelCase field names to match GraphQL API
PageFetcher = Callable[[str | None], Awaitable[Mapping[str, Any]]]


class GraphQLPageInfo(BaseModel):
    """GraphQL pagination info."""

    hasNextPage: bool
    endCursor: str | None = None


class GraphQLConnection(BaseModel):
    """One page of a GraphQL connection."""

    pageInfo: GraphQLPageInfo
    nodes: list[Any]


class PaginationState(StrEnum):
    FETCHING = "fetching"
    DONE = "done"


class CursorPaginator:
    """Walks a cursor-paginated connection to completion, one page at a time."""

    def __init__(
        self,
        fetch_page: PageFetcher,
        origin: str,
        diagnostics: DiagnosticLog | None = None,
    ):
        """
        Args:
            fetch_page: Coroutine function taking the cursor (None for the first page)
                and returning the connection mapping for that page
            origin: Operation name used for logs and classified errors
            diagnostics: Sink for pagination failures
        """
        self._fetch_page = fetch_page
        self.origin = origin
        self._diagnostics = diagnostics
        self.state = PaginationState.FETCHING
        self.items: list[Any] = []
        self.cursors: list[str | None] = []
        self._next_cursor: str | None = None

    @property
    def pages_fetched(self) -> int:
        return len(self.cursors)

    def _fail(self, message: str, raw: Any) -> UnknownError:
        error = UnknownError(f"{self.origin}: {message}", origin=self.origin, raw=raw)
        record_failure(error, self._diagnostics)
        return error

    async def walk(self) -> list[Any]:
        """Fetch every remaining page and return all nodes in server order."""
        while self.state == PaginationState.FETCHING:
            cursor = self._next_cursor
            if cursor is not None and cursor in self.cursors:
                raise self._fail(f"cursor {cursor!r} was already fetched", raw=cursor)

            raw_page = await self._fetch_page(cursor)
            self.cursors.append(cursor)

            try:
                page = GraphQLConnection.model_validate(raw_page)
            except PydanticValidationError as e:
                raise self._fail(f"malformed connection page: {e}", raw=raw_page) from e

            self.items.extend(page.nodes)
            logger.debug(
                f"{self.origin}: page {self.pages_fetched} had {len(page.nodes)} nodes "
                f"(total: {len(self.items)})"
            )

            if not page.pageInfo.hasNextPage:
                self.state = PaginationState.DONE
                break

            if page.pageInfo.endCursor is None:
                raise self._fail("hasNextPage is set but endCursor is missing", raw=raw_page)
            self._next_cursor = page.pageInfo.endCursor

        return list(self.items)


async def walk_connection(
    fetch_page: PageFetcher, origin: str, diagnostics: DiagnosticLog | None = None
) -> list[Any]:
    """Convenience wrapper: walk a connection with a fresh paginator."""
    return await CursorPaginator(fetch_page, origin, diagnostics).walk()
