from forgereview.core.batch import BatchOutcome, join_all, run_all
from forgereview.core.continuation import resolve, settle
from forgereview.core.pagination import CursorPaginator, PaginationState, walk_connection

__all__ = [
    "BatchOutcome",
    "CursorPaginator",
    "PaginationState",
    "join_all",
    "resolve",
    "run_all",
    "settle",
    "walk_connection",
]
