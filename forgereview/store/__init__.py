from forgereview.store.base import ReviewStateStore
from forgereview.store.memory import MemoryReviewStateStore

__all__ = ["MemoryReviewStateStore", "ReviewStateStore"]
