from forgereview.backends.base import ProviderBackend
from forgereview.backends.factory import get_backend
from forgereview.backends.github import GitHubBackend
from forgereview.backends.gitlab import GitLabBackend
from forgereview.backends.models import (
    AssignableUser,
    LocalComment,
    MergeStrategy,
    Milestone,
    PullRequestIdentity,
    ReactionTarget,
    Reply,
    ReplyBatch,
    ReviewState,
    ReviewSubmission,
)

__all__ = [
    "AssignableUser",
    "GitHubBackend",
    "GitLabBackend",
    "LocalComment",
    "MergeStrategy",
    "Milestone",
    "ProviderBackend",
    "PullRequestIdentity",
    "ReactionTarget",
    "Reply",
    "ReplyBatch",
    "ReviewState",
    "ReviewSubmission",
    "get_backend",
]
