"""Domain types shared by every forge backend."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


@dataclass(frozen=True)
class PullRequestIdentity:
    """Addresses one pull request on one forge."""

    owner: str
    repo: str
    number: int
    forge: str = "github"

    def __post_init__(self) -> None:
        if not self.owner or not self.repo:
            raise ValueError("owner and repo are required")
        if self.number <= 0:
            raise ValueError(f"Invalid pull request number: {self.number}")

    @classmethod
    def parse(cls, reference: str, forge: str = "github") -> PullRequestIdentity:
        """Build an identity from "owner/repo#number"."""
        repo_path, sep, number = reference.partition("#")
        owner, slash, repo = repo_path.rpartition("/")
        if not sep or not slash or not number.isdigit():
            raise ValueError(f"Invalid pull request reference: {reference}. Expected 'owner/repo#number'")
        return cls(owner=owner, repo=repo, number=int(number), forge=forge)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def cache_key(self) -> str:
        return f"{self.forge}:{self.full_name}#{self.number}"

    def __str__(self) -> str:
        return f"{self.full_name}#{self.number}"


class ReviewState(StrEnum):
    APPROVE = "APPROVE"
    REQUEST_CHANGES = "REQUEST_CHANGES"
    COMMENT = "COMMENT"


class ReactionTarget(StrEnum):
    """What a reaction is attached to."""

    PR_DESCRIPTION = "pr-description"
    ISSUE_COMMENT = "issue-comment"
    CODE_COMMENT = "code-comment"


class MergeStrategy(StrEnum):
    MERGE = "merge"
    SQUASH = "squash"
    REBASE = "rebase"


@dataclass(frozen=True)
class LocalComment:
    """An inline comment written locally, anchored at a diff position."""

    path: str
    position: int
    body: str


@dataclass
class ReviewSubmission:
    state: ReviewState
    feedback: str | None = None
    comments: list[LocalComment] = field(default_factory=list)

    def ordered_comments(self) -> list[LocalComment]:
        """Comments by ascending diff position; ties keep their input order."""
        return sorted(self.comments, key=lambda comment: comment.position)


@dataclass(frozen=True)
class Reply:
    reply_to_id: int | str
    body: str


@dataclass
class ReplyBatch:
    identity: PullRequestIdentity
    sha: str | None
    replies: list[Reply] = field(default_factory=list)


@dataclass(frozen=True)
class Milestone:
    title: str
    number: int


@dataclass(frozen=True)
class AssignableUser:
    id: str
    login: str
    name: str | None = None

    @classmethod
    def from_node(cls, node: dict) -> AssignableUser:
        return cls(id=node["id"], login=node["login"], name=node.get("name"))
