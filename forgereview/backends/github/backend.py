"""GitHub provider backend (REST v3 + GraphQL v4)."""

from collections.abc import Iterable
from typing import Any
from urllib.parse import quote

import httpx

from forgereview.backends.base import (
    ProviderBackend,
    parse_merge_strategy,
    parse_reaction_target,
    unique,
)
from forgereview.backends.github.queries import (
    ASSIGNABLE_USERS_QUERY,
    PULL_REQUEST_METADATA_QUERY,
    REQUEST_REVIEWS_MUTATION,
)
from forgereview.backends.models import (
    MergeStrategy,
    Milestone,
    PullRequestIdentity,
    ReactionTarget,
    ReviewSubmission,
)
from forgereview.clients.transport import ForgeTransport
from forgereview.store.base import ReviewStateStore
from forgereview.utils.config import (
    get_github_api_url,
    get_github_graphql_url,
    get_github_token,
    get_github_web_url,
)
from forgereview.utils.errors import DiagnosticLog, NotFoundError, record_failure

GITHUB_JSON = "application/vnd.github+json"
GITHUB_DIFF = "application/vnd.github.v3.diff"
GITHUB_RAW = "application/vnd.github.raw"
GITHUB_API_VERSION = "2022-11-28"

LIST_PAGE_SIZE = 100


def _nodes(connection: dict[str, Any] | None) -> list[dict[str, Any]]:
    return [node for node in (connection or {}).get("nodes") or [] if node is not None]


class GitHubBackend(ProviderBackend):
    """A pull request on github.com or a GitHub Enterprise host."""

    forge = "github"

    def __init__(
        self,
        identity: PullRequestIdentity,
        token: str | None = None,
        *,
        api_url: str | None = None,
        web_url: str | None = None,
        store: ReviewStateStore | None = None,
        diagnostics: DiagnosticLog | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        """Initialize the backend.

        Args:
            identity: The pull request this backend addresses
            token: Token with repository contents + issues read/write scope.
                Defaults to GITHUB_TOKEN.
            api_url: REST API root, defaults to GITHUB_API_URL or https://api.github.com
            web_url: Browsable host, derived from api_url when omitted
            store: Review-state store for raw infos
            diagnostics: Sink for classified failures
            client: Pre-built httpx client (tests inject a MockTransport here)
            timeout: Default per-request timeout in seconds
        """
        self.api_url = (api_url or get_github_api_url()).rstrip("/")
        self.web_url = (web_url or get_github_web_url(self.api_url)).rstrip("/")
        transport = ForgeTransport(
            token or get_github_token() or "",
            self.api_url,
            get_github_graphql_url(self.api_url),
            headers={"Accept": GITHUB_JSON, "X-GitHub-Api-Version": GITHUB_API_VERSION},
            timeout=timeout,
            client=client,
        )
        super().__init__(identity, transport, store=store, diagnostics=diagnostics)

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.identity.owner}/{self.identity.repo}"

    @property
    def _issue_path(self) -> str:
        return f"{self._repo_path}/issues/{self.identity.number}"

    @property
    def _pull_path(self) -> str:
        return f"{self._repo_path}/pulls/{self.identity.number}"

    @property
    def _graphql_variables(self) -> dict[str, Any]:
        return {
            "repo": self.identity.repo,
            "owner": self.identity.owner,
            "number": self.identity.number,
        }

    # ========== Metadata ==========

    async def _fetch_metadata_graph(self) -> dict[str, Any]:
        data = await self._settle(
            self.transport.graphql(PULL_REQUEST_METADATA_QUERY, self._graphql_variables),
            "fetch-full-metadata",
        )
        pull_request = ((data or {}).get("repository") or {}).get("pullRequest")
        if pull_request is None:
            error = NotFoundError(
                f"fetch-full-metadata: pull request {self.identity} not found",
                origin="fetch-full-metadata",
                raw=data,
            )
            record_failure(error, self.diagnostics)
            raise error
        return pull_request

    def _refresh_fields(self, graph: dict[str, Any]) -> None:
        self.sha = graph.get("headRefOid", self.sha)
        self.title = graph.get("title", self.title)
        self.description = graph.get("body", self.description)
        self.state = graph.get("state", self.state)
        if "labels" in graph:
            self.labels = {label["name"] for label in _nodes(graph["labels"])}
        if "assignees" in graph:
            self.assignees = {user["login"] for user in _nodes(graph["assignees"])}
        if "milestone" in graph:
            self.milestone = (graph["milestone"] or {}).get("title")

    async def _fetch_assignable_users_page(self, cursor: str | None) -> dict[str, Any]:
        variables = {"repo": self.identity.repo, "owner": self.identity.owner, "cursor": cursor}
        data = await self._settle(
            self.transport.graphql(ASSIGNABLE_USERS_QUERY, variables), "list-assignable-users"
        )
        return ((data or {}).get("repository") or {}).get("assignableUsers") or {}

    # ========== Diffs and files ==========

    async def fetch_diff(self) -> str:
        return await self._settle(
            self.transport.rest("GET", self._pull_path, accept=GITHUB_DIFF), "fetch-diff"
        )

    async def fetch_commit_diff(self, sha: str) -> str:
        return await self._settle(
            self.transport.rest("GET", f"{self._repo_path}/commits/{sha}", accept=GITHUB_DIFF),
            "fetch-commit-diff",
        )

    def resolve_binary_file_url(self, sha: str, filename: str, blob: bool = True) -> str:
        path = quote(filename, safe="/")
        if blob:
            return f"{self.web_url}/{self.identity.owner}/{self.identity.repo}/blob/{sha}/{path}"
        return f"{self.api_url}{self._repo_path}/contents/{path}?ref={sha}"

    async def fetch_binary_file(self, sha: str, filename: str) -> bytes:
        url = self.resolve_binary_file_url(sha, filename, blob=False)
        return await self._settle(
            self.transport.rest("GET", url, accept=GITHUB_RAW, raw=True), "fetch-binary-file"
        )

    # ========== Option lists ==========

    async def list_labels(self) -> list[str]:
        labels = await self._get_all_pages(
            f"{self._repo_path}/labels", "list-labels", params={"per_page": LIST_PAGE_SIZE}
        )
        return [label["name"] for label in labels]

    async def list_assignees(self) -> list[str]:
        users = await self._get_all_pages(
            f"{self._repo_path}/assignees", "list-assignees", params={"per_page": LIST_PAGE_SIZE}
        )
        return [user["login"] for user in users]

    async def list_milestones(self) -> list[Milestone]:
        milestones = await self._get_all_pages(
            f"{self._repo_path}/milestones", "list-milestones", params={"per_page": LIST_PAGE_SIZE}
        )
        return [Milestone(title=m["title"], number=m["number"]) for m in milestones]

    # ========== Edits ==========

    async def _ensure_metadata_key(self, key: str) -> None:
        """Fetch metadata when neither memory nor the store knows the current `key`."""
        raw_infos = await self._ensure_raw_infos()
        if key not in raw_infos:
            await self.fetch_full_metadata()

    async def set_labels(self, labels: Iterable[str]) -> None:
        desired = unique(labels)
        await self._ensure_metadata_key("labels")
        # Add when the PR has no labels yet, otherwise replace the whole set
        method = "PUT" if self.labels else "POST"
        await self._settle(
            self.transport.rest(method, f"{self._issue_path}/labels", payload={"labels": desired}),
            "set-labels",
        )
        self.labels = set(desired)
        await self._update_raw_infos(labels={"nodes": [{"name": name} for name in desired]})

    async def set_assignees(self, assignees: Iterable[str]) -> None:
        desired = unique(assignees)
        await self._ensure_metadata_key("assignees")
        if self.assignees:
            call = self.transport.rest("PATCH", self._issue_path, payload={"assignees": desired})
        else:
            call = self.transport.rest(
                "POST", f"{self._issue_path}/assignees", payload={"assignees": desired}
            )
        await self._settle(call, "set-assignees")
        self.assignees = set(desired)
        await self._update_raw_infos(assignees={"nodes": [{"login": login} for login in desired]})

    async def set_milestone(self, milestone_number: int) -> bool:
        issue = await self._settle(
            self.transport.rest("PATCH", self._issue_path, payload={"milestone": milestone_number}),
            "set-milestone",
        )
        milestone = (issue or {}).get("milestone")
        if not milestone:
            self.logger.warning(
                f"Milestone {milestone_number} was not set, the server did not echo it back"
            )
            return False
        self.milestone = milestone.get("title")
        return True

    async def set_title(self, title: str) -> None:
        await self._settle(
            self.transport.rest("PATCH", self._pull_path, payload={"title": title}), "set-title"
        )
        self.title = title

    async def set_description(self, description: str) -> None:
        await self._settle(
            self.transport.rest("PATCH", self._pull_path, payload={"body": description}),
            "set-description",
        )
        self.description = description

    async def merge(self, strategy: str | MergeStrategy) -> dict[str, Any]:
        merge_method = parse_merge_strategy(strategy)
        return await self._settle(
            self.transport.rest(
                "PUT", f"{self._pull_path}/merge", payload={"merge_method": merge_method.value}
            ),
            "merge",
        )

    # ========== Reactions ==========

    def _reactions_path(self, target: str | ReactionTarget, subject_id: int | str | None) -> str:
        target = parse_reaction_target(target)
        if target == ReactionTarget.PR_DESCRIPTION:
            return f"{self._issue_path}/reactions"
        if subject_id is None:
            raise ValueError(f"A comment id is required for {target.value} reactions")
        if target == ReactionTarget.ISSUE_COMMENT:
            return f"{self._repo_path}/issues/comments/{subject_id}/reactions"
        return f"{self._repo_path}/pulls/comments/{subject_id}/reactions"

    async def set_reaction(
        self, target: str | ReactionTarget, subject_id: int | str | None, content: str
    ) -> dict[str, Any]:
        return await self._settle(
            self.transport.rest(
                "POST", self._reactions_path(target, subject_id), payload={"content": content}
            ),
            "set-reaction",
        )

    async def delete_reaction(
        self, target: str | ReactionTarget, subject_id: int | str | None, reaction_id: int | str
    ) -> None:
        await self._settle(
            self.transport.rest(
                "DELETE", f"{self._reactions_path(target, subject_id)}/{reaction_id}"
            ),
            "delete-reaction",
        )

    # ========== Reviews ==========

    async def _send_reply(self, reply_to_id: int | str, body: str) -> Any:
        return await self._settle(
            self.transport.rest(
                "POST", f"{self._pull_path}/comments/{reply_to_id}/replies", payload={"body": body}
            ),
            "send-reply",
        )

    async def send_review(self, submission: ReviewSubmission) -> dict[str, Any]:
        payload: dict[str, Any] = {"event": submission.state.value}
        if self.sha:
            payload["commit_id"] = self.sha
        if submission.feedback:
            payload["body"] = submission.feedback
        comments = submission.ordered_comments()
        if comments:
            payload["comments"] = [
                {"path": c.path, "position": c.position, "body": c.body} for c in comments
            ]

        self.logger.info(
            f"Submitting {submission.state.value} review with {len(comments)} comment(s)"
        )
        return await self._settle(
            self.transport.rest("POST", f"{self._pull_path}/reviews", payload=payload),
            "send-review",
        )

    async def request_review(self, user_ids: list[str]) -> dict[str, Any]:
        await self._ensure_metadata_key("id")
        variables = {"input": {"pullRequestId": self.raw_infos["id"], "userIds": list(user_ids)}}
        return await self._settle(
            self.transport.graphql(REQUEST_REVIEWS_MUTATION, variables), "request-review"
        )

    # ========== Issues ==========

    async def new_issue(self, title: str, body: str) -> dict[str, Any]:
        return await self._settle(
            self.transport.rest(
                "POST", f"{self._repo_path}/issues", payload={"title": title, "body": body}
            ),
            "new-issue",
        )

    async def new_issue_comment(self, body: str) -> dict[str, Any]:
        return await self._settle(
            self.transport.rest("POST", f"{self._issue_path}/comments", payload={"body": body}),
            "new-issue-comment",
        )
