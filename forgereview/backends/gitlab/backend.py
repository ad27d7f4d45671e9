"""GitLab provider backend (REST v4 + GraphQL).

Pull requests are merge requests here, addressed by the project's full path
(owner may include subgroups) and the merge request iid. GitLab has no single
"submit review" call, so send_review stages every comment as a draft note,
publishes them in one bulk call and then approves.
"""

import asyncio
from collections.abc import Iterable
from typing import Any
from urllib.parse import quote, quote_plus

import httpx

from forgereview.backends.base import (
    ProviderBackend,
    parse_merge_strategy,
    parse_reaction_target,
    unique,
)
from forgereview.backends.gitlab.queries import (
    MERGE_REQUEST_METADATA_QUERY,
    PROJECT_MEMBERS_QUERY,
)
from forgereview.backends.models import (
    MergeStrategy,
    Milestone,
    PullRequestIdentity,
    ReactionTarget,
    ReviewState,
    ReviewSubmission,
)
from forgereview.clients.transport import ForgeTransport
from forgereview.core.batch import join_all, run_all
from forgereview.store.base import ReviewStateStore
from forgereview.utils.config import (
    get_gitlab_api_url,
    get_gitlab_graphql_url,
    get_gitlab_token,
    get_gitlab_web_url,
)
from forgereview.utils.errors import (
    DiagnosticLog,
    ForgeError,
    NotFoundError,
    UnknownError,
    record_failure,
)

DEFAULT_PER_PAGE = 100

GLOBAL_ID_PREFIX = "gid://gitlab/"

# GitHub reaction contents -> GitLab award emoji names
EMOJI_NAMES = {
    "+1": "thumbsup",
    "-1": "thumbsdown",
    "laugh": "laughing",
    "hooray": "tada",
    "confused": "confused",
    "heart": "heart",
    "rocket": "rocket",
    "eyes": "eyes",
}


def _nodes(connection: dict[str, Any] | None) -> list[dict[str, Any]]:
    return [node for node in (connection or {}).get("nodes") or [] if node is not None]


def numeric_id(user_id: int | str) -> int:
    """REST ids from either a plain id or a GraphQL global id (gid://gitlab/User/42)."""
    if isinstance(user_id, int):
        return user_id
    if user_id.startswith(GLOBAL_ID_PREFIX):
        user_id = user_id.rsplit("/", 1)[-1]
    try:
        return int(user_id)
    except ValueError:
        raise ValueError(f"Not a GitLab user id: {user_id!r}") from None


def render_unified_diff(file_diffs: list[dict[str, Any]]) -> str:
    """Assemble GitLab's per-file diff entries into one git-style unified diff."""
    chunks = []
    for entry in file_diffs:
        old_path = entry.get("old_path") or entry.get("new_path")
        new_path = entry.get("new_path") or old_path
        old_label = "/dev/null" if entry.get("new_file") else f"a/{old_path}"
        new_label = "/dev/null" if entry.get("deleted_file") else f"b/{new_path}"
        header = f"diff --git a/{old_path} b/{new_path}\n--- {old_label}\n+++ {new_label}\n"
        body = entry.get("diff") or ""
        if body and not body.endswith("\n"):
            body += "\n"
        chunks.append(header + body)
    return "".join(chunks)


class GitLabBackend(ProviderBackend):
    """A merge request on gitlab.com or a self-hosted GitLab instance."""

    forge = "gitlab"

    # Rebases run asynchronously on the server; merge waits for them to finish
    rebase_poll_interval = 1.0
    rebase_poll_attempts = 30

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
            identity: The merge request (owner = namespace path, number = iid)
            token: Personal or OAuth access token with api scope. Defaults to GITLAB_TOKEN.
            api_url: REST API root, defaults to GITLAB_API_URL or https://gitlab.com/api/v4
            web_url: Browsable host, derived from api_url when omitted
            store: Review-state store for raw infos
            diagnostics: Sink for classified failures
            client: Pre-built httpx client
            timeout: Default per-request timeout in seconds
        """
        self.api_url = (api_url or get_gitlab_api_url()).rstrip("/")
        self.web_url = (web_url or get_gitlab_web_url(self.api_url)).rstrip("/")
        transport = ForgeTransport(
            token or get_gitlab_token() or "",
            self.api_url,
            get_gitlab_graphql_url(self.api_url),
            headers={"Accept": "application/json"},
            timeout=timeout,
            client=client,
        )
        super().__init__(identity, transport, store=store, diagnostics=diagnostics)

    @property
    def _project_path(self) -> str:
        return f"/projects/{quote_plus(self.identity.full_name)}"

    @property
    def _mr_path(self) -> str:
        return f"{self._project_path}/merge_requests/{self.identity.number}"

    # ========== Metadata ==========

    async def _fetch_metadata_graph(self) -> dict[str, Any]:
        variables = {"fullPath": self.identity.full_name, "iid": str(self.identity.number)}
        data = await self._settle(
            self.transport.graphql(MERGE_REQUEST_METADATA_QUERY, variables),
            "fetch-full-metadata",
        )
        merge_request = ((data or {}).get("project") or {}).get("mergeRequest")
        if merge_request is None:
            error = NotFoundError(
                f"fetch-full-metadata: merge request {self.identity} not found",
                origin="fetch-full-metadata",
                raw=data,
            )
            record_failure(error, self.diagnostics)
            raise error
        return merge_request

    def _refresh_fields(self, graph: dict[str, Any]) -> None:
        self.sha = graph.get("diffHeadSha", self.sha)
        self.title = graph.get("title", self.title)
        self.description = graph.get("description", self.description)
        self.state = graph.get("state", self.state)
        if "labels" in graph:
            self.labels = {label["title"] for label in _nodes(graph["labels"])}
        if "assignees" in graph:
            self.assignees = {user["username"] for user in _nodes(graph["assignees"])}
        if "milestone" in graph:
            self.milestone = (graph["milestone"] or {}).get("title")

    async def _fetch_assignable_users_page(self, cursor: str | None) -> dict[str, Any]:
        variables = {"fullPath": self.identity.full_name, "cursor": cursor}
        data = await self._settle(
            self.transport.graphql(PROJECT_MEMBERS_QUERY, variables), "list-assignable-users"
        )
        members = ((data or {}).get("project") or {}).get("projectMembers") or {}
        if "nodes" not in members:
            return members

        # Members without a user (pending invites) become None and are dropped upstream
        nodes = []
        for member in members["nodes"]:
            user = (member or {}).get("user")
            nodes.append(
                {"id": user["id"], "login": user["username"], "name": user.get("name")}
                if user
                else None
            )
        return {**members, "nodes": nodes}

    # ========== Diffs and files ==========

    async def fetch_diff(self) -> str:
        file_diffs = await self._get_all_pages(
            f"{self._mr_path}/diffs", "fetch-diff", params={"per_page": DEFAULT_PER_PAGE}
        )
        return render_unified_diff(file_diffs)

    async def fetch_commit_diff(self, sha: str) -> str:
        file_diffs = await self._get_all_pages(
            f"{self._project_path}/repository/commits/{sha}/diff",
            "fetch-commit-diff",
            params={"per_page": DEFAULT_PER_PAGE},
        )
        return render_unified_diff(file_diffs)

    def resolve_binary_file_url(self, sha: str, filename: str, blob: bool = True) -> str:
        if blob:
            path = quote(filename, safe="/")
            return f"{self.web_url}/{self.identity.full_name}/-/blob/{sha}/{path}"
        encoded_file_path = quote(filename, safe="")
        files_path = f"{self._project_path}/repository/files/{encoded_file_path}"
        return f"{self.api_url}{files_path}/raw?ref={sha}"

    async def fetch_binary_file(self, sha: str, filename: str) -> bytes:
        url = self.resolve_binary_file_url(sha, filename, blob=False)
        return await self._settle(
            self.transport.rest("GET", url, accept="*/*", raw=True), "fetch-binary-file"
        )

    # ========== Option lists ==========

    async def list_labels(self) -> list[str]:
        labels = await self._get_all_pages(
            f"{self._project_path}/labels", "list-labels", params={"per_page": DEFAULT_PER_PAGE}
        )
        return [label["name"] for label in labels]

    async def list_assignees(self) -> list[str]:
        members = await self._get_all_pages(
            f"{self._project_path}/members/all",
            "list-assignees",
            params={"per_page": DEFAULT_PER_PAGE},
        )
        return [member["username"] for member in members]

    async def list_milestones(self) -> list[Milestone]:
        """Milestones of the project. number is the global id that set_milestone takes."""
        milestones = await self._get_all_pages(
            f"{self._project_path}/milestones",
            "list-milestones",
            params={"per_page": DEFAULT_PER_PAGE},
        )
        return [Milestone(title=m["title"], number=m["id"]) for m in milestones]

    # ========== Edits ==========

    async def _update_merge_request(self, payload: dict[str, Any], origin: str) -> dict[str, Any]:
        return await self._settle(
            self.transport.rest("PUT", self._mr_path, payload=payload), origin
        )

    async def _lookup_user_id(self, username: str) -> int:
        users = await self._settle(
            self.transport.rest("GET", "/users", params={"username": username}), "lookup-user"
        )
        if not users:
            error = NotFoundError(
                f"set-assignees: unknown GitLab user {username}",
                origin="set-assignees",
                raw=username,
            )
            record_failure(error, self.diagnostics)
            raise error
        return users[0]["id"]

    async def set_labels(self, labels: Iterable[str]) -> None:
        desired = unique(labels)
        # "labels" replaces the whole set; an empty string clears it
        await self._update_merge_request({"labels": ",".join(desired)}, "set-labels")
        self.labels = set(desired)

    async def set_assignees(self, assignees: Iterable[str]) -> None:
        desired = unique(assignees)
        user_ids = await join_all([self._lookup_user_id(login) for login in desired], "lookup-users")
        await self._update_merge_request({"assignee_ids": user_ids}, "set-assignees")
        self.assignees = set(desired)

    async def set_milestone(self, milestone_number: int) -> bool:
        merge_request = await self._update_merge_request(
            {"milestone_id": milestone_number}, "set-milestone"
        )
        milestone = (merge_request or {}).get("milestone")
        if not milestone:
            self.logger.warning(
                f"Milestone {milestone_number} was not set, the server did not echo it back"
            )
            return False
        self.milestone = milestone.get("title")
        return True

    async def set_title(self, title: str) -> None:
        await self._update_merge_request({"title": title}, "set-title")
        self.title = title

    async def set_description(self, description: str) -> None:
        await self._update_merge_request({"description": description}, "set-description")
        self.description = description

    async def merge(self, strategy: str | MergeStrategy) -> dict[str, Any]:
        strategy = parse_merge_strategy(strategy)
        payload: dict[str, Any] = {}
        if strategy == MergeStrategy.SQUASH:
            payload["squash"] = True
        if strategy == MergeStrategy.REBASE:
            await self._settle(self.transport.rest("PUT", f"{self._mr_path}/rebase"), "merge")
            head_sha = await self._wait_for_rebase()
            if head_sha:
                payload["sha"] = head_sha
        elif self.sha:
            payload["sha"] = self.sha
        return await self._settle(
            self.transport.rest("PUT", f"{self._mr_path}/merge", payload=payload), "merge"
        )

    async def _wait_for_rebase(self) -> str | None:
        """Poll the merge request until its rebase settles and return the rebased head sha."""
        for attempt in range(self.rebase_poll_attempts):
            merge_request = await self._settle(
                self.transport.rest(
                    "GET", self._mr_path, params={"include_rebase_in_progress": "true"}
                ),
                "merge",
            )
            merge_request = merge_request or {}
            if not merge_request.get("rebase_in_progress"):
                if merge_request.get("merge_error"):
                    error = UnknownError(
                        f"merge: rebase failed: {merge_request['merge_error']}",
                        origin="merge",
                        raw=merge_request,
                    )
                    record_failure(error, self.diagnostics)
                    raise error
                return (merge_request.get("diff_refs") or {}).get("head_sha") or merge_request.get(
                    "sha"
                )
            self.logger.debug(f"Rebase still in progress (attempt {attempt + 1})")
            await asyncio.sleep(self.rebase_poll_interval)

        error = UnknownError(
            f"merge: rebase still in progress after {self.rebase_poll_attempts} checks",
            origin="merge",
        )
        record_failure(error, self.diagnostics)
        raise error

    # ========== Reactions ==========

    def _award_emoji_path(self, target: str | ReactionTarget, subject_id: int | str | None) -> str:
        target = parse_reaction_target(target)
        if target == ReactionTarget.PR_DESCRIPTION:
            return f"{self._mr_path}/award_emoji"
        if subject_id is None:
            raise ValueError(f"A note id is required for {target.value} reactions")
        return f"{self._mr_path}/notes/{subject_id}/award_emoji"

    async def set_reaction(
        self, target: str | ReactionTarget, subject_id: int | str | None, content: str
    ) -> dict[str, Any]:
        name = EMOJI_NAMES.get(content, content)
        return await self._settle(
            self.transport.rest(
                "POST", self._award_emoji_path(target, subject_id), payload={"name": name}
            ),
            "set-reaction",
        )

    async def delete_reaction(
        self, target: str | ReactionTarget, subject_id: int | str | None, reaction_id: int | str
    ) -> None:
        await self._settle(
            self.transport.rest(
                "DELETE", f"{self._award_emoji_path(target, subject_id)}/{reaction_id}"
            ),
            "delete-reaction",
        )

    # ========== Reviews ==========

    async def _send_reply(self, reply_to_id: int | str, body: str) -> Any:
        return await self._settle(
            self.transport.rest(
                "POST",
                f"{self._mr_path}/discussions/{reply_to_id}/notes",
                payload={"body": body},
            ),
            "send-reply",
        )

    async def send_review(self, submission: ReviewSubmission) -> dict[str, Any]:
        """Stage the review as draft notes, publish them together, then approve.

        Inline comments are staged in position order, followed by the feedback.
        If staging or publishing fails, the drafts staged so far are deleted so
        nothing of the review becomes visible, and the error is re-raised.
        Inline comment positions are new-file line numbers on GitLab.
        """
        comments = submission.ordered_comments()
        self.logger.info(
            f"Submitting {submission.state.value} review with {len(comments)} comment(s)"
        )

        notes: list[dict[str, Any]] = []
        if comments:
            raw_infos = await self._ensure_raw_infos()
            if "diffRefs" not in raw_infos:
                raw_infos = await self.fetch_full_metadata()
            diff_refs = raw_infos.get("diffRefs") or {}
            for comment in comments:
                position = {
                    "position_type": "text",
                    "base_sha": diff_refs.get("baseSha"),
                    "start_sha": diff_refs.get("startSha"),
                    "head_sha": diff_refs.get("headSha"),
                    "old_path": comment.path,
                    "new_path": comment.path,
                    "new_line": comment.position,
                }
                notes.append({"note": comment.body, "position": position})
        if submission.feedback:
            notes.append({"note": submission.feedback})

        result: dict[str, Any] = {"state": submission.state.value, "drafts": []}
        if notes:
            try:
                for note in notes:
                    draft = await self._settle(
                        self.transport.rest("POST", f"{self._mr_path}/draft_notes", payload=note),
                        "send-review",
                    )
                    result["drafts"].append(draft)
                await self._settle(
                    self.transport.rest("POST", f"{self._mr_path}/draft_notes/bulk_publish"),
                    "send-review",
                )
            except ForgeError:
                await self._discard_drafts(result["drafts"])
                raise

        if submission.state == ReviewState.APPROVE:
            payload = {"sha": self.sha} if self.sha else None
            result["approval"] = await self._settle(
                self.transport.rest("POST", f"{self._mr_path}/approve", payload=payload),
                "send-review",
            )
        return result

    async def _discard_drafts(self, drafts: list[dict[str, Any]]) -> None:
        draft_ids = [draft["id"] for draft in drafts if draft and "id" in draft]
        if not draft_ids:
            return
        outcome = await run_all(
            [
                self._settle(
                    self.transport.rest("DELETE", f"{self._mr_path}/draft_notes/{draft_id}"),
                    "send-review",
                )
                for draft_id in draft_ids
            ],
            "discard-drafts",
        )
        if outcome.errors:
            self.logger.warning(
                f"Could not discard {len(outcome.errors)} of {len(draft_ids)} draft note(s)"
            )

    async def request_review(self, user_ids: list[str]) -> dict[str, Any]:
        reviewer_ids = [numeric_id(user_id) for user_id in user_ids]
        return await self._update_merge_request({"reviewer_ids": reviewer_ids}, "request-review")

    # ========== Issues ==========

    async def new_issue(self, title: str, body: str) -> dict[str, Any]:
        return await self._settle(
            self.transport.rest(
                "POST",
                f"{self._project_path}/issues",
                payload={"title": title, "description": body},
            ),
            "new-issue",
        )

    async def new_issue_comment(self, body: str) -> dict[str, Any]:
        return await self._settle(
            self.transport.rest("POST", f"{self._mr_path}/notes", payload={"body": body}),
            "new-issue-comment",
        )
