"""Tests for the GitLab provider backend."""

import httpx
import pytest

from forgereview.backends.gitlab import GitLabBackend
from forgereview.backends.gitlab.backend import numeric_id, render_unified_diff
from forgereview.backends.models import (
    LocalComment,
    Milestone,
    PullRequestIdentity,
    Reply,
    ReplyBatch,
    ReviewState,
    ReviewSubmission,
)
from forgereview.utils.errors import NotFoundError, UnknownError, ValidationError

PROJECT = "/api/v4/projects/acme%2Fwidgets"
MR = f"{PROJECT}/merge_requests/42"


@pytest.fixture
def gitlab_identity():
    return PullRequestIdentity(owner="acme", repo="widgets", number=42, forge="gitlab")


@pytest.fixture
def backend(forge, gitlab_identity, diagnostics):
    return GitLabBackend(
        gitlab_identity,
        "glpat-test",
        api_url="https://gitlab.com/api/v4",
        diagnostics=diagnostics,
        client=forge.client(),
    )


@pytest.fixture
def merge_request_graph():
    return {
        "id": "gid://gitlab/MergeRequest/900",
        "iid": "42",
        "title": "Add widgets",
        "description": "Adds the widget factory",
        "state": "opened",
        "diffHeadSha": "abc123",
        "diffRefs": {"baseSha": "base0", "headSha": "abc123", "startSha": "start0"},
        "milestone": {"id": "gid://gitlab/Milestone/5", "iid": "1", "title": "v1.0"},
        "labels": {"nodes": [{"title": "enhancement", "color": "#428BCA"}]},
        "assignees": {"nodes": [{"id": "gid://gitlab/User/7", "username": "octocat", "name": "Octo"}]},
    }


def _members_page(users, end_cursor=None, has_next=False):
    return {
        "data": {
            "project": {
                "projectMembers": {
                    "pageInfo": {"hasNextPage": has_next, "endCursor": end_cursor},
                    "nodes": [{"user": user} for user in users],
                }
            }
        }
    }


class TestMetadata:
    @pytest.mark.asyncio
    async def test_fetch_full_metadata(self, backend, forge, merge_request_graph):
        forge.add(
            "POST",
            "/api/graphql",
            httpx.Response(200, json={"data": {"project": {"mergeRequest": merge_request_graph}}}),
        )

        await backend.fetch_full_metadata()

        assert backend.sha == "abc123"
        assert backend.description == "Adds the widget factory"
        assert backend.labels == {"enhancement"}
        assert backend.assignees == {"octocat"}
        assert backend.milestone == "v1.0"
        assert forge.body(forge.requests[0])["variables"] == {"fullPath": "acme/widgets", "iid": "42"}

    @pytest.mark.asyncio
    async def test_missing_merge_request(self, backend, forge):
        forge.add("POST", "/api/graphql", httpx.Response(200, json={"data": {"project": None}}))
        with pytest.raises(NotFoundError):
            await backend.fetch_full_metadata()

    @pytest.mark.asyncio
    async def test_assignable_users_skip_pending_invites(self, backend, forge):
        forge.add(
            "POST",
            "/api/graphql",
            httpx.Response(
                200,
                json=_members_page(
                    [{"id": "gid://gitlab/User/1", "username": "alice", "name": "Alice"}, None],
                    "c1",
                    True,
                ),
            ),
            httpx.Response(
                200, json=_members_page([{"id": "gid://gitlab/User/2", "username": "bob", "name": None}])
            ),
        )

        users = await backend.list_assignable_users()

        assert [(u.id, u.login) for u in users] == [
            ("gid://gitlab/User/1", "alice"),
            ("gid://gitlab/User/2", "bob"),
        ]
        assert forge.body(forge.requests[1])["variables"]["cursor"] == "c1"


class TestDiffs:
    @pytest.mark.asyncio
    async def test_fetch_diff_renders_unified_text(self, backend, forge):
        forge.add(
            "GET",
            f"{MR}/diffs",
            httpx.Response(
                200,
                json=[
                    {
                        "old_path": "app.py",
                        "new_path": "app.py",
                        "diff": "@@ -1 +1 @@\n-old\n+new\n",
                        "new_file": False,
                        "deleted_file": False,
                    },
                    {
                        "old_path": "NEWS.md",
                        "new_path": "NEWS.md",
                        "diff": "@@ -0,0 +1 @@\n+hello",
                        "new_file": True,
                        "deleted_file": False,
                    },
                ],
            ),
        )

        diff = await backend.fetch_diff()

        assert diff == (
            "diff --git a/app.py b/app.py\n--- a/app.py\n+++ b/app.py\n@@ -1 +1 @@\n-old\n+new\n"
            "diff --git a/NEWS.md b/NEWS.md\n--- /dev/null\n+++ b/NEWS.md\n@@ -0,0 +1 @@\n+hello\n"
        )

    @pytest.mark.asyncio
    async def test_fetch_commit_diff(self, backend, forge):
        forge.add(
            "GET",
            f"{PROJECT}/repository/commits/def456/diff",
            httpx.Response(
                200,
                json=[{"old_path": "gone.py", "new_path": "gone.py", "diff": "", "deleted_file": True}],
            ),
        )

        assert await backend.fetch_commit_diff("def456") == (
            "diff --git a/gone.py b/gone.py\n--- a/gone.py\n+++ /dev/null\n"
        )

    def test_render_empty(self):
        assert render_unified_diff([]) == ""

    def test_resolve_binary_file_url(self, backend):
        assert (
            backend.resolve_binary_file_url("abc123", "docs/logo.png")
            == "https://gitlab.com/acme/widgets/-/blob/abc123/docs/logo.png"
        )
        assert backend.resolve_binary_file_url("abc123", "docs/logo.png", blob=False) == (
            "https://gitlab.com/api/v4/projects/acme%2Fwidgets/repository/files/"
            "docs%2Flogo.png/raw?ref=abc123"
        )

    @pytest.mark.asyncio
    async def test_fetch_binary_file(self, backend, forge):
        forge.add(
            "GET",
            f"{PROJECT}/repository/files/docs%2Flogo.png/raw",
            httpx.Response(200, content=b"\x89PNG"),
        )
        assert await backend.fetch_binary_file("abc123", "docs/logo.png") == b"\x89PNG"


class TestOptionLists:
    @pytest.mark.asyncio
    async def test_list_labels_assignees_milestones(self, backend, forge):
        forge.add("GET", f"{PROJECT}/labels", httpx.Response(200, json=[{"name": "bug"}]))
        forge.add("GET", f"{PROJECT}/members/all", httpx.Response(200, json=[{"username": "alice"}]))
        forge.add(
            "GET", f"{PROJECT}/milestones", httpx.Response(200, json=[{"id": 12, "iid": 1, "title": "v1.0"}])
        )

        assert await backend.list_labels() == ["bug"]
        assert await backend.list_assignees() == ["alice"]
        assert await backend.list_milestones() == [Milestone(title="v1.0", number=12)]

    @pytest.mark.asyncio
    async def test_list_assignees_follows_next_links(self, backend, forge):
        next_page = f"https://gitlab.com{PROJECT}/members/all?page=2&per_page=100"
        forge.add(
            "GET",
            f"{PROJECT}/members/all",
            httpx.Response(200, json=[{"username": "alice"}], headers={"Link": f'<{next_page}>; rel="next"'}),
            httpx.Response(200, json=[{"username": "bob"}]),
        )

        assert await backend.list_assignees() == ["alice", "bob"]
        assert [r.url.params.get("page") for r in forge.requests] == [None, "2"]



class TestEdits:
    @pytest.mark.asyncio
    async def test_set_labels_replaces_the_set(self, backend, forge):
        forge.add("PUT", MR, httpx.Response(200, json={"labels": ["bug", "ui"]}))

        await backend.set_labels(["bug", "ui", "bug"])

        assert forge.body(forge.requests[0]) == {"labels": "bug,ui"}
        assert backend.labels == {"bug", "ui"}

    @pytest.mark.asyncio
    async def test_set_assignees_resolves_user_ids(self, backend, forge):
        forge.add(
            "GET",
            "/api/v4/users",
            lambda request: httpx.Response(
                200,
                json=[{"id": {"alice": 1, "bob": 2}[request.url.params["username"]]}],
            ),
        )
        forge.add("PUT", MR, httpx.Response(200, json={}))

        await backend.set_assignees(["alice", "bob"])

        assert forge.body(forge.sent("PUT", MR)[0]) == {"assignee_ids": [1, 2]}
        assert backend.assignees == {"alice", "bob"}

    @pytest.mark.asyncio
    async def test_set_assignees_unknown_user(self, backend, forge, diagnostics):
        backend.assignees = {"octocat"}
        forge.add("GET", "/api/v4/users", httpx.Response(200, json=[]))

        with pytest.raises(NotFoundError, match="ghost") as exc_info:
            await backend.set_assignees(["ghost"])

        assert exc_info.value.origin == "set-assignees"
        assert forge.sent("PUT", MR) == []
        assert backend.assignees == {"octocat"}
        (record,) = diagnostics.records
        assert record.origin == "set-assignees"
        assert record.kind == "not_found"

    @pytest.mark.asyncio
    async def test_set_milestone(self, backend, forge):
        forge.add(
            "PUT",
            MR,
            httpx.Response(200, json={"milestone": {"id": 12, "title": "v1.0"}}),
            httpx.Response(200, json={"milestone": None}),
        )

        assert await backend.set_milestone(12) is True
        assert backend.milestone == "v1.0"
        assert await backend.set_milestone(13) is False
        assert backend.milestone == "v1.0"

    @pytest.mark.asyncio
    async def test_set_title_and_description(self, backend, forge):
        forge.add("PUT", MR, httpx.Response(200, json={}), httpx.Response(200, json={}))

        await backend.set_title("Better title")
        await backend.set_description("Longer description")

        assert [forge.body(r) for r in forge.requests] == [
            {"title": "Better title"},
            {"description": "Longer description"},
        ]

    @pytest.mark.asyncio
    async def test_squash_merge(self, backend, forge):
        backend.sha = "abc123"
        forge.add("PUT", f"{MR}/merge", httpx.Response(200, json={"state": "merged"}))

        assert await backend.merge("squash") == {"state": "merged"}
        assert forge.body(forge.requests[0]) == {"squash": True, "sha": "abc123"}

    @pytest.mark.asyncio
    async def test_rebase_merge_waits_for_the_rebased_head(self, backend, forge):
        backend.sha = "stale0"
        backend.rebase_poll_interval = 0
        forge.add("PUT", f"{MR}/rebase", httpx.Response(202, json={"rebase_in_progress": True}))
        forge.add(
            "GET",
            MR,
            httpx.Response(200, json={"rebase_in_progress": True, "merge_error": None}),
            httpx.Response(
                200,
                json={"rebase_in_progress": False, "merge_error": None, "diff_refs": {"head_sha": "new-head"}},
            ),
        )
        forge.add("PUT", f"{MR}/merge", httpx.Response(200, json={"state": "merged"}))

        await backend.merge("rebase")

        assert [(r.method, r.url.raw_path.decode().split("?")[0]) for r in forge.requests] == [
            ("PUT", f"{MR}/rebase"),
            ("GET", MR),
            ("GET", MR),
            ("PUT", f"{MR}/merge"),
        ]
        assert forge.requests[1].url.params["include_rebase_in_progress"] == "true"
        assert forge.body(forge.sent("PUT", f"{MR}/merge")[0]) == {"sha": "new-head"}
        assert backend.sha == "stale0"

    @pytest.mark.asyncio
    async def test_failed_rebase_does_not_merge(self, backend, forge, diagnostics):
        backend.rebase_poll_interval = 0
        forge.add("PUT", f"{MR}/rebase", httpx.Response(202, json={"rebase_in_progress": True}))
        forge.add(
            "GET", MR, httpx.Response(200, json={"rebase_in_progress": False, "merge_error": "conflicts"})
        )

        with pytest.raises(UnknownError, match="conflicts"):
            await backend.merge("rebase")

        assert forge.sent("PUT", f"{MR}/merge") == []
        assert diagnostics.records[0].origin == "merge"

    @pytest.mark.asyncio
    async def test_rebase_that_never_finishes(self, backend, forge):
        backend.rebase_poll_interval = 0
        backend.rebase_poll_attempts = 3
        forge.add("PUT", f"{MR}/rebase", httpx.Response(202, json={"rebase_in_progress": True}))
        forge.add("GET", MR, httpx.Response(200, json={"rebase_in_progress": True}))

        with pytest.raises(UnknownError, match="still in progress"):
            await backend.merge("rebase")

        assert len(forge.sent("GET", MR)) == 3
        assert forge.sent("PUT", f"{MR}/merge") == []


class TestReactionsAndReplies:
    @pytest.mark.asyncio
    async def test_reaction_on_description_maps_emoji(self, backend, forge):
        forge.add("POST", f"{MR}/award_emoji", httpx.Response(201, json={"id": 3, "name": "thumbsup"}))

        await backend.set_reaction("pr-description", None, "+1")

        assert forge.body(forge.requests[0]) == {"name": "thumbsup"}

    @pytest.mark.asyncio
    async def test_reaction_on_note(self, backend, forge):
        forge.add("DELETE", f"{MR}/notes/77/award_emoji/3", httpx.Response(204))
        await backend.delete_reaction("code-comment", 77, 3)
        assert len(forge.requests) == 1

    @pytest.mark.asyncio
    async def test_replies_go_to_discussions(self, backend, forge, gitlab_identity):
        forge.add("POST", f"{MR}/discussions/d1/notes", httpx.Response(201, json={"id": 1}))
        forge.add("POST", f"{MR}/discussions/d2/notes", httpx.Response(201, json={"id": 2}))
        batch = ReplyBatch(
            identity=gitlab_identity, sha="abc123", replies=[Reply("d1", "one"), Reply("d2", "two")]
        )

        assert await backend.send_replies(batch) == [{"id": 1}, {"id": 2}]


class TestReviews:
    @pytest.mark.asyncio
    async def test_review_is_staged_as_drafts_then_published_and_approved(
        self, backend, forge, merge_request_graph
    ):
        forge.add(
            "POST",
            "/api/graphql",
            httpx.Response(200, json={"data": {"project": {"mergeRequest": merge_request_graph}}}),
        )
        forge.add(
            "POST",
            f"{MR}/draft_notes",
            httpx.Response(201, json={"id": 1}),
            httpx.Response(201, json={"id": 2}),
            httpx.Response(201, json={"id": 3}),
        )
        forge.add("POST", f"{MR}/draft_notes/bulk_publish", httpx.Response(204))
        forge.add("POST", f"{MR}/approve", httpx.Response(201, json={"approved": True}))
        submission = ReviewSubmission(
            state=ReviewState.APPROVE,
            feedback="Looks good",
            comments=[
                LocalComment(path="app.py", position=20, body="later"),
                LocalComment(path="app.py", position=2, body="earlier"),
            ],
        )

        result = await backend.send_review(submission)

        drafts = [forge.body(r) for r in forge.sent("POST", f"{MR}/draft_notes")]
        assert [d["note"] for d in drafts] == ["earlier", "later", "Looks good"]
        assert drafts[0]["position"] == {
            "position_type": "text",
            "base_sha": "base0",
            "start_sha": "start0",
            "head_sha": "abc123",
            "old_path": "app.py",
            "new_path": "app.py",
            "new_line": 2,
        }
        assert "position" not in drafts[2]
        assert result == {
            "state": "APPROVE",
            "drafts": [{"id": 1}, {"id": 2}, {"id": 3}],
            "approval": {"approved": True},
        }
        paths = [r.url.raw_path.decode() for r in forge.requests]
        assert paths.index(f"{MR}/draft_notes/bulk_publish") < paths.index(f"{MR}/approve")
        assert forge.body(forge.sent("POST", f"{MR}/approve")[0]) == {"sha": "abc123"}

    @pytest.mark.asyncio
    async def test_comment_only_review(self, backend, forge):
        forge.add("POST", f"{MR}/draft_notes", httpx.Response(201, json={"id": 5}))
        forge.add("POST", f"{MR}/draft_notes/bulk_publish", httpx.Response(204))

        result = await backend.send_review(ReviewSubmission(state=ReviewState.COMMENT, feedback="Hm"))

        assert result == {"state": "COMMENT", "drafts": [{"id": 5}]}
        assert forge.body(forge.requests[0]) == {"note": "Hm"}
        assert len(forge.requests) == 2

    @pytest.mark.asyncio
    async def test_rejected_comment_discards_the_staged_drafts(
        self, backend, forge, diagnostics, merge_request_graph
    ):
        await backend.store.save_raw_infos(backend.identity, merge_request_graph)
        forge.add(
            "POST",
            f"{MR}/draft_notes",
            httpx.Response(201, json={"id": 1}),
            httpx.Response(422, json={"message": {"position": ["is invalid"]}}),
        )
        forge.add("DELETE", f"{MR}/draft_notes/1", httpx.Response(204))
        submission = ReviewSubmission(
            state=ReviewState.APPROVE,
            comments=[
                LocalComment(path="app.py", position=2, body="fine"),
                LocalComment(path="app.py", position=900, body="off the diff"),
            ],
        )

        with pytest.raises(ValidationError):
            await backend.send_review(submission)

        assert len(forge.sent("POST", f"{MR}/draft_notes")) == 2
        assert len(forge.sent("DELETE", f"{MR}/draft_notes/1")) == 1
        assert forge.sent("POST", f"{MR}/draft_notes/bulk_publish") == []
        assert forge.sent("POST", f"{MR}/approve") == []
        assert diagnostics.records[0].origin == "send-review"

    @pytest.mark.asyncio
    async def test_failed_publish_discards_every_draft(self, backend, forge, merge_request_graph):
        await backend.store.save_raw_infos(backend.identity, merge_request_graph)
        forge.add(
            "POST",
            f"{MR}/draft_notes",
            httpx.Response(201, json={"id": 1}),
            httpx.Response(201, json={"id": 2}),
        )
        forge.add("POST", f"{MR}/draft_notes/bulk_publish", httpx.Response(500, json={"message": "boom"}))
        forge.add("DELETE", f"{MR}/draft_notes/1", httpx.Response(204))
        forge.add("DELETE", f"{MR}/draft_notes/2", httpx.Response(204))
        submission = ReviewSubmission(
            state=ReviewState.COMMENT,
            feedback="Summary",
            comments=[LocalComment(path="app.py", position=2, body="nit")],
        )

        with pytest.raises(UnknownError):
            await backend.send_review(submission)

        deleted = {r.url.raw_path.decode() for r in forge.requests if r.method == "DELETE"}
        assert deleted == {f"{MR}/draft_notes/1", f"{MR}/draft_notes/2"}

    @pytest.mark.asyncio
    async def test_request_review_uses_numeric_ids(self, backend, forge):
        forge.add("PUT", MR, httpx.Response(200, json={"reviewers": []}))

        await backend.request_review(["gid://gitlab/User/7", "9"])

        assert forge.body(forge.requests[0]) == {"reviewer_ids": [7, 9]}


class TestIssues:
    @pytest.mark.asyncio
    async def test_new_issue(self, backend, forge):
        forge.add("POST", f"{PROJECT}/issues", httpx.Response(201, json={"iid": 3}))

        assert await backend.new_issue("Flaky", "Fails sometimes") == {"iid": 3}
        assert forge.body(forge.requests[0]) == {"title": "Flaky", "description": "Fails sometimes"}


def test_numeric_id():
    assert numeric_id(5) == 5
    assert numeric_id("gid://gitlab/User/42") == 42
    with pytest.raises(ValueError):
        numeric_id("octocat")
