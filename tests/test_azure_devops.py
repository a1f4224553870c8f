"""
Tests for the Azure DevOps API Client

All HTTP traffic goes to an in-memory MockTransport.
"""

import base64
import json

import httpx
import pytest

from azdo_reviewer.models import ChangeEntry, PRCreateParams, ThreadStatus
from azdo_reviewer.services.azure_devops import (
    AzureDevOpsAuthError,
    AzureDevOpsError,
    AzureDevOpsForbiddenError,
    AzureDevOpsNotFoundError,
    AzureDevOpsRetryableError,
    change_from_api,
)

from conftest import PR_PATH, REPO_PATH

ITEMS_PATH = f"{REPO_PATH}/items"


def serve_files(files: dict):
    """Items endpoint answering from a path -> content mapping."""
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.params["path"]
        if path not in files:
            return httpx.Response(404, json={"message": "Item not found"})
        return httpx.Response(200, text=files[path])
    return handler


class TestChangeFromApi:

    def test_nested_item_path(self):
        change = change_from_api({"item": {"path": "/a.py"}, "changeType": "add"})

        assert change.path == "/a.py"
        assert change.change_type == "add"

    def test_string_item_and_flat_path(self):
        assert change_from_api({"item": "/b.py"}).path == "/b.py"
        assert change_from_api({"path": "/c.py"}).path == "/c.py"

    def test_rename_and_commits(self):
        change = change_from_api(
            {
                "item": {"path": "/new.py"},
                "changeType": "rename",
                "sourceServerItem": "/old.py",
                "sourceCommit": {"commitId": "s1"},
            },
            target_commit="t-fallback",
        )

        assert change.original_path == "/old.py"
        assert change.source_commit == "s1"
        assert change.target_commit == "t-fallback"
        assert change.change_type == "rename"

    def test_missing_path(self):
        assert change_from_api({"changeType": "edit"}) is None


class TestRequests:

    async def test_auth_header_and_api_version(self, azure_client, azure_stub, pr_params, sample_pr_payload):
        azure_stub.add("GET", PR_PATH, json=sample_pr_payload)

        await azure_client.get_pr_details(pr_params)

        request = azure_stub.requests[0]
        expected = base64.b64encode(b":test-pat").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert request.url.params["api-version"] == "7.0"
        assert "Web%20App" in str(request.url)

    @pytest.mark.parametrize("status_code,error_cls,message", [
        (401, AzureDevOpsAuthError, "Unauthorized: Invalid PAT or insufficient permissions."),
        (403, AzureDevOpsForbiddenError, "Forbidden:"),
        (404, AzureDevOpsNotFoundError, "Not Found (404):"),
        (400, AzureDevOpsError, "Azure DevOps Error (400): Bad branch"),
    ])
    async def test_error_mapping(self, azure_client, azure_stub, pr_params, status_code, error_cls, message):
        azure_stub.add("GET", PR_PATH, json={"message": "Bad branch"}, status_code=status_code)

        with pytest.raises(error_cls) as exc_info:
            await azure_client.get_pr_details(pr_params)

        assert str(exc_info.value).startswith(message)
        assert exc_info.value.status_code == status_code
        # Client errors are not retried
        assert len(azure_stub.requests) == 1

    async def test_not_found_includes_upstream_message(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", PR_PATH, json={"message": "TF401180: PR 42 not found"}, status_code=404)

        with pytest.raises(AzureDevOpsNotFoundError, match="TF401180"):
            await azure_client.get_pr_details(pr_params)

    async def test_server_errors_are_retried(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", PR_PATH, text="upstream down", status_code=503)

        with pytest.raises(AzureDevOpsRetryableError, match=r"Azure DevOps Error \(503\)"):
            await azure_client.get_pr_details(pr_params)

        # max_retries=2 in the test settings
        assert len(azure_stub.requests) == 2

    async def test_retry_recovers(self, azure_client, azure_stub, pr_params, sample_pr_payload):
        responses = [httpx.Response(429, json={"message": "slow down"}), httpx.Response(200, json=sample_pr_payload)]
        azure_stub.add("GET", PR_PATH, lambda request: responses.pop(0))

        info = await azure_client.get_pr_details(pr_params)

        assert info.title == "Add login page"


class TestPullRequestAnalysis:

    async def test_get_pr_details(self, azure_client, azure_stub, pr_params, sample_pr_payload):
        azure_stub.add("GET", PR_PATH, json=sample_pr_payload)

        info = await azure_client.get_pr_details(pr_params)

        assert info.title == "Add login page"
        assert info.created_by == "Dana Developer"
        assert info.source_branch == "feature/123-login"
        assert info.target_branch == "main"
        assert info.status == "active"

    async def test_get_pr_details_defaults(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", PR_PATH, json={"title": "T", "status": "abandoned"})

        info = await azure_client.get_pr_details(pr_params)

        assert info.description == "No description provided."
        assert info.created_by == "Unknown"
        assert info.source_branch == "unknown"
        assert info.is_abandoned

    async def test_metadata_from_latest_iteration(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", f"{PR_PATH}/iterations", json={"value": [
            {"id": 1, "sourceRefCommit": {"commitId": "old"}},
            {"id": 2, "sourceRefCommit": {"commitId": "abc123"}},
        ]})
        azure_stub.add("GET", f"{PR_PATH}/iterations/2/changes", json={"changeEntries": [
            {"item": {"path": "/src/a.py"}, "changeType": "edit"},
            {"item": {"path": "/src/b.py"}, "changeType": "delete"},
            {"changeType": "edit"},
        ]})

        commit_id, changes = await azure_client.get_pr_metadata(pr_params)

        assert commit_id == "abc123"
        assert [c.path for c in changes] == ["/src/a.py", "/src/b.py"]
        assert changes[1].change_type == "delete"

    async def test_metadata_falls_back_to_pr_changes(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", f"{PR_PATH}/iterations", json={"message": "nope"}, status_code=403)
        azure_stub.add("GET", f"{PR_PATH}/changes", json={"value": [{"path": "/readme.md"}]})

        commit_id, changes = await azure_client.get_pr_metadata(pr_params)

        assert commit_id is None
        assert [c.path for c in changes] == ["/readme.md"]

    async def test_fetch_batch_contents(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", ITEMS_PATH, serve_files({
            "/src/a.py": "print('a')",
            "/img/logo.png": "PNG\u0000\u0001",
            "/big.txt": "x" * 1500,
        }))
        changes = [
            ChangeEntry(path="/src/a.py"),
            ChangeEntry(path="/img/logo.png", change_type="add"),
            ChangeEntry(path="/big.txt"),
            ChangeEntry(path="/gone.py", change_type="delete"),
            ChangeEntry(path="/missing.py"),
        ]

        files = await azure_client.fetch_batch_contents(pr_params, changes, "abc123")

        assert [f.path for f in files] == [c.path for c in changes]
        assert files[0].content == "print('a')"
        assert files[1].content == "[Binary File - Skipping analysis]"
        assert files[2].content == "x" * 1000 + "\n... [TRUNCATED]"
        assert files[3].content == ""
        assert files[4].content == ""

        item_requests = azure_stub.calls("GET", ITEMS_PATH)
        assert len(item_requests) == 4
        assert item_requests[0].url.params["versionDescriptor.version"] == "abc123"
        assert item_requests[0].url.params["versionDescriptor.versionType"] == "commit"

    async def test_fetch_error_marker(self, azure_client, azure_stub, pr_params):
        def broken(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        azure_stub.add("GET", ITEMS_PATH, broken)

        files = await azure_client.fetch_batch_contents(pr_params, [ChangeEntry(path="/a.py")], None)

        assert files[0].content == "[Error fetching content]"


class TestManualReview:

    async def test_review_details(self, azure_client, azure_stub, pr_params, sample_pr_payload):
        azure_stub.add("GET", PR_PATH, json=sample_pr_payload)
        azure_stub.add("GET", f"{PR_PATH}/threads", json={"value": [
            {
                "id": 7,
                "status": "active",
                "comments": [
                    {"id": 1, "author": {"displayName": "Riley"}, "content": "Why?"},
                    {"id": 2, "content": "Because."},
                ],
                "threadContext": {"filePath": "/src/a.py", "rightFileStart": {"line": 3, "offset": 1}},
            },
            {"id": 8, "comments": [{"id": 3, "content": "System note"}]},
        ]})

        details = await azure_client.get_review_details(pr_params)

        assert details.pull_request_id == 42
        assert details.created_by.unique_name == "dana@contoso.com"
        assert details.merge_status == "succeeded"
        assert details.reviewers[0].reviewer.display_name == "Riley Reviewer"
        assert details.reviewers[0].vote == 10
        assert details.reviewers[0].is_required is True
        assert details.threads[0].thread_context.file_path == "/src/a.py"
        assert details.threads[0].thread_context.right_file_start.line == 3
        assert details.threads[0].comments[1].author.display_name == "Unknown"
        assert details.threads[1].status is None
        assert details.threads[1].thread_context is None
        assert details.project.name == "Web App"

    async def test_review_details_uses_embedded_threads(self, azure_client, azure_stub, pr_params, sample_pr_payload):
        azure_stub.add("GET", PR_PATH, json=dict(sample_pr_payload, threads=[], mergeStatus=None))

        details = await azure_client.get_review_details(pr_params)

        assert details.threads == []
        assert details.merge_status == "unknown"
        assert azure_stub.calls("GET", f"{PR_PATH}/threads") == []

    async def test_submit_vote_resolves_me(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", "/contoso/_apis/connectionData", json={"authenticatedUser": {"id": "user-9"}})
        azure_stub.add("PUT", f"{PR_PATH}/reviewers/user-9", json={"vote": 5})

        await azure_client.submit_vote(pr_params, 5)

        request = azure_stub.calls("PUT", f"{PR_PATH}/reviewers/user-9")[0]
        assert json.loads(request.content)["vote"] == 5

    async def test_submit_vote_for_explicit_reviewer(self, azure_client, azure_stub, pr_params):
        azure_stub.add("PUT", f"{PR_PATH}/reviewers/abc", json={"vote": -10})

        await azure_client.submit_vote(pr_params, -10, reviewer_id="abc")

        assert azure_stub.calls("GET", "/contoso/_apis/connectionData") == []

    async def test_create_comment_thread_on_line(self, azure_client, azure_stub, pr_params):
        azure_stub.add("POST", f"{PR_PATH}/threads", json={
            "id": 11,
            "status": "active",
            "comments": [{"id": 1, "content": "Rename this", "author": {"displayName": "Me"}}],
            "threadContext": {"filePath": "/src/a.py", "rightFileStart": {"line": 4, "offset": 1}},
        })

        thread = await azure_client.create_comment_thread(pr_params, "Rename this", "/src/a.py", 4)

        assert thread.id == 11
        body = json.loads(azure_stub.requests[0].content)
        assert body["status"] == "active"
        assert body["comments"] == [{"content": "Rename this", "commentType": 1}]
        assert body["threadContext"]["rightFileStart"] == {"line": 4, "offset": 1}
        assert body["threadContext"]["rightFileEnd"] == {"line": 4, "offset": 1}

    async def test_create_general_comment(self, azure_client, azure_stub, pr_params):
        azure_stub.add("POST", f"{PR_PATH}/threads", json={"id": 12, "comments": []})

        await azure_client.create_comment_thread(pr_params, "Looks good")

        assert "threadContext" not in json.loads(azure_stub.requests[0].content)

    async def test_reply_and_status(self, azure_client, azure_stub, pr_params):
        azure_stub.add("POST", f"{PR_PATH}/threads/7/comments", json={"id": 5, "content": "Done"})
        azure_stub.add("PATCH", f"{PR_PATH}/threads/7", json={"id": 7, "status": "fixed"})

        comment = await azure_client.reply_to_thread(pr_params, 7, "Done")
        await azure_client.update_thread_status(pr_params, 7, ThreadStatus.FIXED)

        assert comment.id == 5
        patch = azure_stub.calls("PATCH", f"{PR_PATH}/threads/7")[0]
        assert json.loads(patch.content) == {"status": "fixed"}

    async def test_get_file_content_for_display(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", ITEMS_PATH, serve_files({"/big.txt": "y" * 2500, "/bin": "\u0000"}))

        content = await azure_client.get_file_content(pr_params, "/big.txt")
        binary = await azure_client.get_file_content(pr_params, "/bin", "c1")

        assert content == "y" * 2000 + "\n... [TRUNCATED - File too large for display]"
        assert binary == "[Binary File - Content not available]"


class TestFileDiffs:

    async def test_pr_level_changes(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", f"{PR_PATH}/changes", json={"changeEntries": [
            {
                "item": {"path": "/src/a.py"},
                "changeType": "edit",
                "sourceCommit": {"commitId": "src"},
                "targetCommit": {"commitId": "tgt"},
            }
        ]})

        def items(request: httpx.Request) -> httpx.Response:
            version = request.url.params["versionDescriptor.version"]
            return httpx.Response(200, text=f"content at {version}")

        azure_stub.add("GET", ITEMS_PATH, items)

        files = await azure_client.get_file_diffs(pr_params)

        assert len(files) == 1
        assert files[0].source_content == "content at src"
        assert files[0].target_content == "content at tgt"

    async def test_falls_back_to_latest_iteration_commits(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", f"{PR_PATH}/changes", json={"changeEntries": []})
        azure_stub.add("GET", f"{PR_PATH}/iterations", json={"value": [
            {"id": 3, "sourceRefCommit": {"commitId": "src"}, "targetRefCommit": {"commitId": "tgt"}},
        ]})
        azure_stub.add("GET", f"{PR_PATH}/iterations/3/changes", json={"changes": [
            {"item": {"path": "/src/a.py"}, "changeType": "edit"},
            {"item": {"path": "/src/b.py"}, "changeType": "add"},
        ]})
        azure_stub.add("GET", ITEMS_PATH, lambda request: (
            httpx.Response(200, text="new")
            if request.url.params["versionDescriptor.version"] == "src"
            else httpx.Response(404, json={"message": "not in target"})
        ))

        files = await azure_client.get_file_diffs(pr_params)

        assert [f.path for f in files] == ["/src/a.py", "/src/b.py"]
        assert all(f.source_content == "new" for f in files)
        # A failed fetch still returns the file, with empty content
        assert all(f.target_content == "" for f in files)

    async def test_no_commits_means_no_content(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", f"{PR_PATH}/changes", json={"value": [{"path": "/x.py", "changeType": "edit"}]})

        files = await azure_client.get_file_diffs(pr_params)

        assert files[0].path == "/x.py"
        assert files[0].source_content == ""
        assert azure_stub.calls("GET", ITEMS_PATH) == []

    async def test_everything_fails(self, azure_client, azure_stub, pr_params):
        files = await azure_client.get_file_diffs(pr_params)

        assert files == []


class TestPullRequestCreation:

    def _params(self, **overrides) -> PRCreateParams:
        values = dict(
            organization="contoso",
            project="Web App",
            repository="frontend",
            source_branch="feature/123-login",
            target_branch="main",
            title="123: login",
            required_reviewers=["lead@contoso.com"],
            optional_reviewers=["peer@contoso.com"],
            work_items=[123],
        )
        values.update(overrides)
        return PRCreateParams(**values)

    async def test_create_pull_request(self, azure_client, azure_stub, sample_pr_payload):
        azure_stub.add("POST", f"{REPO_PATH}/pullRequests", json=sample_pr_payload, status_code=201)

        result = await azure_client.create_pull_request(self._params())

        assert result.pull_request_id == 42
        assert result.created_by.display_name == "Dana Developer"

        body = json.loads(azure_stub.requests[0].content)
        assert body["sourceRefName"] == "refs/heads/feature/123-login"
        assert body["targetRefName"] == "refs/heads/main"
        assert body["reviewers"] == [
            {"displayName": "lead@contoso.com", "uniqueName": "lead@contoso.com", "isRequired": True},
            {"displayName": "peer@contoso.com", "uniqueName": "peer@contoso.com", "isRequired": False},
        ]
        assert body["workItemRefs"] == [{"id": "123"}]
        assert body["mergeStrategy"] == "squash"

    async def test_conflict_is_not_retried(self, azure_client, azure_stub):
        azure_stub.add(
            "POST",
            f"{REPO_PATH}/pullRequests",
            json={"message": "An active pull request already exists"},
            status_code=409,
        )

        with pytest.raises(AzureDevOpsError, match="already exists") as exc_info:
            await azure_client.create_pull_request(self._params())

        assert exc_info.value.status_code == 409
        assert len(azure_stub.requests) == 1

    async def test_follow_up_operations(self, azure_client, azure_stub, pr_params):
        azure_stub.add("POST", f"{REPO_PATH}/pullRequests/42/reviewers", json={})
        azure_stub.add("POST", f"{REPO_PATH}/pullRequests/42/workitems", json={})
        azure_stub.add("PATCH", f"{REPO_PATH}/pullRequests/42", json={})

        await azure_client.add_reviewers(pr_params, 42, ["a@contoso.com"], is_required=True)
        await azure_client.link_work_items(pr_params, 42, [1, 2])
        await azure_client.update_pr_settings(pr_params, 42, auto_complete=True)
        await azure_client.update_pr_settings(pr_params, 42)

        assert len(azure_stub.calls("POST", f"{REPO_PATH}/pullRequests/42/workitems")) == 2
        patches = azure_stub.calls("PATCH", f"{REPO_PATH}/pullRequests/42")
        assert len(patches) == 1
        assert json.loads(patches[0].content) == {"autoCompleteSet": True}

    async def test_branch_exists_requires_exact_match(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", f"{REPO_PATH}/refs", json={"value": [{"name": "refs/heads/maintenance"}]})

        assert await azure_client.branch_exists(pr_params, "maintenance") is True
        assert await azure_client.branch_exists(pr_params, "main") is False

        request = azure_stub.requests[0]
        assert request.url.params["filter"] == "heads/maintenance"

    async def test_branch_lookups_swallow_errors(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", f"{REPO_PATH}/refs", json={"message": "denied"}, status_code=401)

        assert await azure_client.branch_exists(pr_params, "main") is False
        assert await azure_client.list_branches(pr_params) == []

    async def test_list_branches(self, azure_client, azure_stub, pr_params):
        azure_stub.add("GET", f"{REPO_PATH}/refs", json={"value": [
            {"name": "refs/heads/main"},
            {"name": "refs/heads/feature/login"},
        ]})

        assert await azure_client.list_branches(pr_params) == ["main", "feature/login"]
