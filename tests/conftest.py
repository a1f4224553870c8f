"""
Test Configuration

Pytest configuration and fixtures for the test suite.
"""

import os

# Settings are cached on first use; pin the environment before any import
os.environ.pop("AZURE_DEVOPS_PAT", None)
os.environ["GEMINI_API_KEY"] = "test-gemini-key"
os.environ["GLM_API_KEY"] = "test-glm-key"
os.environ["DEFAULT_AI_PROVIDER"] = "gemini"
os.environ["RETRY_BASE_DELAY"] = "0"
os.environ["RETRY_MAX_DELAY"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import Any, Callable, Dict, Generator, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from azdo_reviewer.config import Settings
from azdo_reviewer.models import (
    AzureDevOpsParams,
    ChangeEntry,
    FileDiff,
    FileVersions,
    PRAnalysis,
    PRInfo,
    PRReviewDetails,
)
from azdo_reviewer.services.azure_devops import AzureDevOpsClient

PR_URL = "https://dev.azure.com/contoso/Web%20App/_git/frontend/pullrequest/42"
REPO_PATH = "/contoso/Web App/_apis/git/repositories/frontend"
PR_PATH = f"{REPO_PATH}/pullRequests/42"

StubResponse = Callable[[httpx.Request], httpx.Response]


class AzureDevOpsStub:
    """
    Routes requests of an httpx.MockTransport by method and decoded path.

    Unrouted requests get a 404 like the real API.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], StubResponse] = {}
        self.requests: List[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        response: Optional[StubResponse] = None,
        json: Any = None,
        text: Optional[str] = None,
        status_code: int = 200
    ) -> None:
        if response is None:
            # A fresh Response per request; transports consume them
            if text is not None:
                response = lambda request: httpx.Response(status_code, text=text)
            else:
                body = json if json is not None else {}
                response = lambda request: httpx.Response(status_code, json=body)
        self.routes[(method, path)] = response

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"message": f"No route for {request.url.path}"})
        return response(request)


@pytest.fixture
def test_settings() -> Settings:
    """Settings with fast retries."""
    return Settings(
        max_retries=2,
        retry_base_delay=0,
        retry_max_delay=0,
        max_analysis_content_chars=1000,
        max_display_content_chars=2000,
        analysis_batch_size=10,
    )


@pytest.fixture
def azure_stub() -> AzureDevOpsStub:
    return AzureDevOpsStub()


@pytest.fixture
def azure_client(azure_stub: AzureDevOpsStub, test_settings: Settings) -> AzureDevOpsClient:
    """Azure DevOps client talking to the stub."""
    return AzureDevOpsClient(
        "test-pat",
        settings=test_settings,
        transport=httpx.MockTransport(azure_stub)
    )


@pytest.fixture
def pr_params() -> AzureDevOpsParams:
    return AzureDevOpsParams(
        organization="contoso",
        project="Web App",
        repository="frontend",
        pull_request_id="42",
    )


@pytest.fixture
def sample_pr_payload() -> Dict[str, Any]:
    """Pull request as returned by the Azure DevOps API."""
    return {
        "pullRequestId": 42,
        "title": "Add login page",
        "description": "Implements the login form.",
        "status": "active",
        "mergeStatus": "succeeded",
        "createdBy": {
            "displayName": "Dana Developer",
            "uniqueName": "dana@contoso.com",
            "id": "user-1"
        },
        "creationDate": "2024-05-01T10:00:00Z",
        "sourceRefName": "refs/heads/feature/123-login",
        "targetRefName": "refs/heads/main",
        "url": "https://dev.azure.com/contoso/_apis/git/pullRequests/42",
        "repository": {
            "name": "frontend",
            "url": "https://dev.azure.com/contoso/_apis/git/repositories/frontend",
            "project": {"name": "Web App", "url": "https://dev.azure.com/contoso/_apis/projects/web"}
        },
        "reviewers": [
            {
                "displayName": "Riley Reviewer",
                "uniqueName": "riley@contoso.com",
                "vote": 10,
                "isRequired": True
            }
        ],
    }


@pytest.fixture
def sample_analysis_payload() -> Dict[str, Any]:
    """A well-formed LLM answer."""
    return {
        "summary": "Adds a login form.",
        "overallHealth": "Good",
        "architecturalImpact": "UI only.",
        "contextAlignment": "Matches the auth roadmap.",
        "keyPoints": ["New component"],
        "securityConcerns": ["Password field is not masked"],
        "performanceTips": [],
        "stats": {
            "complexityScore": 3,
            "riskLevel": "Low",
            "estimatedReviewMinutes": 15,
            "blastRadius": "Isolated",
            "testPresence": "Missing",
            "breakingChange": False
        },
        "codeReviewComments": [
            {
                "file": "/src/login.tsx",
                "line": 12,
                "comment": "Use type=password",
                "severity": "high",
                "type": "security"
            }
        ],
    }


def make_analysis(label: str) -> PRAnalysis:
    return PRAnalysis(
        summary=f"summary {label}",
        overall_health="Good",
        architectural_impact=f"impact {label}",
        key_points=[f"point {label}"],
        security_concerns=[f"security {label}"],
        performance_tips=[f"perf {label}"],
        stats={"complexityScore": 4, "riskLevel": "Low"},
        code_review_comments=[
            {"file": f"/{label}.py", "line": 1, "comment": f"comment {label}", "severity": "low", "type": "style"}
        ],
    )


class FakeReviewer:
    """Records calls and answers with numbered analyses."""

    def __init__(self, fail_on_call: Optional[int] = None, error: Optional[Exception] = None):
        self.calls: List[Dict[str, Any]] = []
        self.fail_on_call = fail_on_call
        self.error = error

    async def analyze_batch(
        self,
        pr_info,
        changes,
        batch_index,
        total_batches,
        custom_instructions="",
        system_context=""
    ) -> PRAnalysis:
        self.calls.append({
            "pr_info": pr_info,
            "changes": changes,
            "batch_index": batch_index,
            "total_batches": total_batches,
            "custom_instructions": custom_instructions,
            "system_context": system_context,
        })
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise self.error
        return make_analysis(str(len(self.calls)))


class FakeAzureClient:
    """In-memory stand-in for AzureDevOpsClient used by workflow tests."""

    def __init__(
        self,
        changes: Optional[List[ChangeEntry]] = None,
        status: str = "active",
        file_versions: Optional[List[FileVersions]] = None
    ):
        self.changes = changes if changes is not None else []
        self.status = status
        self.file_versions = file_versions or []
        self.fetched_batches: List[List[str]] = []

    async def get_pr_details(self, params):
        return PRInfo(title="Add login page", description="Implements login.", status=self.status)

    async def get_pr_metadata(self, params):
        return "commit-1", list(self.changes)

    async def fetch_batch_contents(self, params, changes, commit_id):
        self.fetched_batches.append([c.path for c in changes])
        return [FileDiff(path=c.path, change_type=c.change_type, content="x = 1") for c in changes]

    async def get_review_details(self, params):
        return PRReviewDetails(
            pull_request_id=42,
            title="Add login page",
            source_ref_name="refs/heads/feature/login",
            target_ref_name="refs/heads/main",
            status=self.status,
        )

    async def get_file_diffs(self, params):
        return list(self.file_versions)


def make_changes(count: int) -> List[ChangeEntry]:
    return [ChangeEntry(path=f"/src/file_{i}.py") for i in range(count)]


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create a test client for synchronous tests."""
    from azdo_reviewer.main import app

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
