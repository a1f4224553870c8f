"""
Azure DevOps API Client Module

This module provides a client for the Azure DevOps Git REST API.
It handles PAT authentication, rate limiting, retries, and all PR-related operations.

Design Decisions:
- Use httpx for async HTTP requests
- Basic auth with an empty user name and the PAT as password
- Map 401/403/404 to dedicated exceptions with actionable messages
- Retry transport errors, 429 and 5xx with exponential backoff; never retry other 4xx
- Per-file content fetches run concurrently
"""

import asyncio
import base64
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
from aiolimiter import AsyncLimiter
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from azdo_reviewer.config import Settings, get_settings
from azdo_reviewer.logging_config import get_logger
from azdo_reviewer.models import (
    AzureDevOpsParams,
    ChangeEntry,
    FileDiff,
    FileVersions,
    IdentityRef,
    NamedLink,
    PRCreateParams,
    PRCreateResult,
    PRInfo,
    PRReviewDetails,
    Reviewer,
    ReviewThread,
    ThreadComment,
    ThreadStatus,
)
from azdo_reviewer.services.presentation import strip_ref_name

logger = get_logger(__name__)

BINARY_ANALYSIS_MARKER = "[Binary File - Skipping analysis]"
BINARY_DISPLAY_MARKER = "[Binary File - Content not available]"
FETCH_ERROR_MARKER = "[Error fetching content]"
ANALYSIS_TRUNCATED_SUFFIX = "\n... [TRUNCATED]"
DISPLAY_TRUNCATED_SUFFIX = "\n... [TRUNCATED - File too large for display]"

# Azure text comment type
COMMENT_TYPE_TEXT = 1


class AzureDevOpsError(Exception):
    """Custom exception for Azure DevOps API errors."""
    def __init__(self, message: str, status_code: int = None, response_body: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class AzureDevOpsAuthError(AzureDevOpsError):
    """The PAT was rejected."""
    pass


class AzureDevOpsForbiddenError(AzureDevOpsError):
    """The PAT lacks the scope an operation needs."""
    pass


class AzureDevOpsNotFoundError(AzureDevOpsError):
    """The organization, project, repository or PR does not exist."""
    pass


class AzureDevOpsRetryableError(AzureDevOpsError):
    """Throttling or server-side failure; safe to retry."""
    pass


_shared_rate_limiter: Optional[AsyncLimiter] = None


def _get_rate_limiter(settings: Settings) -> AsyncLimiter:
    global _shared_rate_limiter
    if _shared_rate_limiter is None:
        _shared_rate_limiter = AsyncLimiter(
            max_rate=settings.azure_devops_rate_limit_rpm,
            time_period=60
        )
    return _shared_rate_limiter


def sanitize_content(content: str, limit: int, binary_marker: str, truncated_suffix: str) -> str:
    """Replace binary content with a marker and cut oversized text."""
    if "\u0000" in content:
        return binary_marker
    if len(content) > limit:
        return content[:limit] + truncated_suffix
    return content


def extract_change_list(data: Dict[str, Any], keys: Tuple[str, ...]) -> List[Dict[str, Any]]:
    """Return the first non-empty change list among `keys`."""
    for key in keys:
        value = data.get(key)
        if value:
            return list(value)
    return []


def change_from_api(
    raw: Dict[str, Any],
    source_commit: Optional[str] = None,
    target_commit: Optional[str] = None
) -> Optional[ChangeEntry]:
    """
    Build a ChangeEntry from a raw change payload.

    Azure returns the path under `item.path`, `path`, or as a bare string
    `item` depending on the endpoint. Entries without a path are dropped.
    """
    item = raw.get("item")
    path = None
    if isinstance(item, dict):
        path = item.get("path")
    elif isinstance(item, str):
        path = item
    path = path or raw.get("path")
    if not path:
        return None

    source = raw.get("sourceCommitValue") or (raw.get("sourceCommit") or {}).get("commitId")
    target = raw.get("targetCommitValue") or (raw.get("targetCommit") or {}).get("commitId")

    return ChangeEntry(
        path=path,
        change_type=raw.get("changeType") or "edit",
        original_path=raw.get("sourceServerItem") or raw.get("originalPath"),
        source_commit=source or source_commit,
        target_commit=target or target_commit,
    )


def identity_from_api(raw: Optional[Dict[str, Any]]) -> IdentityRef:
    raw = raw or {}
    return IdentityRef(
        display_name=raw.get("displayName") or "Unknown",
        unique_name=raw.get("uniqueName") or raw.get("email") or "unknown@example.com",
    )


def reviewer_from_api(raw: Dict[str, Any]) -> Reviewer:
    # Reviewer identities are usually flat; some payloads nest them
    identity = raw.get("reviewer") if isinstance(raw.get("reviewer"), dict) else raw
    return Reviewer(
        reviewer=identity_from_api(identity),
        vote=raw.get("vote") or 0,
        is_required=bool(raw.get("isRequired")),
    )


def comment_from_api(raw: Dict[str, Any]) -> ThreadComment:
    return ThreadComment(
        id=raw["id"],
        author=identity_from_api(raw.get("author")),
        content=raw.get("content") or "",
        published_date=raw.get("publishedDate"),
        last_updated_date=raw.get("lastUpdatedDate"),
        is_deleted=bool(raw.get("isDeleted")),
    )


def thread_from_api(raw: Dict[str, Any]) -> ReviewThread:
    context = raw.get("threadContext")
    return ReviewThread(
        id=raw["id"],
        status=raw.get("status"),
        comments=[comment_from_api(c) for c in raw.get("comments") or []],
        thread_context=context if context and context.get("filePath") else None,
        published_date=raw.get("publishedDate"),
        last_updated_date=raw.get("lastUpdatedDate"),
    )


class AzureDevOpsClient:
    """
    Async Azure DevOps Git API client authenticated with a PAT.

    This client handles all interactions with the Azure DevOps API including:
    - Fetching PR details, iterations, changes and file contents
    - Reviewer votes and comment threads
    - Creating pull requests and inspecting branches

    Usage:
        client = AzureDevOpsClient(pat)
        info = await client.get_pr_details(params)
    """

    def __init__(
        self,
        pat: str,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize the Azure DevOps client.

        Args:
            pat: Personal Access Token with Code scope
            settings: Settings override (defaults to the cached application settings)
            transport: Optional httpx transport, used to stub the API in tests
        """
        self.settings = settings or get_settings()
        self._transport = transport
        self._rate_limiter = _get_rate_limiter(self.settings)

        token = base64.b64encode(f":{pat}".encode()).decode()
        self._headers = {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
        }

    # =========================================================================
    # Request plumbing
    # =========================================================================

    def _repository_url(self, ref: Any) -> str:
        """Base URL of a repository; `ref` needs organization, project and repository."""
        return (
            f"{self.settings.azure_devops_base_url}/{quote(ref.organization, safe='')}"
            f"/{quote(ref.project, safe='')}/_apis/git/repositories/{quote(ref.repository, safe='')}"
        )

    def _pull_request_url(self, params: AzureDevOpsParams) -> str:
        return f"{self._repository_url(params)}/pullRequests/{quote(str(params.pull_request_id), safe='')}"

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.reason_phrase
        if isinstance(data, dict) and data.get("message"):
            return str(data["message"])
        return response.reason_phrase

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Map an unsuccessful response to the matching exception."""
        status = response.status_code
        if status < 400:
            return

        message = self._error_message(response)
        body = response.text[:500]

        logger.error(
            "Azure DevOps API error",
            status_code=status,
            url=str(response.request.url),
            error=message
        )

        if status == 401:
            raise AzureDevOpsAuthError(
                "Unauthorized: Invalid PAT or insufficient permissions.",
                status_code=status,
                response_body=body
            )
        if status == 403:
            raise AzureDevOpsForbiddenError(
                'Forbidden: Your PAT might not have the "Code" scope this operation needs.',
                status_code=status,
                response_body=body
            )
        if status == 404:
            raise AzureDevOpsNotFoundError(
                "Not Found (404): The PR, repository, or project could not be found. "
                f"Please check the URL and your permissions. {message}".rstrip(),
                status_code=status,
                response_body=body
            )
        error_cls = AzureDevOpsRetryableError if status == 429 or status >= 500 else AzureDevOpsError
        raise error_cls(
            f"Azure DevOps Error ({status}): {message}",
            status_code=status,
            response_body=body
        )

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        accept: str = "application/json"
    ) -> httpx.Response:
        """
        Make an authenticated request to the Azure DevOps API.

        Args:
            method: HTTP method (GET, POST, etc.)
            url: Absolute API URL without query string
            params: Extra query parameters; api-version is always added
            json: JSON body
            accept: Accept header value

        Returns:
            httpx.Response object

        Raises:
            AzureDevOpsError: If the request fails
        """
        query = {"api-version": self.settings.azure_devops_api_version}
        if params:
            query.update(params)
        headers = dict(self._headers, Accept=accept)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.max_retries),
            wait=wait_exponential(
                multiplier=self.settings.retry_base_delay,
                max=self.settings.retry_max_delay
            ),
            retry=retry_if_exception_type((httpx.TransportError, AzureDevOpsRetryableError)),
            reraise=True
        )

        async for attempt in retrying:
            with attempt:
                async with self._rate_limiter:
                    async with httpx.AsyncClient(
                        timeout=self.settings.azure_devops_timeout,
                        transport=self._transport
                    ) as client:
                        logger.debug("Azure DevOps request", method=method, url=url)
                        response = await client.request(
                            method,
                            url,
                            params=query,
                            json=json,
                            headers=headers
                        )
                        self._raise_for_status(response)
                        return response

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._request("GET", url, params=params)
        return response.json()

    async def _get_item_text(
        self,
        ref: Any,
        path: str,
        commit_id: Optional[str] = None
    ) -> str:
        """Fetch the raw text of a file, optionally at a specific commit."""
        params = {"path": path}
        if commit_id:
            params["versionDescriptor.version"] = commit_id
            params["versionDescriptor.versionType"] = "commit"
        response = await self._request(
            "GET",
            f"{self._repository_url(ref)}/items",
            params=params,
            accept="text/plain"
        )
        return response.text

    # =========================================================================
    # Pull request analysis
    # =========================================================================

    async def get_pr_details(self, params: AzureDevOpsParams) -> PRInfo:
        """Fetch the PR metadata used as AI context."""
        data = await self._get_json(self._pull_request_url(params))

        info = PRInfo(
            title=data.get("title") or "",
            description=data.get("description") or "No description provided.",
            created_by=(data.get("createdBy") or {}).get("displayName") or "Unknown",
            source_branch=strip_ref_name(data.get("sourceRefName")) or "unknown",
            target_branch=strip_ref_name(data.get("targetRefName")) or "unknown",
            status=data.get("status") or "",
        )

        logger.info(
            "Fetched PR details",
            organization=params.organization,
            project=params.project,
            pull_request_id=params.pull_request_id,
            status=info.status
        )
        return info

    async def _get_latest_iteration(self, params: AzureDevOpsParams) -> Optional[Dict[str, Any]]:
        data = await self._get_json(f"{self._pull_request_url(params)}/iterations")
        iterations = data.get("value") or []
        return iterations[-1] if iterations else None

    async def get_pr_metadata(self, params: AzureDevOpsParams) -> Tuple[Optional[str], List[ChangeEntry]]:
        """
        Get the commit to analyze and the list of changed files.

        The latest iteration is preferred because it pins the source commit;
        the PR-level change list is the fallback.

        Returns:
            Tuple of (source commit id or None, list of changes)
        """
        commit_id: Optional[str] = None
        raw_changes: List[Dict[str, Any]] = []

        try:
            latest = await self._get_latest_iteration(params)
            if latest:
                commit_id = (latest.get("sourceRefCommit") or {}).get("commitId")
                data = await self._get_json(
                    f"{self._pull_request_url(params)}/iterations/{latest['id']}/changes"
                )
                raw_changes = extract_change_list(data, ("changes", "changeEntries", "value"))
        except (AzureDevOpsError, httpx.HTTPError) as e:
            logger.warning("Falling back to basic PR changes", error=str(e))

        if not raw_changes:
            data = await self._get_json(f"{self._pull_request_url(params)}/changes")
            raw_changes = extract_change_list(data, ("changeEntries", "value", "changes"))

        changes = [c for c in (change_from_api(raw) for raw in raw_changes) if c is not None]

        logger.info(
            "Fetched PR changes",
            pull_request_id=params.pull_request_id,
            num_changes=len(changes),
            commit_id=commit_id
        )
        return commit_id, changes

    async def _fetch_analysis_content(
        self,
        params: AzureDevOpsParams,
        change: ChangeEntry,
        commit_id: Optional[str]
    ) -> FileDiff:
        content = ""
        if change.has_content:
            try:
                text = await self._get_item_text(params, change.path, commit_id)
                content = sanitize_content(
                    text,
                    self.settings.max_analysis_content_chars,
                    BINARY_ANALYSIS_MARKER,
                    ANALYSIS_TRUNCATED_SUFFIX
                )
            except AzureDevOpsError as e:
                logger.warning("Could not fetch file content", path=change.path, error=str(e))
            except httpx.HTTPError as e:
                logger.warning("Error fetching file content", path=change.path, error=str(e))
                content = FETCH_ERROR_MARKER

        return FileDiff(
            path=change.path,
            change_type=change.change_type,
            content=content,
            original_path=change.original_path,
        )

    async def fetch_batch_contents(
        self,
        params: AzureDevOpsParams,
        changes: List[ChangeEntry],
        commit_id: Optional[str]
    ) -> List[FileDiff]:
        """
        Fetch the content of every change in a batch concurrently.

        Deleted files carry no content; fetch failures never fail the batch.
        """
        results = await asyncio.gather(
            *(self._fetch_analysis_content(params, change, commit_id) for change in changes)
        )
        return list(results)

    # =========================================================================
    # Manual review
    # =========================================================================

    async def get_review_details(self, params: AzureDevOpsParams) -> PRReviewDetails:
        """Fetch PR details together with reviewers and comment threads."""
        pr_url = self._pull_request_url(params)
        data = await self._get_json(pr_url, params={"includeThreads": "true"})

        raw_threads = data.get("threads")
        if raw_threads is None:
            raw_threads = (await self._get_json(f"{pr_url}/threads")).get("value") or []

        repository = data.get("repository") or {}
        project = repository.get("project") or {}

        return PRReviewDetails(
            pull_request_id=data.get("pullRequestId") or params.numeric_id or 0,
            title=data.get("title") or "",
            description=data.get("description") or "",
            created_by=identity_from_api(data.get("createdBy")),
            creation_date=data.get("creationDate"),
            source_ref_name=data.get("sourceRefName") or "",
            target_ref_name=data.get("targetRefName") or "",
            status=data.get("status") or "",
            merge_status=data.get("mergeStatus") or "unknown",
            reviewers=[reviewer_from_api(r) for r in data.get("reviewers") or []],
            threads=[thread_from_api(t) for t in raw_threads],
            url=data.get("url") or "",
            repository=NamedLink(
                name=repository.get("name") or params.repository,
                url=repository.get("url") or "",
            ),
            project=NamedLink(
                name=project.get("name") or params.project,
                url=project.get("url") or "",
            ),
        )

    async def get_authenticated_user_id(self, organization: str) -> str:
        """Resolve the identity id behind the PAT."""
        data = await self._get_json(
            f"{self.settings.azure_devops_base_url}/{quote(organization, safe='')}/_apis/connectionData"
        )
        user_id = (data.get("authenticatedUser") or {}).get("id")
        if not user_id:
            raise AzureDevOpsError("Could not resolve the authenticated user")
        return user_id

    async def submit_vote(
        self,
        params: AzureDevOpsParams,
        vote: int,
        reviewer_id: str = "me"
    ) -> None:
        """Cast a vote on the PR; "me" resolves to the PAT owner."""
        if reviewer_id == "me":
            reviewer_id = await self.get_authenticated_user_id(params.organization)

        await self._request(
            "PUT",
            f"{self._pull_request_url(params)}/reviewers/{quote(reviewer_id, safe='')}",
            json={"vote": int(vote), "isRequired": False}
        )

        logger.info(
            "Submitted PR vote",
            pull_request_id=params.pull_request_id,
            vote=int(vote)
        )

    async def create_comment_thread(
        self,
        params: AzureDevOpsParams,
        content: str,
        file_path: Optional[str] = None,
        line_number: Optional[int] = None
    ) -> ReviewThread:
        """Start a new active thread, optionally anchored to a file line."""
        body: Dict[str, Any] = {
            "comments": [{"content": content, "commentType": COMMENT_TYPE_TEXT}],
            "status": ThreadStatus.ACTIVE.value,
        }
        if file_path:
            context: Dict[str, Any] = {"filePath": file_path}
            if line_number:
                context["rightFileStart"] = {"line": line_number, "offset": 1}
                context["rightFileEnd"] = {"line": line_number, "offset": 1}
            body["threadContext"] = context

        response = await self._request(
            "POST",
            f"{self._pull_request_url(params)}/threads",
            json=body
        )
        thread = thread_from_api(response.json())

        logger.info(
            "Created comment thread",
            pull_request_id=params.pull_request_id,
            thread_id=thread.id,
            file_path=file_path
        )
        return thread

    async def reply_to_thread(
        self,
        params: AzureDevOpsParams,
        thread_id: int,
        content: str
    ) -> ThreadComment:
        response = await self._request(
            "POST",
            f"{self._pull_request_url(params)}/threads/{thread_id}/comments",
            json={"content": content, "commentType": COMMENT_TYPE_TEXT}
        )
        return comment_from_api(response.json())

    async def update_thread_status(
        self,
        params: AzureDevOpsParams,
        thread_id: int,
        status: ThreadStatus
    ) -> None:
        status_value = status.value if isinstance(status, ThreadStatus) else str(status)
        await self._request(
            "PATCH",
            f"{self._pull_request_url(params)}/threads/{thread_id}",
            json={"status": status_value}
        )
        logger.info("Updated thread status", thread_id=thread_id, status=status_value)

    async def get_pr_files(self, params: AzureDevOpsParams) -> List[ChangeEntry]:
        """List changed files without content."""
        data = await self._get_json(f"{self._pull_request_url(params)}/changes")
        raw_changes = extract_change_list(data, ("changeEntries", "value", "changes"))

        files = []
        for raw in raw_changes:
            change = change_from_api(raw)
            files.append(ChangeEntry(
                path=change.path if change else "",
                change_type=change.change_type if change else raw.get("changeType") or "edit",
            ))
        return files

    async def get_file_content(
        self,
        params: AzureDevOpsParams,
        file_path: str,
        commit_id: Optional[str] = None
    ) -> str:
        """Fetch a file for display, truncated to the display limit."""
        text = await self._get_item_text(params, file_path, commit_id)
        return sanitize_content(
            text,
            self.settings.max_display_content_chars,
            BINARY_DISPLAY_MARKER,
            DISPLAY_TRUNCATED_SUFFIX
        )

    async def _get_latest_iteration_changes(
        self,
        params: AzureDevOpsParams
    ) -> Tuple[List[Dict[str, Any]], Optional[str], Optional[str]]:
        latest = await self._get_latest_iteration(params)
        if not latest:
            return [], None, None

        data = await self._get_json(
            f"{self._pull_request_url(params)}/iterations/{latest['id']}/changes"
        )
        return (
            extract_change_list(data, ("changes", "changeEntries", "value")),
            (latest.get("sourceRefCommit") or {}).get("commitId"),
            (latest.get("targetRefCommit") or {}).get("commitId"),
        )

    async def _fetch_version(self, params: AzureDevOpsParams, path: str, commit_id: Optional[str]) -> str:
        if not commit_id:
            return ""
        try:
            text = await self._get_item_text(params, path, commit_id)
        except (AzureDevOpsError, httpx.HTTPError) as e:
            logger.warning("Failed to fetch file version", path=path, commit_id=commit_id, error=str(e))
            return ""
        return sanitize_content(
            text,
            self.settings.max_analysis_content_chars,
            BINARY_DISPLAY_MARKER,
            ANALYSIS_TRUNCATED_SUFFIX
        )

    async def _fetch_versions(self, params: AzureDevOpsParams, change: ChangeEntry) -> FileVersions:
        source_content, target_content = await asyncio.gather(
            self._fetch_version(params, change.path, change.source_commit),
            self._fetch_version(params, change.path, change.target_commit),
        )
        return FileVersions(
            path=change.path,
            change_type=change.change_type,
            source_content=source_content,
            target_content=target_content,
        )

    async def get_file_diffs(self, params: AzureDevOpsParams) -> List[FileVersions]:
        """
        Fetch both versions of every changed file.

        Fallback chain: PR-level changes, then the latest iteration (which
        supplies the commits), then the bare file list without content.
        Files whose content cannot be fetched are still returned.
        """
        raw_changes: List[Dict[str, Any]] = []
        source_fallback: Optional[str] = None
        target_fallback: Optional[str] = None

        try:
            data = await self._get_json(f"{self._pull_request_url(params)}/changes")
            raw_changes = extract_change_list(data, ("changeEntries", "value", "changes"))
        except (AzureDevOpsError, httpx.HTTPError) as e:
            logger.warning("Failed to fetch PR file diffs", error=str(e))

        if not raw_changes:
            try:
                raw_changes, source_fallback, target_fallback = await self._get_latest_iteration_changes(params)
            except (AzureDevOpsError, httpx.HTTPError) as e:
                logger.warning("Failed to fetch PR changes from latest iteration", error=str(e))

        if not raw_changes:
            try:
                files = await self.get_pr_files(params)
            except (AzureDevOpsError, httpx.HTTPError) as e:
                logger.error("Failed to get even basic file list", error=str(e))
                return []
            logger.info("Falling back to basic file list", num_files=len(files))
            return [FileVersions(path=f.path, change_type=f.change_type) for f in files]

        changes = [
            change_from_api(raw, source_fallback, target_fallback) or ChangeEntry(
                path="",
                change_type=raw.get("changeType") or "edit",
            )
            for raw in raw_changes
        ]

        results = await asyncio.gather(*(self._fetch_versions(params, c) for c in changes))

        logger.info("Fetched file versions", num_files=len(results))
        return list(results)

    # =========================================================================
    # Pull request creation
    # =========================================================================

    @staticmethod
    def _create_result_from_api(data: Dict[str, Any]) -> PRCreateResult:
        return PRCreateResult(
            pull_request_id=data["pullRequestId"],
            url=data.get("url") or "",
            title=data.get("title") or "",
            status=data.get("status") or "",
            created_by=identity_from_api(data.get("createdBy")),
            creation_date=data.get("creationDate"),
            source_ref_name=data.get("sourceRefName") or "",
            target_ref_name=data.get("targetRefName") or "",
            reviewers=[reviewer_from_api(r) for r in data.get("reviewers") or []],
        )

    async def create_pull_request(self, params: PRCreateParams) -> PRCreateResult:
        """Open a new PR with reviewers, work items and completion settings."""
        reviewers = [
            {"displayName": email, "uniqueName": email, "isRequired": True}
            for email in params.required_reviewers
        ] + [
            {"displayName": email, "uniqueName": email, "isRequired": False}
            for email in params.optional_reviewers
        ]

        body = {
            "sourceRefName": f"refs/heads/{params.source_branch}",
            "targetRefName": f"refs/heads/{params.target_branch}",
            "title": params.title,
            "description": params.description,
            "reviewers": reviewers,
            "workItemRefs": [{"id": str(work_item)} for work_item in params.work_items],
            "autoCompleteSet": params.auto_complete,
            "deleteSourceBranch": params.delete_source_branch,
            "mergeStrategy": params.merge_strategy,
        }

        response = await self._request(
            "POST",
            f"{self._repository_url(params)}/pullRequests",
            json=body
        )
        result = self._create_result_from_api(response.json())

        logger.info(
            "Created pull request",
            pull_request_id=result.pull_request_id,
            source_branch=params.source_branch,
            target_branch=params.target_branch,
            num_reviewers=len(reviewers)
        )
        return result

    async def add_reviewers(
        self,
        ref: Any,
        pull_request_id: int,
        reviewers: List[str],
        is_required: bool
    ) -> None:
        if not reviewers:
            return
        await self._request(
            "POST",
            f"{self._repository_url(ref)}/pullRequests/{pull_request_id}/reviewers",
            json=[
                {"displayName": email, "uniqueName": email, "isRequired": is_required}
                for email in reviewers
            ]
        )

    async def link_work_items(self, ref: Any, pull_request_id: int, work_item_ids: List[int]) -> None:
        for work_item_id in work_item_ids:
            await self._request(
                "POST",
                f"{self._repository_url(ref)}/pullRequests/{pull_request_id}/workitems",
                json={"id": str(work_item_id)}
            )

    async def update_pr_settings(
        self,
        ref: Any,
        pull_request_id: int,
        auto_complete: Optional[bool] = None,
        delete_source_branch: Optional[bool] = None
    ) -> None:
        body: Dict[str, Any] = {}
        if auto_complete is not None:
            body["autoCompleteSet"] = auto_complete
        if delete_source_branch is not None:
            body["deleteSourceBranch"] = delete_source_branch
        if not body:
            return
        await self._request(
            "PATCH",
            f"{self._repository_url(ref)}/pullRequests/{pull_request_id}",
            json=body
        )

    async def branch_exists(self, ref: Any, branch: str) -> bool:
        """Check a branch; any API failure counts as missing."""
        try:
            data = await self._get_json(
                f"{self._repository_url(ref)}/refs",
                params={"filter": f"heads/{branch}"}
            )
        except (AzureDevOpsError, httpx.HTTPError) as e:
            logger.warning("Branch validation failed", branch=branch, error=str(e))
            return False
        full_name = f"refs/heads/{branch}"
        # The filter is a prefix match, so "main" would also match "maintenance"
        return any(r.get("name") == full_name for r in data.get("value") or [])

    async def list_branches(self, ref: Any) -> List[str]:
        """List branch names; empty on failure."""
        try:
            data = await self._get_json(
                f"{self._repository_url(ref)}/refs",
                params={"filter": "heads"}
            )
        except (AzureDevOpsError, httpx.HTTPError) as e:
            logger.warning("Failed to list branches", error=str(e))
            return []
        names = [strip_ref_name(r.get("name")) for r in data.get("value") or []]
        return [name for name in names if name]
