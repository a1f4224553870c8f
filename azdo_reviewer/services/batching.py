"""
Batch Analysis Module

This module runs a paginated AI analysis over the changed files of a PR.

Flow:
1. Fetch PR details and reject abandoned PRs
2. Fetch the change list once and keep it in an analysis session
3. Analyze the first batch, then one more batch per `next_batch` call
4. Merge every batch result into the session's cumulative analysis

Design Decisions:
- Sessions live in memory, keyed by a random id, and expire when idle
- The PAT is never stored; every call brings its own
- A failed batch leaves the session exactly as it was
- Calls on one session are serialized
"""

import asyncio
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import httpx

from azdo_reviewer.config import Settings, get_settings
from azdo_reviewer.logging_config import get_logger
from azdo_reviewer.models import (
    AIProvider,
    AnalysisSession,
    AzureDevOpsParams,
    ChangeEntry,
    PRAnalysis,
    PRInfo,
)
from azdo_reviewer.services.ai_engine import AIReviewError, BaseReviewer, get_reviewer
from azdo_reviewer.services.azure_devops import AzureDevOpsClient, AzureDevOpsError
from azdo_reviewer.services.diff_engine import DiffEngineError, prepare_file_analysis_input
from azdo_reviewer.services.presentation import strip_ref_name

logger = get_logger(__name__)


class AnalysisSessionError(Exception):
    """Base class for analysis workflow errors."""
    status_code = 400


class PRAbandonedError(AnalysisSessionError):
    status_code = 422

    def __init__(self, message: str = "This PR is abandoned."):
        super().__init__(message)


class NoChangesError(AnalysisSessionError):
    status_code = 422

    def __init__(self, message: str = "No changes found."):
        super().__init__(message)


class SessionNotFoundError(AnalysisSessionError):
    status_code = 404


class BatchExhaustedError(AnalysisSessionError):
    """Every change of the session has already been analyzed."""
    status_code = 409


class BatchFailedError(AnalysisSessionError):
    status_code = 502


class FileAnalysisError(AnalysisSessionError):
    status_code = 422


def merge_analyses(previous: Optional[PRAnalysis], latest: PRAnalysis) -> PRAnalysis:
    """
    Combine a cumulative analysis with the analysis of the next batch.

    Narrative fields and stats describe the newest batch; list fields
    accumulate in batch order.
    """
    if previous is None:
        return latest

    return latest.model_copy(update={
        "key_points": previous.key_points + latest.key_points,
        "security_concerns": previous.security_concerns + latest.security_concerns,
        "performance_tips": previous.performance_tips + latest.performance_tips,
        "code_review_comments": previous.code_review_comments + latest.code_review_comments,
    })


def batch_slice(changes: List[ChangeEntry], processed: int, size: int) -> List[ChangeEntry]:
    return changes[processed:processed + size]


class SessionStore:
    """
    In-memory analysis sessions.

    Sessions idle for longer than `ttl` are discarded on the next access.
    A lock exists only for a stored session.
    """

    def __init__(self, ttl: timedelta = timedelta(hours=2)):
        self.ttl = ttl
        self._sessions: Dict[str, AnalysisSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def prune(self) -> int:
        """Drop expired sessions; returns how many were removed."""
        cutoff = datetime.now(timezone.utc) - self.ttl
        expired = [sid for sid, s in self._sessions.items() if s.updated_at < cutoff]
        for session_id in expired:
            self.delete(session_id)
        if expired:
            logger.info("Expired analysis sessions removed", count=len(expired))
        return len(expired)

    def get(self, session_id: str) -> Optional[AnalysisSession]:
        self.prune()
        return self._sessions.get(session_id)

    def save(self, session: AnalysisSession) -> None:
        self.prune()
        self._sessions[session.id] = session

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)

    def lock(self, session_id: str) -> asyncio.Lock:
        self.prune()
        if session_id not in self._sessions:
            raise SessionNotFoundError(f"Analysis session not found: {session_id}")
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    def __len__(self) -> int:
        return len(self._sessions)


class BatchAnalyzer:
    """
    Orchestrates paginated PR analysis.

    Usage:
        analyzer = BatchAnalyzer()
        session = await analyzer.start(params, pat, provider="gemini")
        while session.has_more:
            session = await analyzer.next_batch(session.id, pat)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[SessionStore] = None,
        client_factory: Optional[Callable[[str], AzureDevOpsClient]] = None,
        reviewer_factory: Optional[Callable[[Optional[str]], BaseReviewer]] = None
    ):
        self.settings = settings or get_settings()
        self.store = store or SessionStore(
            ttl=timedelta(minutes=self.settings.analysis_session_ttl_minutes)
        )
        self._client_factory = client_factory or AzureDevOpsClient
        self._reviewer_factory = reviewer_factory or get_reviewer

    def _provider(self, provider: Optional[str]) -> AIProvider:
        name = provider.value if isinstance(provider, AIProvider) else provider
        return AIProvider(name or self.settings.default_ai_provider)

    async def start(
        self,
        params: AzureDevOpsParams,
        pat: str,
        provider: Optional[str] = None,
        system_instructions: str = "",
        system_context: str = ""
    ) -> AnalysisSession:
        """
        Open an analysis session and analyze its first batch.

        Raises:
            PRAbandonedError: If the PR is abandoned
            NoChangesError: If the PR has no changes
            AzureDevOpsError: If the PR cannot be read
            AIReviewError: If the first batch cannot be analyzed
        """
        provider = self._provider(provider)
        batch_size = self.settings.analysis_batch_size
        client = self._client_factory(pat)

        pr_info = await client.get_pr_details(params)
        if pr_info.is_abandoned:
            raise PRAbandonedError()

        commit_id, changes = await client.get_pr_metadata(params)
        if not changes:
            raise NoChangesError()

        first_batch = batch_slice(changes, 0, batch_size)
        total_batches = math.ceil(len(changes) / batch_size)

        logger.info(
            "Starting PR analysis",
            pull_request_id=params.pull_request_id,
            provider=provider.value,
            num_changes=len(changes),
            total_batches=total_batches
        )

        contents = await client.fetch_batch_contents(params, first_batch, commit_id)
        reviewer = self._reviewer_factory(provider.value)
        analysis = await reviewer.analyze_batch(
            pr_info,
            contents,
            0,
            total_batches,
            system_instructions,
            system_context
        )

        session = AnalysisSession(
            id=uuid.uuid4().hex,
            params=params,
            pr_info=pr_info,
            provider=provider,
            system_instructions=system_instructions,
            system_context=system_context,
            commit_id=commit_id,
            changes=changes,
            processed_count=len(first_batch),
            batch_size=batch_size,
            analysis=analysis,
        )
        self.store.save(session)

        logger.info(
            "Analysis session created",
            session_id=session.id,
            processed=session.processed_count,
            total=session.total_count
        )
        return session

    def get_session(self, session_id: str) -> AnalysisSession:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Analysis session not found: {session_id}")
        return session

    async def next_batch(self, session_id: str, pat: str) -> AnalysisSession:
        """
        Analyze the next batch of a session and merge it in.

        Raises:
            SessionNotFoundError: If the session does not exist
            BatchExhaustedError: If every change was already analyzed
            BatchFailedError: If fetching or analyzing the batch fails
        """
        async with self.store.lock(session_id):
            session = self.get_session(session_id)
            if not session.has_more:
                raise BatchExhaustedError("All changes have already been analyzed.")

            batch = batch_slice(session.changes, session.processed_count, session.batch_size)
            batch_index = session.processed_count // session.batch_size

            logger.info(
                "Analyzing next batch",
                session_id=session_id,
                batch=batch_index + 1,
                total_batches=session.total_batches,
                num_files=len(batch)
            )

            try:
                client = self._client_factory(pat)
                contents = await client.fetch_batch_contents(session.params, batch, session.commit_id)
                reviewer = self._reviewer_factory(session.provider)
                analysis = await reviewer.analyze_batch(
                    session.pr_info,
                    contents,
                    batch_index,
                    session.total_batches,
                    session.system_instructions,
                    session.system_context
                )
            except (AzureDevOpsError, AIReviewError, httpx.HTTPError) as e:
                logger.error(
                    "Batch analysis failed",
                    session_id=session_id,
                    batch=batch_index + 1,
                    error=str(e)
                )
                raise BatchFailedError(f"Batch failed: {e}") from e

            updated = session.model_copy(update={
                "analysis": merge_analyses(session.analysis, analysis),
                "processed_count": session.processed_count + len(batch),
                "updated_at": datetime.now(timezone.utc),
            })
            self.store.save(updated)
            return updated

    async def analyze_file(
        self,
        params: AzureDevOpsParams,
        pat: str,
        file_path: str,
        provider: Optional[str] = None,
        system_instructions: str = "",
        system_context: str = ""
    ) -> PRAnalysis:
        """
        Analyze the diff of a single file as a one-batch review.

        Raises:
            FileAnalysisError: If the file is not part of the PR or either
                version of it is unavailable
        """
        provider = self._provider(provider)
        client = self._client_factory(pat)

        details = await client.get_review_details(params)
        versions = next((f for f in await client.get_file_diffs(params) if f.path == file_path), None)

        if versions is None:
            raise FileAnalysisError(f"File is not part of this PR: {file_path}")
        if not versions.source_content or not versions.target_content:
            raise FileAnalysisError("Both versions of the file are required for analysis.")

        try:
            file_input = await prepare_file_analysis_input(versions)
        except DiffEngineError as e:
            raise FileAnalysisError(str(e)) from e

        pr_info = PRInfo(
            title=details.title,
            description=details.description,
            created_by=details.created_by.display_name,
            source_branch=strip_ref_name(details.source_ref_name) or "unknown",
            target_branch=strip_ref_name(details.target_ref_name) or "unknown",
            status=details.status,
        )

        logger.info(
            "Analyzing single file",
            pull_request_id=params.pull_request_id,
            path=file_path,
            provider=provider.value
        )

        reviewer = self._reviewer_factory(provider.value)
        return await reviewer.analyze_batch(
            pr_info,
            [file_input],
            0,
            1,
            system_instructions,
            system_context
        )


# Singleton instance
_analyzer_instance: Optional[BatchAnalyzer] = None


def get_batch_analyzer() -> BatchAnalyzer:
    """Get the singleton BatchAnalyzer instance."""
    global _analyzer_instance
    if _analyzer_instance is None:
        _analyzer_instance = BatchAnalyzer()
    return _analyzer_instance
