"""
Data Models Module

This module defines all Pydantic models used throughout the application.
Strong typing ensures data integrity and provides clear contracts between components.

Design Decisions:
- Use Pydantic models for all data transfer objects
- camelCase aliases everywhere, matching both the Azure DevOps payloads
  and the JSON schema the LLMs are asked to follow
- LLM output is validated leniently: unknown enum values and out-of-range
  numbers fall back to defaults instead of failing the whole analysis
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

E = TypeVar("E", bound=Enum)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_enum(value: Any, enum_cls: Type[E], default: E) -> E:
    """
    Map a loosely-typed value onto an enum member.

    Matching is case-insensitive on the member value; anything that
    does not match yields the default.
    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        wanted = value.strip().lower()
        for member in enum_cls:
            if str(member.value).lower() == wanted:
                return member
    return default


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


# =============================================================================
# Enums
# =============================================================================

class AIProvider(str, Enum):
    """LLM providers that can analyze a batch."""
    GEMINI = "gemini"
    GLM = "glm"


class OverallHealth(str, Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    NEEDS_IMPROVEMENT = "Needs Improvement"
    CRITICAL = "Critical"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class BlastRadius(str, Enum):
    ISOLATED = "Isolated"
    MODULE_WIDE = "Module-wide"
    SYSTEM_WIDE = "System-wide"


class TestPresence(str, Enum):
    __test__ = False

    MISSING = "Missing"
    PARTIAL = "Partial"
    COMPREHENSIVE = "Comprehensive"


class Severity(str, Enum):
    """Severity levels for code review comments."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CommentType(str, Enum):
    """Categories for code review comments."""
    LOGIC = "logic"
    SECURITY = "security"
    STYLE = "style"
    PERFORMANCE = "performance"
    CONTRACT = "contract"


class ThreadStatus(str, Enum):
    """Azure DevOps comment thread states."""
    ACTIVE = "active"
    FIXED = "fixed"
    WONT_FIX = "wontFix"
    CLOSED = "closed"
    BY_DESIGN = "byDesign"


class Vote(int, Enum):
    """Azure DevOps reviewer votes."""
    REJECTED = -10
    WAITING_FOR_AUTHOR = -5
    NO_VOTE = 0
    APPROVED_WITH_SUGGESTIONS = 5
    APPROVED = 10


class MergeStrategy(str, Enum):
    SQUASH = "squash"
    MERGE = "merge"
    REBASE = "rebase"


class DiffLineType(str, Enum):
    """Cell types of a side-by-side diff row."""
    SAME = "same"
    ADDED = "added"
    REMOVED = "removed"
    EMPTY = "empty"


# =============================================================================
# Azure DevOps Pull Request Models
# =============================================================================

class AzureDevOpsParams(CamelModel):
    """Coordinates of a pull request, as parsed from its URL."""
    organization: str
    project: str
    repository: str
    pull_request_id: str

    @property
    def numeric_id(self) -> Optional[int]:
        """Pull request id as an int, or None when it is not numeric."""
        try:
            return int(self.pull_request_id)
        except (TypeError, ValueError):
            return None


class PRInfo(CamelModel):
    """PR metadata used as context for AI analysis."""
    title: str = ""
    description: str = "No description provided."
    created_by: str = "Unknown"
    source_branch: str = "unknown"
    target_branch: str = "unknown"
    status: str = ""

    @property
    def is_abandoned(self) -> bool:
        return self.status.lower() == "abandoned"


class ChangeEntry(CamelModel):
    """
    A single file change of a pull request.

    Attributes:
        path: Repository path of the changed item
        change_type: Azure change type ("add", "edit", "delete", "rename", ...)
        original_path: Previous path for renames
        source_commit: Commit holding the base version, when known
        target_commit: Commit holding the updated version, when known
    """
    path: str
    change_type: str = "edit"
    original_path: Optional[str] = None
    source_commit: Optional[str] = None
    target_commit: Optional[str] = None

    @property
    def has_content(self) -> bool:
        """Deleted or untouched items have nothing to fetch."""
        return self.change_type.lower() not in ("delete", "none")


class FileDiff(CamelModel):
    """A changed file with its content at the analyzed commit."""
    path: str
    change_type: str = "edit"
    content: str = ""
    original_path: Optional[str] = None


class FileVersions(CamelModel):
    """Both sides of a changed file, for diffing."""
    path: str
    change_type: str = "edit"
    source_content: str = ""
    target_content: str = ""


# =============================================================================
# AI Analysis Models
# =============================================================================

class ReviewStats(CamelModel):
    """
    Management KPIs generated by the LLM for a batch.

    Values outside the documented ranges are clamped and unknown
    enum values are replaced with neutral defaults.
    """
    complexity_score: float = 5
    risk_level: RiskLevel = RiskLevel.MEDIUM
    estimated_review_minutes: float = 30
    blast_radius: BlastRadius = BlastRadius.MODULE_WIDE
    test_presence: TestPresence = TestPresence.PARTIAL
    breaking_change: bool = False

    @field_validator("complexity_score", mode="before")
    @classmethod
    def clamp_complexity(cls, v: Any) -> float:
        try:
            score = float(v)
        except (TypeError, ValueError):
            return 5
        if math.isnan(score):
            return 5
        return min(10.0, max(1.0, score))

    @field_validator("estimated_review_minutes", mode="before")
    @classmethod
    def clamp_minutes(cls, v: Any) -> float:
        try:
            minutes = float(v)
        except (TypeError, ValueError):
            return 30
        if math.isnan(minutes):
            return 30
        return max(0.0, minutes)

    @field_validator("risk_level", mode="before")
    @classmethod
    def normalize_risk(cls, v: Any) -> RiskLevel:
        return coerce_enum(v, RiskLevel, RiskLevel.MEDIUM)

    @field_validator("blast_radius", mode="before")
    @classmethod
    def normalize_blast_radius(cls, v: Any) -> BlastRadius:
        return coerce_enum(v, BlastRadius, BlastRadius.MODULE_WIDE)

    @field_validator("test_presence", mode="before")
    @classmethod
    def normalize_test_presence(cls, v: Any) -> TestPresence:
        return coerce_enum(v, TestPresence, TestPresence.PARTIAL)

    @field_validator("breaking_change", mode="before")
    @classmethod
    def truthy_breaking_change(cls, v: Any) -> bool:
        if isinstance(v, str):
            return v.strip().lower() in ("true", "yes", "1")
        return bool(v)


class CodeReviewComment(CamelModel):
    """A single review comment produced by the LLM."""
    file: str
    line: Optional[int] = None
    comment: str
    suggested_change: Optional[str] = None
    severity: Severity = Severity.LOW
    type: CommentType = CommentType.LOGIC

    @field_validator("line", mode="before")
    @classmethod
    def positive_line(cls, v: Any) -> Optional[int]:
        if v is None or isinstance(v, bool):
            return None
        try:
            line = int(v)
        except (TypeError, ValueError):
            return None
        return line if line >= 1 else None

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, v: Any) -> Severity:
        return coerce_enum(v, Severity, Severity.LOW)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> CommentType:
        return coerce_enum(v, CommentType, CommentType.LOGIC)


class PRAnalysis(CamelModel):
    """
    Complete AI analysis of one batch, or of several merged batches.

    Field names follow the JSON schema the LLM must answer with.
    """
    summary: str = ""
    overall_health: OverallHealth = OverallHealth.GOOD
    architectural_impact: str = ""
    context_alignment: Optional[str] = None
    key_points: List[str] = Field(default_factory=list)
    security_concerns: List[str] = Field(default_factory=list)
    performance_tips: List[str] = Field(default_factory=list)
    stats: ReviewStats = Field(default_factory=ReviewStats)
    code_review_comments: List[CodeReviewComment] = Field(default_factory=list)

    @field_validator("overall_health", mode="before")
    @classmethod
    def normalize_health(cls, v: Any) -> OverallHealth:
        return coerce_enum(v, OverallHealth, OverallHealth.GOOD)

    @field_validator("summary", "architectural_impact", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("key_points", "security_concerns", "performance_tips", mode="before")
    @classmethod
    def string_list(cls, v: Any) -> List[str]:
        if not v:
            return []
        items = v if isinstance(v, list) else [v]
        return [str(item).strip() for item in items if item is not None and str(item).strip()]

    @field_validator("stats", mode="before")
    @classmethod
    def default_stats(cls, v: Any) -> Any:
        return {} if v is None else v


# =============================================================================
# Review Models
# =============================================================================

class IdentityRef(CamelModel):
    display_name: str = "Unknown"
    unique_name: str = "unknown@example.com"


class Reviewer(CamelModel):
    reviewer: IdentityRef = Field(default_factory=IdentityRef)
    vote: int = 0
    is_required: bool = False


class FilePosition(CamelModel):
    line: int
    offset: int = 1


class ThreadContext(CamelModel):
    """Location of a comment thread inside a file."""
    file_path: str
    left_file_start: Optional[FilePosition] = None
    left_file_end: Optional[FilePosition] = None
    right_file_start: Optional[FilePosition] = None
    right_file_end: Optional[FilePosition] = None


class ThreadComment(CamelModel):
    id: int
    author: IdentityRef = Field(default_factory=IdentityRef)
    content: str = ""
    published_date: Optional[datetime] = None
    last_updated_date: Optional[datetime] = None
    is_deleted: bool = False


class ReviewThread(CamelModel):
    id: int
    status: Optional[str] = None
    comments: List[ThreadComment] = Field(default_factory=list)
    thread_context: Optional[ThreadContext] = None
    published_date: Optional[datetime] = None
    last_updated_date: Optional[datetime] = None


class NamedLink(CamelModel):
    name: str = ""
    url: str = ""


class PRReviewDetails(CamelModel):
    """Everything the manual review flow needs about one PR."""
    pull_request_id: int
    title: str = ""
    description: str = ""
    created_by: IdentityRef = Field(default_factory=IdentityRef)
    creation_date: Optional[datetime] = None
    source_ref_name: str = ""
    target_ref_name: str = ""
    status: str = ""
    merge_status: str = "unknown"
    reviewers: List[Reviewer] = Field(default_factory=list)
    threads: List[ReviewThread] = Field(default_factory=list)
    url: str = ""
    repository: NamedLink = Field(default_factory=NamedLink)
    project: NamedLink = Field(default_factory=NamedLink)


# =============================================================================
# PR Creation Models
# =============================================================================

class PRCreateParams(CamelModel):
    organization: str
    project: str
    repository: str
    source_branch: str
    target_branch: str = "main"
    title: str = ""
    description: str = ""
    required_reviewers: List[str] = Field(default_factory=list)
    optional_reviewers: List[str] = Field(default_factory=list)
    work_items: List[int] = Field(default_factory=list)
    auto_complete: bool = False
    delete_source_branch: bool = False
    merge_strategy: MergeStrategy = MergeStrategy.SQUASH


class PRCreateResult(CamelModel):
    pull_request_id: int
    url: str = ""
    title: str = ""
    status: str = ""
    created_by: IdentityRef = Field(default_factory=IdentityRef)
    creation_date: Optional[datetime] = None
    source_ref_name: str = ""
    target_ref_name: str = ""
    reviewers: List[Reviewer] = Field(default_factory=list)


# =============================================================================
# Diff Models
# =============================================================================

class DiffLine(CamelModel):
    """
    One cell of a side-by-side diff.

    Attributes:
        text: Line content (empty for filler cells)
        line_number: 1-based line number on its side, None for filler cells
        type: same, added, removed or empty
    """
    text: str = ""
    line_number: Optional[int] = None
    type: DiffLineType


class SideBySideDiff(CamelModel):
    """Aligned left (base) and right (updated) columns of equal length."""
    left: List[DiffLine] = Field(default_factory=list)
    right: List[DiffLine] = Field(default_factory=list)

    @property
    def additions(self) -> int:
        return sum(1 for line in self.right if line.type == DiffLineType.ADDED)

    @property
    def deletions(self) -> int:
        return sum(1 for line in self.left if line.type == DiffLineType.REMOVED)


# =============================================================================
# Analysis Session Models
# =============================================================================

class AnalysisSession(CamelModel):
    """
    State of a paginated, multi-batch PR analysis.

    The session owns the complete change list; each AI call consumes the
    next slice of it and merges its result into `analysis`.
    """
    id: str
    params: AzureDevOpsParams
    pr_info: PRInfo
    provider: AIProvider
    system_instructions: str = ""
    system_context: str = ""
    commit_id: Optional[str] = None
    changes: List[ChangeEntry] = Field(default_factory=list)
    processed_count: int = 0
    batch_size: int = 10
    analysis: Optional[PRAnalysis] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def total_count(self) -> int:
        return len(self.changes)

    @property
    def total_batches(self) -> int:
        return math.ceil(self.total_count / self.batch_size) if self.changes else 0

    @property
    def has_more(self) -> bool:
        return self.processed_count < self.total_count


# =============================================================================
# API Request / Response Models
# =============================================================================

class StartAnalysisRequest(CamelModel):
    url: str
    provider: Optional[AIProvider] = None
    system_instructions: str = ""
    system_context: str = ""


class AnalysisSessionResponse(CamelModel):
    """Client view of a session (the PAT and change payloads stay server-side)."""
    session_id: str
    params: AzureDevOpsParams
    pr_info: PRInfo
    provider: AIProvider
    commit_id: Optional[str] = None
    processed_count: int
    total_count: int
    total_batches: int
    has_more: bool
    analysis: Optional[PRAnalysis] = None

    @classmethod
    def from_session(cls, session: AnalysisSession) -> "AnalysisSessionResponse":
        return cls(
            session_id=session.id,
            params=session.params,
            pr_info=session.pr_info,
            provider=session.provider,
            commit_id=session.commit_id,
            processed_count=session.processed_count,
            total_count=session.total_count,
            total_batches=session.total_batches,
            has_more=session.has_more,
            analysis=session.analysis,
        )


class PullRequestRef(CamelModel):
    """A request body naming a PR by URL."""
    url: str


class FileDiffRequest(CamelModel):
    url: str
    path: str
    commit_id: Optional[str] = None


class AnalyzeFileRequest(CamelModel):
    url: str
    path: str
    provider: Optional[AIProvider] = None
    system_instructions: str = ""
    system_context: str = ""


class VoteRequest(CamelModel):
    url: str
    vote: Vote
    reviewer_id: str = "me"


class CreateThreadRequest(CamelModel):
    url: str
    content: str = Field(min_length=1)
    file_path: Optional[str] = None
    line_number: Optional[int] = Field(default=None, ge=1)


class ReplyRequest(CamelModel):
    url: str
    content: str = Field(min_length=1)


class ThreadStatusRequest(CamelModel):
    url: str
    status: ThreadStatus


class RepositoryRef(CamelModel):
    organization: str
    project: str
    repository: str


class BranchValidationRequest(RepositoryRef):
    branch: str
