"""
AI Review Engine Module

This module handles the AI-powered review of a batch of changed files.
It produces a structured PRAnalysis: a narrative review, inline comments
and management KPIs ("stats").

Two providers are supported:
- Gemini through the google-genai SDK, with a response schema
- GLM through its OpenAI-compatible endpoint, with a json_schema response format

Design Decisions:
- Both providers share one prompt and one output schema
- Rate limit API calls to avoid hitting quotas
- LLM output is validated leniently; malformed comments are dropped, not fatal
- GLM answers are normalized from several observed shapes, and a GLM failure
  yields a fallback analysis instead of an exception
"""

import json
import re
from typing import Any, Dict, List, Optional

from aiolimiter import AsyncLimiter
from google import genai
from google.genai import types
from openai import AsyncOpenAI
from pydantic import ValidationError

from azdo_reviewer.config import Settings, get_settings
from azdo_reviewer.logging_config import get_logger
from azdo_reviewer.models import (
    AIProvider,
    CodeReviewComment,
    CommentType,
    FileDiff,
    OverallHealth,
    PRAnalysis,
    PRInfo,
    ReviewStats,
    RiskLevel,
    Severity,
    coerce_enum,
)

logger = get_logger(__name__)

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


class AIReviewError(Exception):
    """Custom exception for AI review errors."""
    pass


class AIConfigurationError(AIReviewError):
    """The provider cannot be used with the current configuration."""
    pass


# =============================================================================
# Prompt and schema
# =============================================================================

ANALYSIS_JSON_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "summary": {"type": "string"},
        "overallHealth": {
            "type": "string",
            "enum": [h.value for h in OverallHealth],
        },
        "architecturalImpact": {"type": "string"},
        "contextAlignment": {"type": "string"},
        "keyPoints": {"type": "array", "items": {"type": "string"}},
        "securityConcerns": {"type": "array", "items": {"type": "string"}},
        "performanceTips": {"type": "array", "items": {"type": "string"}},
        "stats": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "complexityScore": {"type": "number", "minimum": 1, "maximum": 10},
                "riskLevel": {"type": "string", "enum": ["Low", "Medium", "High", "Critical"]},
                "estimatedReviewMinutes": {"type": "number", "minimum": 0},
                "blastRadius": {"type": "string", "enum": ["Isolated", "Module-wide", "System-wide"]},
                "testPresence": {"type": "string", "enum": ["Missing", "Partial", "Comprehensive"]},
                "breakingChange": {"type": "boolean"},
            },
            "required": [
                "complexityScore",
                "riskLevel",
                "estimatedReviewMinutes",
                "blastRadius",
                "testPresence",
                "breakingChange",
            ],
        },
        "codeReviewComments": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "file": {"type": "string"},
                    "line": {"type": "number", "minimum": 1},
                    "comment": {"type": "string"},
                    "suggestedChange": {"type": "string"},
                    "severity": {"type": "string", "enum": ["high", "medium", "low"]},
                    "type": {"type": "string", "enum": [t.value for t in CommentType]},
                },
                "required": ["file", "comment", "severity", "type"],
            },
        },
    },
    "required": [
        "summary",
        "overallHealth",
        "architecturalImpact",
        "contextAlignment",
        "keyPoints",
        "codeReviewComments",
        "securityConcerns",
        "performanceTips",
        "stats",
    ],
}

GEMINI_TYPES = {
    "object": types.Type.OBJECT,
    "array": types.Type.ARRAY,
    "string": types.Type.STRING,
    "number": types.Type.NUMBER,
    "boolean": types.Type.BOOLEAN,
}


def to_gemini_schema(schema: Dict[str, Any]) -> types.Schema:
    """
    Convert a JSON schema fragment to a Gemini response schema.

    Gemini does not accept additionalProperties or numeric bounds, so
    they are dropped; ranges are enforced when the answer is validated.
    """
    kwargs: Dict[str, Any] = {"type": GEMINI_TYPES[schema["type"]]}
    if "enum" in schema:
        kwargs["enum"] = list(schema["enum"])
    if "items" in schema:
        kwargs["items"] = to_gemini_schema(schema["items"])
    if "properties" in schema:
        kwargs["properties"] = {
            name: to_gemini_schema(prop) for name, prop in schema["properties"].items()
        }
    if "required" in schema:
        kwargs["required"] = list(schema["required"])
    return types.Schema(**kwargs)


GEMINI_RESPONSE_SCHEMA = to_gemini_schema(ANALYSIS_JSON_SCHEMA)

GLM_SYSTEM_PROMPT = (
    "You are an expert software engineer performing code reviews and generating "
    "management KPIs. Always respond with valid JSON only."
)

STRICT_JSON_RULES = """## STRICT JSON RESPONSE

Output rules (non-negotiable):
- Output MUST be a single JSON object and NOTHING else.
- Do NOT wrap in markdown fences. Do NOT add explanations.
- Include ALL required keys exactly as defined by the JSON Schema.
- Do NOT output any keys not present in the schema.
- If you cannot infer a value, use:
  - "" for strings
  - [] for arrays
  - 0 for numbers (except complexityScore must be 1-10; use 5 if unknown)
  - false for booleans
- riskLevel, overallHealth, blastRadius, testPresence MUST be one of the enum values.

Return JSON that validates against this JSON Schema:
"""


def format_changes(changes: List[FileDiff]) -> str:
    """Render the files of a batch as prompt blocks."""
    blocks = []
    for change in changes:
        blocks.append(
            f"--- FILE: {change.path} ---\n"
            f"Action: {change.change_type}\n"
            f"Content:\n"
            f"{change.content or '[No Content or Binary File]'}\n"
            f"------------------------"
        )
    return "\n\n".join(blocks)


def build_batch_prompt(
    pr_info: PRInfo,
    changes: List[FileDiff],
    batch_index: int,
    total_batches: int,
    custom_instructions: str = "",
    system_context: str = ""
) -> str:
    """Build the review prompt for one batch of files."""
    return f"""# SYSTEM MISSION: PRINCIPAL ENGINEER AUDIT & KPI GENERATION
Analyze the following code changes. Provide a deep review and high-level management KPIs.
This is batch {batch_index + 1} of {total_batches}.

## EXTERNAL SYSTEM CONTEXT
{system_context or "No specific external context provided."}

## CUSTOM PROJECT CONSTRAINTS
{custom_instructions or "Follow general industry best practices."}

## PR CONTEXT
Title: {pr_info.title}
Description: {pr_info.description}

## BATCH SOURCE CODE
{format_changes(changes)}

## TASK
1. General code review (bugs, security, logic).
2. Generate 'stats' for a technical manager:
   - complexityScore: 1-10 (How difficult is this to maintain?)
   - riskLevel: Low/Medium/High/Critical
   - estimatedReviewMinutes: Estimated time for a human to deeply review this batch.
   - blastRadius: Isolated (single file/function), Module-wide, or System-wide (core infra).
   - testPresence: Are there new/updated tests in this batch? (Missing/Partial/Comprehensive)
   - breakingChange: Does this look like it breaks existing APIs? (boolean)
"""


# =============================================================================
# Response parsing
# =============================================================================

def parse_analysis(data: Dict[str, Any]) -> PRAnalysis:
    """
    Validate a PRAnalysis-shaped dict.

    Comments that cannot be validated are skipped individually.
    """
    comments: List[CodeReviewComment] = []
    for comment_data in data.get("codeReviewComments") or []:
        try:
            comments.append(CodeReviewComment.model_validate(comment_data))
        except ValidationError as e:
            logger.warning(
                "Skipping invalid review comment",
                error=str(e),
                data=comment_data
            )

    payload = {k: v for k, v in data.items() if k != "codeReviewComments"}
    analysis = PRAnalysis.model_validate(payload)
    analysis.code_review_comments = comments
    return analysis


def extract_json_object(content: str) -> Dict[str, Any]:
    """
    Parse model output as a JSON object.

    Falls back to the outermost {...} block when the object is wrapped
    in prose or markdown fences.
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError as first_error:
        match = JSON_OBJECT_PATTERN.search(content)
        if not match:
            raise AIReviewError("Failed to parse GLM response as JSON") from first_error
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as second_error:
            logger.error(
                "GLM parse error",
                first_error=str(first_error),
                second_error=str(second_error)
            )
            raise AIReviewError("Failed to parse GLM response as JSON") from second_error

    if not isinstance(parsed, dict):
        raise AIReviewError("GLM response is not a JSON object")
    return parsed


def normalize_string(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def normalize_string_array(value: Any) -> List[str]:
    if not value:
        return []
    items = value if isinstance(value, list) else [value]
    result = [normalize_string(item).strip() for item in items]
    return [item for item in result if item]


HEALTH_BY_RISK = {
    RiskLevel.LOW: OverallHealth.EXCELLENT,
    RiskLevel.MEDIUM: OverallHealth.GOOD,
    RiskLevel.HIGH: OverallHealth.NEEDS_IMPROVEMENT,
    RiskLevel.CRITICAL: OverallHealth.CRITICAL,
}


def _first_present(mapping: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def limited_data_analysis() -> PRAnalysis:
    """Analysis returned when a response has no recognisable structure."""
    return PRAnalysis(
        summary="Analysis completed with limited data",
        overall_health=OverallHealth.GOOD,
        architectural_impact="Changes detected",
        context_alignment="Standard alignment",
        key_points=["Analysis completed"],
        stats=ReviewStats(test_presence="Missing"),
    )


def failed_analysis(error_message: str) -> PRAnalysis:
    """Analysis returned in place of an exception when the GLM call fails."""
    return PRAnalysis(
        summary="Analysis failed - please try again",
        overall_health=OverallHealth.CRITICAL,
        architectural_impact="Unable to analyze",
        context_alignment="Analysis incomplete",
        key_points=["Analysis failed"],
        security_concerns=["Unable to complete security analysis"],
        performance_tips=["Unable to analyze performance"],
        stats=ReviewStats(
            complexity_score=1,
            risk_level="Critical",
            estimated_review_minutes=0,
            blast_radius="Isolated",
            test_presence="Missing",
            breaking_change=False,
        ),
        code_review_comments=[
            CodeReviewComment(
                file="analysis",
                line=1,
                comment=f"Analysis failed: {error_message or 'Unknown error'}",
                severity=Severity.HIGH,
                type=CommentType.LOGIC,
            )
        ],
    )


def normalize_glm_response(parsed: Dict[str, Any]) -> PRAnalysis:
    """
    Turn any of the GLM answer shapes into a PRAnalysis.

    Shapes handled:
    - the requested schema (has summary and stats): validated as-is
    - {"answer": {...}} or a bare object with managementKPIs / kpis / stats
      and a codeReview section of issues and recommendations
    - anything else: the limited-data analysis
    """
    if parsed.get("summary") and isinstance(parsed.get("stats"), dict):
        return parse_analysis(parsed)

    glm_response = parsed.get("answer")
    if glm_response is None:
        glm_response = parsed
    if not isinstance(glm_response, dict):
        logger.warning("GLM response structure unexpected, using fallback")
        return limited_data_analysis()

    kpis = _first_present(glm_response, "managementKPIs", "kpis", "stats")
    if not isinstance(kpis, dict):
        logger.warning("GLM response structure unexpected, using fallback", keys=list(glm_response))
        return limited_data_analysis()

    code_review = glm_response.get("codeReview") or {}
    if not isinstance(code_review, dict):
        code_review = {}
    issues = normalize_string_array(code_review.get("issues"))
    recommendations = normalize_string_array(code_review.get("recommendations"))
    risk_level = coerce_enum(kpis.get("riskLevel"), RiskLevel, RiskLevel.MEDIUM)

    if risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        severity = Severity.HIGH
    elif risk_level == RiskLevel.MEDIUM:
        severity = Severity.MEDIUM
    else:
        severity = Severity.LOW

    review_summary = normalize_string(code_review.get("summary"))

    return PRAnalysis(
        summary=review_summary or normalize_string(glm_response.get("summary")) or "Code review completed with GLM analysis",
        overall_health=HEALTH_BY_RISK[risk_level],
        architectural_impact=(
            review_summary
            or normalize_string(glm_response.get("architecturalImpact"))
            or "Architectural changes detected"
        ),
        context_alignment=(
            normalize_string(glm_response.get("contextAlignment"))
            or "Changes align with system requirements"
        ),
        key_points=issues + recommendations,
        security_concerns=[
            issue for issue in issues
            if "security" in issue.lower() or "auth" in issue.lower()
        ],
        performance_tips=[
            rec for rec in recommendations
            if "performance" in rec.lower() or "optimization" in rec.lower()
        ],
        stats=ReviewStats(
            complexity_score=kpis["complexityScore"] if kpis.get("complexityScore") is not None else 5,
            risk_level=risk_level,
            estimated_review_minutes=(
                kpis["estimatedReviewMinutes"] if kpis.get("estimatedReviewMinutes") is not None else 30
            ),
            blast_radius=kpis.get("blastRadius"),
            test_presence=kpis.get("testPresence"),
            breaking_change=bool(kpis.get("breakingChange")),
        ),
        code_review_comments=[
            CodeReviewComment(
                file="review",
                line=index + 1,
                comment=issue,
                severity=severity,
                type=CommentType.SECURITY if "security" in issue.lower() else CommentType.LOGIC,
            )
            for index, issue in enumerate(issues)
        ],
    )


# =============================================================================
# Providers
# =============================================================================

class BaseReviewer:
    """Common interface of the LLM providers."""

    provider: AIProvider

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

        # Rate limiter for the provider API
        self._rate_limiter = AsyncLimiter(
            max_rate=self.settings.ai_rate_limit_rpm,
            time_period=60
        )

    async def analyze_batch(
        self,
        pr_info: PRInfo,
        changes: List[FileDiff],
        batch_index: int,
        total_batches: int,
        custom_instructions: str = "",
        system_context: str = ""
    ) -> PRAnalysis:
        raise NotImplementedError


class GeminiReviewer(BaseReviewer):
    """
    Batch reviewer backed by Gemini.

    Usage:
        reviewer = GeminiReviewer()
        analysis = await reviewer.analyze_batch(pr_info, files, 0, 1)
    """

    provider = AIProvider.GEMINI

    def __init__(self, settings: Optional[Settings] = None, client: Any = None):
        super().__init__(settings)
        self._client = client

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self.settings.gemini_api_key)
        return self._client

    async def analyze_batch(
        self,
        pr_info: PRInfo,
        changes: List[FileDiff],
        batch_index: int,
        total_batches: int,
        custom_instructions: str = "",
        system_context: str = ""
    ) -> PRAnalysis:
        """
        Review one batch with Gemini.

        Raises:
            AIConfigurationError: If no Gemini API key is configured
            AIReviewError: If the call fails or the answer is empty or invalid
        """
        if not self.settings.gemini_api_key and self._client is None:
            raise AIConfigurationError("Gemini API Key is missing.")

        prompt = build_batch_prompt(
            pr_info, changes, batch_index, total_batches, custom_instructions, system_context
        )

        logger.info(
            "Sending batch to Gemini",
            batch=batch_index + 1,
            total_batches=total_batches,
            num_files=len(changes),
            prompt_length=len(prompt)
        )

        async with self._rate_limiter:
            try:
                response = await self.client.aio.models.generate_content(
                    model=self.settings.gemini_model,
                    contents=prompt,
                    config=types.GenerateContentConfig(
                        response_mime_type="application/json",
                        response_schema=GEMINI_RESPONSE_SCHEMA,
                        thinking_config=types.ThinkingConfig(
                            thinking_budget=self.settings.gemini_thinking_budget
                        ),
                    ),
                )

                text = response.text
                if not text:
                    raise AIReviewError("Empty response from AI")

                analysis = parse_analysis(json.loads(text))

                logger.info(
                    "Gemini batch analysis completed",
                    batch=batch_index + 1,
                    overall_health=analysis.overall_health,
                    num_comments=len(analysis.code_review_comments)
                )
                return analysis

            except Exception as e:
                logger.error(
                    "Gemini analysis failed",
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise AIReviewError(f"AI Analysis failed: {e}") from e


class GLMReviewer(BaseReviewer):
    """
    Batch reviewer backed by GLM's OpenAI-compatible API.

    Failures after configuration checks never raise; they produce the
    "Analysis failed" analysis so a long paginated run can continue.
    """

    provider = AIProvider.GLM

    def __init__(self, settings: Optional[Settings] = None, client: Any = None):
        super().__init__(settings)
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.glm_api_key,
                base_url=self.settings.glm_base_url
            )
        return self._client

    async def analyze_batch(
        self,
        pr_info: PRInfo,
        changes: List[FileDiff],
        batch_index: int,
        total_batches: int,
        custom_instructions: str = "",
        system_context: str = ""
    ) -> PRAnalysis:
        if not self.settings.glm_api_key and self._client is None:
            raise AIConfigurationError("GLM API Key is missing.")

        schema_text = json.dumps(ANALYSIS_JSON_SCHEMA, separators=(",", ":"))
        prompt = (
            build_batch_prompt(
                pr_info, changes, batch_index, total_batches, custom_instructions, system_context
            )
            + "\n"
            + STRICT_JSON_RULES
            + schema_text
        )

        logger.info(
            "Sending batch to GLM",
            batch=batch_index + 1,
            total_batches=total_batches,
            num_files=len(changes),
            prompt_length=len(prompt)
        )

        async with self._rate_limiter:
            try:
                response = await self.client.chat.completions.create(
                    model=self.settings.glm_model,
                    messages=[
                        {"role": "system", "content": GLM_SYSTEM_PROMPT},
                        {"role": "user", "content": prompt}
                    ],
                    response_format={
                        "type": "json_schema",
                        "json_schema": {
                            "name": "pr_analysis",
                            "schema": ANALYSIS_JSON_SCHEMA,
                            "strict": True,
                        },
                    },
                    temperature=self.settings.glm_temperature
                )

                content = response.choices[0].message.content if response.choices else None
                if not content:
                    raise AIReviewError("Empty response from GLM")

                analysis = normalize_glm_response(extract_json_object(content))

                logger.info(
                    "GLM batch analysis completed",
                    batch=batch_index + 1,
                    overall_health=analysis.overall_health,
                    num_comments=len(analysis.code_review_comments)
                )
                return analysis

            except Exception as e:
                logger.error(
                    "GLM analysis failed",
                    error=str(e),
                    error_type=type(e).__name__
                )
                return failed_analysis(str(e))


# Singleton instances per provider
_reviewers: Dict[str, BaseReviewer] = {}

REVIEWER_CLASSES = {
    AIProvider.GEMINI.value: GeminiReviewer,
    AIProvider.GLM.value: GLMReviewer,
}


def get_reviewer(provider: Optional[str] = None) -> BaseReviewer:
    """
    Get the singleton reviewer of a provider.

    Args:
        provider: "gemini" or "glm"; defaults to the configured provider

    Raises:
        AIConfigurationError: If the provider is unknown
    """
    name = provider.value if isinstance(provider, AIProvider) else provider
    name = (name or get_settings().default_ai_provider).lower()

    if name not in REVIEWER_CLASSES:
        raise AIConfigurationError(f"Unknown AI provider: {name}")

    if name not in _reviewers:
        _reviewers[name] = REVIEWER_CLASSES[name]()
    return _reviewers[name]
