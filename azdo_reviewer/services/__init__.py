"""
Services Package

This package contains all service modules for the PR reviewer:
- url_parser: Azure DevOps PR URL parsing
- azure_devops: Azure DevOps REST API client
- ai_engine: Gemini and GLM batch reviewers
- batching: paginated analysis sessions
- diff_engine: line diffs of two file versions
- presentation: labels and PR creation defaults
"""

from azdo_reviewer.services.ai_engine import (
    AIConfigurationError,
    AIReviewError,
    GeminiReviewer,
    GLMReviewer,
    get_reviewer,
)
from azdo_reviewer.services.azure_devops import AzureDevOpsClient, AzureDevOpsError
from azdo_reviewer.services.batching import (
    AnalysisSessionError,
    BatchAnalyzer,
    get_batch_analyzer,
    merge_analyses,
)
from azdo_reviewer.services.diff_engine import (
    DiffEngineError,
    build_side_by_side_diff,
    build_unified_diff_text,
)
from azdo_reviewer.services.url_parser import parse_pr_url

__all__ = [
    "AIConfigurationError",
    "AIReviewError",
    "GeminiReviewer",
    "GLMReviewer",
    "get_reviewer",
    "AzureDevOpsClient",
    "AzureDevOpsError",
    "AnalysisSessionError",
    "BatchAnalyzer",
    "get_batch_analyzer",
    "merge_analyses",
    "DiffEngineError",
    "build_side_by_side_diff",
    "build_unified_diff_text",
    "parse_pr_url",
]
