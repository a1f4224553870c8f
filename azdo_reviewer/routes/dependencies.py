"""
Shared request dependencies: PAT resolution, PR URL parsing and services.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from azdo_reviewer.config import get_settings
from azdo_reviewer.logging_config import get_logger
from azdo_reviewer.models import AzureDevOpsParams
from azdo_reviewer.services.azure_devops import AzureDevOpsClient
from azdo_reviewer.services.batching import BatchAnalyzer, get_batch_analyzer
from azdo_reviewer.services.url_parser import parse_pr_url

logger = get_logger(__name__)

MISSING_INPUT_MESSAGE = "Pull Request URL and PAT are required."
INVALID_URL_MESSAGE = "Invalid Azure DevOps PR URL format."


def get_pat(
    x_azure_devops_pat: Optional[str] = Header(default=None)
) -> str:
    """PAT from the X-Azure-DevOps-PAT header, else from the settings."""
    pat = get_settings().resolve_pat(x_azure_devops_pat)
    if not pat:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=MISSING_INPUT_MESSAGE
        )
    return pat


def parse_pr_url_or_400(url: str) -> AzureDevOpsParams:
    if not url or not url.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=MISSING_INPUT_MESSAGE
        )

    params = parse_pr_url(url)
    if params is None:
        logger.info("Rejected PR URL", url=url)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=INVALID_URL_MESSAGE
        )
    return params


def get_azure_client(pat: str = Depends(get_pat)) -> AzureDevOpsClient:
    return AzureDevOpsClient(pat)


def get_analyzer() -> BatchAnalyzer:
    return get_batch_analyzer()
