"""
Pull Request URL Parser

Turns the URL of an Azure DevOps pull request into the coordinates
(organization, project, repository, pull request id) the REST API needs.

Supported forms:
- https://dev.azure.com/{org}/{project}/_git/{repo}/pullrequest/{id}
- https://dev.azure.com/{org}/{project}/_apis/git/repositories/{repo}/pullRequests/{id}
- https://{org}.visualstudio.com/{project}/_git/{repo}/pullrequest/{id}
"""

from typing import List, Optional
from urllib.parse import unquote, urlsplit

from azdo_reviewer.logging_config import get_logger
from azdo_reviewer.models import AzureDevOpsParams

logger = get_logger(__name__)

PULL_REQUEST_SEGMENTS = {"pullrequest", "pullrequests"}


def _build(organization: str, project: str, repository: str, pr_id: str) -> Optional[AzureDevOpsParams]:
    parts = [unquote(p) for p in (organization, project, repository, pr_id)]
    if not all(parts):
        return None
    return AzureDevOpsParams(
        organization=parts[0],
        project=parts[1],
        repository=parts[2],
        pull_request_id=parts[3],
    )


def _parse_dev_azure(path_parts: List[str]) -> Optional[AzureDevOpsParams]:
    lower = [p.lower() for p in path_parts]

    # Web UI: {org}/{project}/_git/{repo}/pullrequest/{id}
    if len(path_parts) >= 6 and lower[2] == "_git" and lower[4] in PULL_REQUEST_SEGMENTS:
        return _build(path_parts[0], path_parts[1], path_parts[3], path_parts[5])

    # REST: {org}/{project}/_apis/git/repositories/{repo}/pullRequests/{id}
    if (
        len(path_parts) >= 8
        and lower[2] == "_apis"
        and lower[3] == "git"
        and lower[4] == "repositories"
        and lower[6] in PULL_REQUEST_SEGMENTS
    ):
        return _build(path_parts[0], path_parts[1], path_parts[5], path_parts[7])

    return None


def _parse_visualstudio(host_parts: List[str], path_parts: List[str]) -> Optional[AzureDevOpsParams]:
    lower = [p.lower() for p in path_parts]

    # {org}.visualstudio.com/{project}/_git/{repo}/pullrequest/{id}
    if len(path_parts) >= 5 and lower[1] == "_git" and lower[3] in PULL_REQUEST_SEGMENTS:
        return _build(host_parts[0], path_parts[0], path_parts[2], path_parts[4])

    return None


def parse_pr_url(url: str) -> Optional[AzureDevOpsParams]:
    """
    Parse an Azure DevOps pull request URL.

    Args:
        url: URL copied from the browser or from an API response

    Returns:
        AzureDevOpsParams, or None when the URL is not a recognised PR link
    """
    if not url or not isinstance(url, str):
        return None

    try:
        parsed = urlsplit(url.strip())
    except ValueError:
        logger.debug("Unparseable PR URL")
        return None

    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        return None

    path_parts = [p for p in parsed.path.split("/") if p]
    host_parts = parsed.hostname.split(".")

    if parsed.hostname == "dev.azure.com":
        result = _parse_dev_azure(path_parts)
    elif parsed.hostname.endswith(".visualstudio.com") and len(host_parts) == 3:
        result = _parse_visualstudio(host_parts, path_parts)
    else:
        result = None

    if result is None:
        logger.debug("PR URL format not recognised", host=parsed.hostname)
    return result
