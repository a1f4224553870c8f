"""
Pull Request Creation Routes
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from azdo_reviewer.logging_config import get_logger
from azdo_reviewer.models import (
    BranchValidationRequest,
    PRCreateParams,
    PRCreateResult,
    RepositoryRef,
)
from azdo_reviewer.routes.dependencies import get_azure_client
from azdo_reviewer.services.azure_devops import AzureDevOpsClient
from azdo_reviewer.services.presentation import default_description, title_from_branch

logger = get_logger(__name__)

router = APIRouter(prefix="/pull-requests", tags=["pull-requests"])


@router.post(
    "",
    response_model=PRCreateResult,
    status_code=status.HTTP_201_CREATED
)
async def create_pull_request(
    request: PRCreateParams,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> PRCreateResult:
    """
    Create a PR.

    The source branch must exist. An empty title is derived from the
    branch name and an empty description gets the checklist template.
    """
    if not await client.branch_exists(request, request.source_branch):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Source branch does not exist: {request.source_branch}"
        )

    params = request.model_copy(update={
        "title": request.title.strip() or title_from_branch(request.source_branch),
        "description": request.description or default_description(),
    })
    return await client.create_pull_request(params)


@router.post("/branches")
async def list_branches(
    request: RepositoryRef,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> Dict[str, Any]:
    return {"branches": await client.list_branches(request)}


@router.post("/branches/validate")
async def validate_branch(
    request: BranchValidationRequest,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> Dict[str, Any]:
    exists = await client.branch_exists(request, request.branch)
    return {
        "branch": request.branch,
        "exists": exists,
        "suggestedTitle": title_from_branch(request.branch),
    }
