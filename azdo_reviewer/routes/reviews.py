"""
Manual Review Routes

Endpoints backing a human review of a PR: details with reviewers and
threads, changed files, side-by-side diffs, single-file AI analysis,
votes and comment threads.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from azdo_reviewer.logging_config import get_logger
from azdo_reviewer.models import (
    AnalyzeFileRequest,
    ChangeEntry,
    CreateThreadRequest,
    FileDiffRequest,
    PRAnalysis,
    PullRequestRef,
    ReplyRequest,
    ReviewThread,
    ThreadComment,
    ThreadStatusRequest,
    VoteRequest,
)
from azdo_reviewer.routes.dependencies import (
    get_analyzer,
    get_azure_client,
    get_pat,
    parse_pr_url_or_400,
)
from azdo_reviewer.services.azure_devops import AzureDevOpsClient
from azdo_reviewer.services.batching import BatchAnalyzer
from azdo_reviewer.services.diff_engine import align_versions
from azdo_reviewer.services.presentation import thread_status_label, vote_label

logger = get_logger(__name__)

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.post("/details")
async def get_review_details(
    request: PullRequestRef,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> Dict[str, Any]:
    """PR details with human-readable vote and thread status labels."""
    params = parse_pr_url_or_400(request.url)
    details = await client.get_review_details(params)

    payload = details.model_dump(mode="json", by_alias=True)
    for reviewer in payload["reviewers"]:
        reviewer["voteLabel"] = vote_label(reviewer["vote"])
    for thread in payload["threads"]:
        thread["statusLabel"] = thread_status_label(thread["status"])
    return payload


@router.post("/files", response_model=List[ChangeEntry])
async def get_review_files(
    request: PullRequestRef,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> List[ChangeEntry]:
    params = parse_pr_url_or_400(request.url)
    return await client.get_pr_files(params)


@router.post("/file-content")
async def get_review_file_content(
    request: FileDiffRequest,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> Dict[str, Any]:
    params = parse_pr_url_or_400(request.url)
    content = await client.get_file_content(params, request.path, request.commit_id)
    return {"path": request.path, "commitId": request.commit_id, "content": content}


@router.post("/diff")
async def get_review_diff(
    request: FileDiffRequest,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> Dict[str, Any]:
    """
    Side-by-side diff of one file.

    The left column is the target branch version, the right column the
    source branch version, so "added" rows are what the PR adds.
    """
    params = parse_pr_url_or_400(request.url)
    files = await client.get_file_diffs(params)

    versions = next((f for f in files if f.path == request.path), None)
    if versions is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File is not part of this PR: {request.path}"
        )

    diff = await align_versions(versions.target_content, versions.source_content)

    return {
        "path": versions.path,
        "changeType": versions.change_type,
        "additions": diff.additions,
        "deletions": diff.deletions,
        **diff.model_dump(mode="json", by_alias=True),
    }


@router.post("/analyze-file", response_model=PRAnalysis)
async def analyze_review_file(
    request: AnalyzeFileRequest,
    pat: str = Depends(get_pat),
    analyzer: BatchAnalyzer = Depends(get_analyzer)
) -> PRAnalysis:
    params = parse_pr_url_or_400(request.url)
    return await analyzer.analyze_file(
        params,
        pat,
        request.path,
        provider=request.provider,
        system_instructions=request.system_instructions,
        system_context=request.system_context
    )


@router.post("/vote")
async def submit_vote(
    request: VoteRequest,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> Dict[str, Any]:
    params = parse_pr_url_or_400(request.url)
    await client.submit_vote(params, request.vote, request.reviewer_id)
    return {"vote": int(request.vote), "label": vote_label(int(request.vote))}


@router.post(
    "/threads",
    response_model=ReviewThread,
    status_code=status.HTTP_201_CREATED
)
async def create_thread(
    request: CreateThreadRequest,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> ReviewThread:
    params = parse_pr_url_or_400(request.url)
    return await client.create_comment_thread(
        params,
        request.content,
        file_path=request.file_path,
        line_number=request.line_number
    )


@router.post(
    "/threads/{thread_id}/replies",
    response_model=ThreadComment,
    status_code=status.HTTP_201_CREATED
)
async def reply_to_thread(
    thread_id: int,
    request: ReplyRequest,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> ThreadComment:
    params = parse_pr_url_or_400(request.url)
    return await client.reply_to_thread(params, thread_id, request.content)


@router.patch("/threads/{thread_id}")
async def update_thread_status(
    thread_id: int,
    request: ThreadStatusRequest,
    client: AzureDevOpsClient = Depends(get_azure_client)
) -> Dict[str, Any]:
    params = parse_pr_url_or_400(request.url)
    await client.update_thread_status(params, thread_id, request.status)
    return {
        "threadId": thread_id,
        "status": request.status,
        "label": thread_status_label(request.status),
    }
