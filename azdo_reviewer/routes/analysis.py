"""
Analysis Routes

Endpoints for the paginated AI analysis of a pull request:
- POST /analysis: fetch the PR and analyze the first batch
- POST /analysis/{session_id}/next: analyze the next batch
- GET /analysis/{session_id}: current cumulative result
- DELETE /analysis/{session_id}: forget a session
"""

from fastapi import APIRouter, Depends, status

from azdo_reviewer.logging_config import get_logger
from azdo_reviewer.models import AnalysisSessionResponse, StartAnalysisRequest
from azdo_reviewer.routes.dependencies import get_analyzer, get_pat, parse_pr_url_or_400
from azdo_reviewer.services.batching import BatchAnalyzer

logger = get_logger(__name__)

router = APIRouter(prefix="/analysis", tags=["analysis"])


@router.post(
    "",
    response_model=AnalysisSessionResponse,
    status_code=status.HTTP_201_CREATED
)
async def start_analysis(
    request: StartAnalysisRequest,
    pat: str = Depends(get_pat),
    analyzer: BatchAnalyzer = Depends(get_analyzer)
) -> AnalysisSessionResponse:
    """
    Start analyzing a PR.

    The response carries the first batch's analysis and the session id
    used to request further batches while `hasMore` is true.
    """
    params = parse_pr_url_or_400(request.url)

    session = await analyzer.start(
        params,
        pat,
        provider=request.provider,
        system_instructions=request.system_instructions,
        system_context=request.system_context
    )
    return AnalysisSessionResponse.from_session(session)


@router.post("/{session_id}/next", response_model=AnalysisSessionResponse)
async def analyze_next_batch(
    session_id: str,
    pat: str = Depends(get_pat),
    analyzer: BatchAnalyzer = Depends(get_analyzer)
) -> AnalysisSessionResponse:
    session = await analyzer.next_batch(session_id, pat)
    return AnalysisSessionResponse.from_session(session)


@router.get("/{session_id}", response_model=AnalysisSessionResponse)
async def get_analysis(
    session_id: str,
    analyzer: BatchAnalyzer = Depends(get_analyzer)
) -> AnalysisSessionResponse:
    return AnalysisSessionResponse.from_session(analyzer.get_session(session_id))


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_analysis(
    session_id: str,
    analyzer: BatchAnalyzer = Depends(get_analyzer)
) -> None:
    analyzer.get_session(session_id)
    analyzer.store.delete(session_id)
    logger.info("Analysis session deleted", session_id=session_id)
