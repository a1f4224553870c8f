"""
Routes Package

This package contains the HTTP endpoints:
- analysis: paginated AI analysis sessions
- reviews: manual review of a PR
- pull_requests: PR creation and branch lookup
"""

from fastapi import APIRouter

from azdo_reviewer.routes.analysis import router as analysis_router
from azdo_reviewer.routes.pull_requests import router as pull_requests_router
from azdo_reviewer.routes.reviews import router as reviews_router

router = APIRouter()
router.include_router(analysis_router)
router.include_router(reviews_router)
router.include_router(pull_requests_router)

__all__ = ["router"]
