"""Health check endpoints."""
from fastapi import APIRouter

from content_jobs.config import settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "content-jobs",
        "environment": settings.ENVIRONMENT,
        "llm_provider": settings.LLM_PROVIDER,
        "job_store": settings.JOB_STORE_BACKEND,
        "dispatch_mode": settings.DISPATCH_MODE,
    }


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Content Generation Job Queue",
        "version": "0.1.0",
        "status": "running",
    }
