"""Main FastAPI application for the content generation job queue."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from content_jobs.api.routes import batches, health
from content_jobs.config import settings
from content_jobs.logging_utils import configure_sensitive_data_redaction

# Create FastAPI app
app = FastAPI(
    title="Content Generation Job Queue",
    description="Per-subsection course content generation with retries and idempotent merge",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
)

# CORS middleware
# In production, allow requests from frontend URL
# In development, allow all origins for ease of testing
allowed_origins = (
    ["*"] if settings.is_development
    else ([settings.FRONTEND_URL] if settings.FRONTEND_URL else [settings.AI_SERVICE_URL])
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(batches.router, tags=["Batches"])


@app.on_event("startup")
async def startup_event():
    """Initialize services on startup."""
    configure_sensitive_data_redaction()

    print(f"🚀 Content job queue starting in {settings.ENVIRONMENT} mode")
    print(f"📊 LLM Provider: {settings.LLM_PROVIDER}")
    print(f"🧵 Job store: {settings.JOB_STORE_BACKEND}, dispatch: {settings.DISPATCH_MODE}")

    if settings.JOB_STORE_BACKEND.lower() == "postgres":
        print(f"🗄️  Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")
        try:
            from content_jobs.db.connection import get_db_pool
            from content_jobs.db.schema import ensure_schema

            pool = await get_db_pool()
            await pool.fetchval("SELECT 1")
            print("✅ Database connection validated")

            await ensure_schema()
            print("✅ Job queue schema ready")
        except Exception as e:
            print(f"❌ Database connection failed: {e}")
            raise

    if settings.RUN_WORKER_POOL and settings.DISPATCH_MODE.lower() == "pool":
        from content_jobs.services.jobs.factory import QueueFactory

        QueueFactory.get_pool().start()
        print(f"👷 Worker pool running with {settings.WORKER_CONCURRENCY} workers")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    from content_jobs.services.jobs.factory import QueueFactory

    # Stop workers before the pool they write through goes away
    if QueueFactory._pool is not None:
        await QueueFactory._pool.stop()

    if settings.JOB_STORE_BACKEND.lower() == "postgres":
        from content_jobs.db.connection import close_db_pool

        await close_db_pool()

    print("👋 Content job queue shutting down")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "content_jobs.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
