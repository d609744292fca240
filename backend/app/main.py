import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables from .env file before any settings are read
load_dotenv()

from .agents.shipping_analysis.http_client import close_client  # noqa: E402
from .database import init_db  # noqa: E402
from .routers.analysis import router as analysis_router  # noqa: E402

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):

    # Startup
    print("Starting Shipping Competitor Analysis")
    print(f"   OpenAI Key:     {' Configured' if os.getenv('OPENAI_API_KEY') else ' Not set'}")
    print(f"   Firecrawl Key:  {' Configured' if os.getenv('FIRECRAWL_API_KEY') else ' Not set'}")
    init_db()
    print("   Ready to analyze shipping competitors!")

    yield

    await close_client()
    print("Shutting down Shipping Competitor Analysis")


app = FastAPI(
    title="Shipping Competitor Analysis",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",      # Next.js dev server
        "http://127.0.0.1:3000",      # Alternative localhost
        "http://localhost:3001",      # Alternative port
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analysis_router)


@app.get(
    "/",
    summary="API Root",
    description="Welcome endpoint with API information",
    tags=["General"]
)
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Shipping Competitor Analysis",
        "version": "0.1.0",
        "description": "Competitor free-shipping threshold analysis",
        "docs": "/docs",
        "endpoints": {
            "analyze": "POST /analyze - Analyze a website's shipping competitors",
            "progress": "GET /analysis-progress?session_id= - Live progress stream",
            "history": "GET /analysis-history?user_id= - Past analyses",
            "health": "GET /health - Service health check"
        }
    }


@app.get(
    "/health",
    summary="Global Health Check",
    description="Check if the API server is running",
    tags=["General"]
)
async def health():
    """Global health check endpoint."""
    return {
        "status": "healthy",
        "service": "shipping-competitor-analysis",
        "version": "0.1.0"
    }


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "detail": str(exc) if os.getenv("DEBUG", "false").lower() == "true" else "An unexpected error occurred"
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("DEBUG", "true").lower() == "true",
    )
