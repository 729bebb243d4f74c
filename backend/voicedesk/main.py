"""
FastAPI application entry point.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from voicedesk.config import get_settings
from voicedesk.routes import accounts, health, learning, realtime, todos, tools, user
from voicedesk.utils.logger import get_logger, setup_logging
from voicedesk.utils.errors import AppError, InvalidRequestError

# Setup logging
setup_logging()
logger = get_logger(__name__)

# Create FastAPI app
app = FastAPI(
    title="VoiceDesk",
    description="Voice assistant session and tool routing for email, calendar, todos and learning",
    version="1.0.0",
)

# Get settings
settings = get_settings()

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Render application errors with their status code and stable error code."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Convert validation errors to 400 with the offending fields."""
    fields = [
        {"loc": [str(part) for part in error.get("loc", [])], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    error = InvalidRequestError(details={"fields": fields})
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# Include routers
app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(realtime.router, prefix="/api/realtime", tags=["Realtime Sessions"])
app.include_router(tools.router, prefix="/api", tags=["Tools"])
app.include_router(accounts.router, prefix="/api/google", tags=["Google Accounts"])
app.include_router(accounts.callback_router, tags=["Google Accounts"])
app.include_router(todos.router, prefix="/api/todos", tags=["Todos"])
app.include_router(learning.router, prefix="/api/learning", tags=["Learning"])
app.include_router(user.router, prefix="/api/auth", tags=["User"])


@app.get("/")
async def root():
    """Root endpoint - redirects to docs."""
    return {
        "message": "VoiceDesk API",
        "docs": "/docs",
        "health": "/api/health",
    }
