from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fusion_automation.api.v1 import api_router
from fusion_automation.core.automation.engine import AutomationEngine
from fusion_automation.core.automation.errors import RuleValidationError
from fusion_automation.core.config_file import get_settings
from fusion_automation.core.exceptions import APIException
from fusion_automation.core.logging import get_logger
from fusion_automation.schemas.common import ErrorDetail, ErrorResponse

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build a fresh automation engine, register persisted rules and start the scheduler.

    A new engine is built on every startup so its scheduler binds to the running
    event loop. ``app.state.automation_engine_factory`` overrides how it is built.
    """
    factory = getattr(app.state, "automation_engine_factory", None) or (
        lambda: AutomationEngine(settings)
    )
    engine = factory()
    app.state.automation_engine = engine
    await engine.start()
    try:
        yield
    finally:
        await engine.stop()
        app.state.automation_engine = None


app = FastAPI(
    title="Fusion Automation API",
    version="0.1.0",
    description="Automation rule engine and execution audit API",
    docs_url="/docs",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# CORS configuration
if settings.CORS_ORIGINS:
    origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
else:
    origins = ["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Handle APIException and return standard error format."""
    # exc.detail already contains {"error": {...}}, add data: null for API contract compliance
    response_content = exc.detail.copy()
    response_content["data"] = None
    return JSONResponse(
        status_code=exc.status_code,
        content=response_content,
    )


@app.exception_handler(RuleValidationError)
async def rule_validation_exception_handler(
    request: Request, exc: RuleValidationError
) -> JSONResponse:
    """Reject malformed rule definitions with the standard error format."""
    logger.info(f"Rejected rule definition: {exc.message}")
    error = ErrorDetail(code="AUTOMATION_RULE_INVALID", message=exc.message, details=exc.details)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error=error).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors and format them according to API contract."""
    details = {}
    for error in exc.errors():
        # Extract field path (e.g., ["body", "device_id"] -> "device_id")
        field_path = error["loc"]
        field_name = field_path[-1] if len(field_path) > 1 else field_path[0]

        if field_name not in details:
            details[field_name] = []
        details[field_name].append(error["msg"])

    response_content = {
        "error": {
            "code": "VALIDATION_ERROR",
            "message": "Validation failed",
            "details": details,
        },
        "data": None,
    }

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=response_content,
    )


@app.get("/healthz", tags=["system"])
def healthz(request: Request):
    """Health check endpoint."""
    engine = getattr(request.app.state, "automation_engine", None)
    return {
        "status": "ok",
        "env": settings.ENV,
        "debug": settings.DEBUG,
        "registered_rules": len(engine.registry) if engine else 0,
    }


# Include API routers
app.include_router(api_router, prefix="/api/v1")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "fusion_automation.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
