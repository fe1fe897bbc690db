"""
EMR Gateway - Clinical backend for the EMR web client

Proxies FHIR resources from Aidbox and layers on:
- Clinical decision support (sepsis, inpatient risk, care gaps, drug interactions)
- Population risk stratification
- SMART-on-FHIR connections to Epic and eClinicalWorks
- AI scribe and diagnostic assist through pluggable LLM providers
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from emr_backend.config import settings
from emr_backend.database import init_db
from emr_backend.api import ai, audit, auth, cds, ehr, fhir, medications, population, resources
from emr_backend.services.fhir_client import FhirError
from emr_backend.services.smart_auth import SmartAuthError
from emr_backend.services.ai import AIProviderError, RateLimitExceeded, default_provider_name

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Backend for the EMR web client:

    * **FHIR Resources** - Thin CRUD proxy over Aidbox
    * **Patient Chart** - Aggregated chart snapshot in one call
    * **Clinical Decision Support** - qSOFA/SIRS/NEWS2, Morse/LACE/Braden, care gaps, drug interactions
    * **Population Health** - Risk cohorts across all patients
    * **EHR Integration** - SMART-on-FHIR PKCE launch for Epic and eClinicalWorks
    * **Medications** - Local formulary catalog with FHIR import
    * **AI Assist** - Ambient scribe and diagnostic suggestions
    * **Audit** - In-memory trail of user actions
    """,
    version=settings.VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc"
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(auth.router, prefix="/api")
app.include_router(resources.router, prefix="/api")
app.include_router(fhir.router, prefix="/api")
app.include_router(cds.router, prefix="/api")
app.include_router(population.router, prefix="/api")
app.include_router(ehr.router, prefix="/api")
app.include_router(medications.router, prefix="/api")
app.include_router(ai.router, prefix="/api")
app.include_router(audit.router, prefix="/api")


# ==================== Error envelope ====================

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'success': False, 'error': message})


@app.exception_handler(FhirError)
async def fhir_error_handler(request: Request, exc: FhirError):
    return _error(exc.status_code, str(exc))


@app.exception_handler(SmartAuthError)
async def smart_auth_error_handler(request: Request, exc: SmartAuthError):
    return _error(exc.status_code, str(exc))


@app.exception_handler(AIProviderError)
async def ai_provider_error_handler(request: Request, exc: AIProviderError):
    logger.error(f"AI provider error on {request.url.path}: {exc.message}")
    return _error(exc.status_code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return _error(429, exc.message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    response = _error(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = '.'.join(str(part) for part in first.get('loc', ()) if part != 'body')
        message = f"{field}: {first.get('msg')}" if field else first.get('msg')
    else:
        message = "Invalid request"
    return _error(400, message)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return _error(500, str(exc) or "Internal server error")


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    logger.info(f"Starting {settings.APP_NAME} {settings.VERSION}...")

    init_db()
    logger.info("Database initialized")

    logger.info(f"Aidbox FHIR server: {settings.AIDBOX_BASE_URL}")
    logger.info(f"AI provider: {default_provider_name()}")
    logger.info("API documentation available at /api/docs")


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "services": {
            "database": "ok",
            "fhir": settings.AIDBOX_BASE_URL,
            "ai_provider": default_provider_name()
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info"
    )
