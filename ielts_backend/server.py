# FILE: ielts_backend/server.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from ielts_backend.core.config import CORS_ORIGINS
from ielts_backend.core.database import engine, init_models
from ielts_backend.services.errors import ServiceError
from ielts_backend.services import rate_limit_service
from ielts_backend.api import admin, auth, credits, exams, root

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app
app = FastAPI(title="IELTS Exam Platform API")

app.include_router(root.router)
app.include_router(auth.router)
app.include_router(exams.router)
app.include_router(credits.router)
app.include_router(admin.router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, err: ServiceError):
    if err.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, err.code, err.message)
    headers = {}
    if "retry_after" in err.context:
        headers["Retry-After"] = str(err.context["retry_after"])
    return JSONResponse(status_code=err.status_code, content={"detail": err.to_http_detail()}, headers=headers)


@app.on_event("startup")
async def startup():
    await init_models()
    purged = await rate_limit_service.purge_expired()
    logger.info("database ready (%d expired rate-limit counters purged)", purged)


@app.on_event("shutdown")
async def shutdown_db_client():
    await engine.dispose()
