import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mfa_core.api.routers import mfa
from mfa_core.core.config import get_settings
from mfa_core.core.logging_config import configure_logging
from mfa_core.db.base import Base
from mfa_core.db.session import engine

settings = get_settings()
configure_logging(settings)

logger = logging.getLogger(__name__)

docs_url = "/docs" if settings.enable_docs else None
redoc_url = "/redoc" if settings.enable_docs else None
openapi_url = "/openapi.json" if settings.enable_docs else None

app = FastAPI(title=settings.app_name, version="0.1.0", docs_url=docs_url, redoc_url=redoc_url, openapi_url=openapi_url)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)

app.include_router(mfa.router)


@app.on_event("startup")
def on_startup():
    if not settings.jwt_secret:
        logger.warning("MFACORE_JWT_SECRET is not set; session tokens are signed with an empty key")
    Base.metadata.create_all(bind=engine)


@app.get("/health")
def health():
    return {"status": "ok"}
