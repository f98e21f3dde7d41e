from __future__ import annotations

import logging
import os
from datetime import UTC, datetime

from dotenv import load_dotenv
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from ..observability.metrics import metrics_middleware_factory
from .routers.assistant import router as assistant_router
from .routers.authorize import router as authorize_router
from .routers.telemetry import router as telemetry_router
from .routers.tokens import router as tokens_router
from .routers.uploads import router as uploads_router

load_dotenv()  # Load environment variables from .env if present (GROQ_API_KEYS, WHATSAPP_ACCESS_TOKEN, etc.)

app = FastAPI(title="tenantdesk API", version="0.1.0")

logging.getLogger("tenantdesk").info("api_starting")

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

# Token-gated pages (capability token is the only credential)
app.include_router(uploads_router)
app.include_router(authorize_router)

# Collaborator-facing endpoints (bearer JWT)
app.include_router(tokens_router)
app.include_router(assistant_router)
app.include_router(telemetry_router)


@app.get("/")
def root():
    return {"name": "tenantdesk API", "version": "0.1.0"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "token_store": os.getenv("TENANTDESK_TOKEN_STORE_IMPL", "memory").lower(),
            "queue": os.getenv("TENANTDESK_QUEUE_IMPL", "memory").lower(),
            "messenger": os.getenv("TENANTDESK_MESSENGER_IMPL", "log").lower(),
        },
    }


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
