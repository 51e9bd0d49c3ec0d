import logging
import os
import sys
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from devteam.config import get_settings
from devteam.routes.runs import runs_router

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

# Configure logging to output to stdout
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)

logging.getLogger("devteam").setLevel(logging.DEBUG)
logging.getLogger("httpx").setLevel(logging.WARNING)

SENTRY_DSN = os.getenv("SENTRY_DSN") or ""
if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        environment=os.getenv("SENTRY_ENVIRONMENT", "production"),
        release=os.getenv("SENTRY_RELEASE") or None,
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.05")),
        integrations=[FastApiIntegration()],
        send_default_pii=False,
    )

app = FastAPI()
logger = logging.getLogger("devteam.main")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def health():
    settings = get_settings()
    return {"status": "ok", "model": settings.model, "qa_enabled": settings.enable_qa}


app.include_router(runs_router)


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    logger.info("Server running on port %s", port)
    uvicorn.run(app, host="0.0.0.0", port=port)
