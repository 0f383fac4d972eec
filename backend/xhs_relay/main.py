from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

# Load backend/.env as early as possible so get_settings() sees the operator config.
_backend_dir = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=_backend_dir / ".env", override=False)

from xhs_relay.api import extract
from xhs_relay.api import post_bridge
from xhs_relay.core.config import get_settings
from xhs_relay.core.logger import setup_logger

logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("Starting XHS media relay...")
    logger.info(
        f"XHS env loaded: cookie_len={len(settings.cookie)}, "
        f"relay_template={'set' if settings.relay_template else 'empty'}, "
        f"verify_videos={settings.verify_videos}, batch_max_urls={settings.batch_max_urls}"
    )
    if not settings.postbridge_api_key:
        logger.warning("POSTBRIDGE_API_KEY not set; publishing routes will answer 500")

    yield

    logger.info("Shutting down...")


app = FastAPI(
    title="XHS Media Relay",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(extract.router, prefix="/api/v1")
app.include_router(post_bridge.router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("xhs_relay.main:app", host="0.0.0.0", port=8000, reload=True)
