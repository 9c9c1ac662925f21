import os
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

# Module-level config in the pipeline reads the environment at import time
load_dotenv()

from .pipeline import session_router
from .pipeline.storage import MEDIA_BASE_URL, media_root
from . import gemini, veo

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Room editor starting up...")
    if not gemini.GEMINI_API_KEY:
        logger.warning("GEMINI_API_KEY is not set; every AI stage will fail")
    yield
    # Shutdown
    logger.info("Room editor shutting down...")


app = FastAPI(lifespan=lifespan)

media_root().mkdir(parents=True, exist_ok=True)
app.mount(MEDIA_BASE_URL, StaticFiles(directory=media_root()), name="media")

app.include_router(session_router)


@app.get("/health")
def health_check():
    """Verify the service is running and the model config is in place."""
    return {
        "status": "ok",
        "gemini_api_key_set": bool(gemini.GEMINI_API_KEY),
        "text_model": gemini.TEXT_MODEL,
        "image_model": gemini.IMAGE_MODEL,
        "video_model": veo.VEO_MODEL,
    }


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("roomshaper.main:app", host="0.0.0.0", port=port, reload=True)
