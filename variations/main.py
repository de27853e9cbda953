import os
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from . import metrics
from . import queue as render_tasks
from .pipeline.orchestrator import VariationService
from .pipeline.routes import variation_router

load_dotenv()

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ── Lazy Redis client ─────────────────────────────────────────────────────────
_redis_client = None


def get_redis():
    """Get or create a Redis client. Returns None if Redis is not configured."""
    global _redis_client
    if _redis_client is None:
        redis_url = os.environ.get("REDIS_URL")
        if redis_url:
            import redis
            client = redis.from_url(redis_url, decode_responses=False)
            try:
                client.ping()
            except redis.RedisError as e:
                logger.warning(f"Redis connection failed: {e}; render tasks stay in-process only")
                return None
            logger.info(f"Redis connected: {redis_url[:30]}...")
            _redis_client = client
    return _redis_client


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Variation service starting up...")
    app.state.variation_service = VariationService(redis_client=get_redis())
    yield
    logger.info("Variation service shutting down...")


app = FastAPI(lifespan=lifespan)
app.include_router(variation_router)


@app.get("/health")
def health_check():
    """Verify the service is running and env vars are configured."""
    gemini_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY", "")
    return {
        "status": "ok",
        "gemini_api_key_set": bool(gemini_key),
        "r2_configured": bool(os.environ.get("R2_ACCOUNT_ID")),
        "redis_configured": bool(os.environ.get("REDIS_URL")),
    }


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all service metrics."""
    r = get_redis()
    if r is not None:
        metrics.set_level("render_queue_depth", render_tasks.get_queue_length(r))
    service = getattr(app.state, "variation_service", None)
    if service is not None:
        metrics.set_level("registry.size", len(service.registry))
        metrics.set_level("render_queue_pending", service.render_queue.pending())
    return metrics.get_snapshot()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("variations.main:app", host="0.0.0.0", port=port, reload=True)
