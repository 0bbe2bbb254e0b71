import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Mindfield backend starting up (model=%s)...", settings.content_model)
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set — every round will use fallback content")
    yield
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Mindfield",
    version="0.1.0",
    description="Real-time multiplayer stance game — players vote by where they stand, powered by Gemini",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "mindfield", "version": "0.1.0"}


from routers.room_router import router as room_router
from routers.ws_router import router as ws_router

app.include_router(room_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
