import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from formbuilder.config import settings
from formbuilder.routers.builder import router as builder_router
from formbuilder.routers.forms import router as forms_router


def setup_logging(level: str = settings.LOG_LEVEL) -> logging.Logger:
    """Console logging for the whole package."""
    logger = logging.getLogger("formbuilder")
    logger.setLevel(level)

    # Remove any existing handlers
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    logger.addHandler(console_handler)
    return logger


setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # autosave tasks belong to sessions; stop them before the loop goes away
    sessions = getattr(app.state, "sessions", None)
    if sessions is not None:
        await sessions.close_all()


app = FastAPI(title="Checklist Form Builder (FastAPI + Mongo)", lifespan=lifespan)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(forms_router)
app.include_router(builder_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
