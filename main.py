import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from database import AsyncSessionLocal, init_db
from api.applications import router as applications_router
from api.forms import router as forms_router
from services.container import build_pipeline

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    pipeline = build_pipeline(settings, AsyncSessionLocal)
    app.state.pipeline = pipeline
    await pipeline.filler.check_templates(pipeline.registry)
    pipeline.worker.start()
    if settings.recover_on_startup:
        await pipeline.recover_interrupted()
    logger.info("%s started", settings.app_name)
    yield
    await pipeline.worker.stop()


app = FastAPI(
    title=settings.app_name,
    description="Loan application assembly: SBA form generation and bank delivery",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(applications_router)
app.include_router(forms_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
