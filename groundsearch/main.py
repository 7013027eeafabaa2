from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from groundsearch.api.routes import jobs
from groundsearch.config import settings
from groundsearch.services.logger import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"GroundSearch API starting (job store: {settings.job_store_dir})")
    yield
    logger.info("GroundSearch API shutting down")


app = FastAPI(
    title="GroundSearch",
    description="Grounded research pipeline with resumable plans",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(jobs.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "groundsearch"}
