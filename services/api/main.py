"""HTTP trigger surface for pipeline runs, profile management and ratings."""

from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from shared.app_logging.logger import setup_logging
from shared.database.store import DocumentStore, get_document_store
from shared.errors import ArticleNotFound, ConfigurationInvalid, ProfileValidationError, StorageUnavailable
from shared.utils.health import create_health_checker
from shared.utils.redis_client import close_all_redis_clients
from shared.utils.run_guard import RunInProgress

from services.analyzer.gateway import ModelGateway
from services.analyzer.main import rerate_articles, run_pipeline
from services.learner.learner import (
    LearnerStatus,
    ProfileLearner,
    delete_profile,
    get_profile,
    update_profile_manual,
)
from services.learner.ratings import check_threshold, rate_article, unrate_article

logger = setup_logging("api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Adjutant API starting")
    try:
        yield
    finally:
        close_all_redis_clients()
        logger.info("Redis connections closed")


app = FastAPI(
    title="Adjutant API",
    description="Triggers the analysis pipeline and manages the preference profile.",
    lifespan=lifespan,
)

health_checker = create_health_checker("api", store_factory=get_document_store)


class ProfileUpdate(BaseModel):
    likes: List[str]
    dislikes: List[str]


class RatingUpdate(BaseModel):
    # None clears the rating
    relevant: bool | None = None


def get_store() -> DocumentStore:
    return get_document_store()


def get_gateway() -> ModelGateway:
    return ModelGateway()


@app.exception_handler(ConfigurationInvalid)
async def configuration_invalid_handler(request, exc: ConfigurationInvalid):
    logger.error(f"❌ Configuration invalid: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request, exc: StorageUnavailable):
    logger.error(f"❌ Storage unavailable: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.get("/health")
def health():
    """Comprehensive health check endpoint."""
    return health_checker.run_all_checks()


@app.get("/health/live")
def liveness_check():
    """Liveness check endpoint."""
    return {"status": "alive", "service": "api"}


@app.get("/health/ready")
def readiness_check():
    """Readiness check endpoint."""
    return health_checker.readiness()


@app.get("/metrics")
def metrics():
    """Prometheus metrics endpoint."""
    data = generate_latest()
    logger.debug("Metrics endpoint called.")
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.post("/pipeline/run")
async def trigger_pipeline(
    store: DocumentStore = Depends(get_store),
    gateway: ModelGateway = Depends(get_gateway),
):
    report = await run_pipeline(store=store, gateway=gateway)
    return report.as_dict()


@app.post("/pipeline/rerate")
async def trigger_rerate(
    store: DocumentStore = Depends(get_store),
    gateway: ModelGateway = Depends(get_gateway),
):
    report = await rerate_articles(store=store, gateway=gateway)
    return report.as_dict()


@app.post("/profile/generate")
async def generate_profile(
    store: DocumentStore = Depends(get_store),
    gateway: ModelGateway = Depends(get_gateway),
):
    result = await ProfileLearner(store, gateway).run()
    if result.status == LearnerStatus.BUSY:
        raise HTTPException(status_code=409, detail=result.message)
    if result.status == LearnerStatus.FAILED:
        raise HTTPException(status_code=502, detail=result.as_dict())
    return result.as_dict()


@app.get("/profile")
def read_profile(store: DocumentStore = Depends(get_store)):
    profile = get_profile(store)
    if profile is None:
        raise HTTPException(status_code=404, detail="No profile exists")
    return profile.to_document()


@app.put("/profile")
async def write_profile(update: ProfileUpdate, store: DocumentStore = Depends(get_store)):
    try:
        profile = await update_profile_manual(store, update.likes, update.dislikes)
    except ProfileValidationError as e:
        raise HTTPException(status_code=422, detail=e.issues)
    except RunInProgress:
        raise HTTPException(status_code=409, detail="A profile update is already in progress")
    return profile.to_document()


@app.delete("/profile")
def remove_profile(store: DocumentStore = Depends(get_store)):
    if not delete_profile(store):
        raise HTTPException(status_code=404, detail="No profile exists")
    return {"deleted": True}


@app.get("/profile/threshold")
def read_threshold(store: DocumentStore = Depends(get_store)):
    return check_threshold(store).as_dict()


@app.post("/articles/{article_id}/rating")
def set_rating(article_id: str, update: RatingUpdate, store: DocumentStore = Depends(get_store)):
    try:
        if update.relevant is None:
            article = unrate_article(store, article_id)
        else:
            article = rate_article(store, article_id, update.relevant)
    except ArticleNotFound:
        raise HTTPException(status_code=404, detail=f"Article {article_id} not found")
    return article.to_document()
