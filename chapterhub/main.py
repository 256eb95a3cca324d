# main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from chapterhub import __version__
from chapterhub.config import CORS_ORIGINS
from chapterhub.database.connection import MongoConnector
from chapterhub.errors import ChapterHubError
from chapterhub.routes.ballot_routes import ballot_router
from chapterhub.routes.committee_routes import router as committee_router
from chapterhub.routes.event_routes import router as event_router
from chapterhub.routes.gem_routes import router as gem_router
from chapterhub.routes.lockdown_routes import router as lockdown_router
from chapterhub.routes.member_routes import router as member_router
from chapterhub.routes.minutes_routes import router as minutes_router
from chapterhub.routes.pending_member_routes import router as pending_member_router
from chapterhub.routes.vote_admin_routes import router as vote_admin_router
from chapterhub.routes.vote_routes import vote_router
from chapterhub.scheduler import scheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"ChapterHub API {__version__} starting")
    yield
    scheduler.shutdown()
    MongoConnector.close()


app = FastAPI(title="ChapterHub - Chapter Membership and Voting API", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChapterHubError)
async def chapterhub_error_handler(request: Request, exc: ChapterHubError):
    logger.warning(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# --- Voting ---
app.include_router(vote_router)
app.include_router(vote_admin_router)
app.include_router(ballot_router)

# --- Chapter ---
app.include_router(pending_member_router)
app.include_router(member_router)
app.include_router(committee_router)
app.include_router(event_router)
app.include_router(gem_router)
app.include_router(minutes_router)
app.include_router(lockdown_router)


# --- General Endpoints ---

@app.get("/", tags=["Root"])
def read_root():
    return {"message": "Welcome to the ChapterHub API"}


@app.get("/health", tags=["Root"])
def health_check():
    return {"status": "healthy", "database": "MongoDB"}


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    return Response(status_code=204)
