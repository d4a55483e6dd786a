"""
EHS Hub - Main Server

Entry point: `uvicorn ehs_hub.server:app`. Routes are organized in /routes/.
"""

from fastapi import FastAPI, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from contextlib import asynccontextmanager
import logging

from . import __version__, config

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# ==================== ROUTERS ====================
from .routes import auth, workflows

# ==================== SERVICES ====================
from .services.identity import JwtIdentityProvider
from .services.stores import MongoWorkflowStore, GridFSEvidenceStore
from .services.workflow_service import WorkflowService

mongo_client = None


# ==================== LIFESPAN ====================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global mongo_client

    # Startup
    logger.info("Starting EHS Hub workflow service...")

    mongo_client = AsyncIOMotorClient(config.MONGO_URL)
    db = mongo_client[config.DB_NAME]

    store = MongoWorkflowStore(db, config.WORKFLOWS_COLLECTION)
    evidence_store = GridFSEvidenceStore(db, config.EVIDENCE_BUCKET)

    # Initialize routers with their collaborators
    auth.set_identity_provider(JwtIdentityProvider())
    workflows.set_dependencies(WorkflowService(store, evidence_store))

    if config.CREATE_INDEXES_ON_STARTUP:
        await store.create_indexes()
        logger.info("Database indexes created")

    logger.info("EHS Hub workflow service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down EHS Hub workflow service...")
    if mongo_client:
        mongo_client.close()


# ==================== APP SETUP ====================
app = FastAPI(
    title="EHS Hub",
    description="Corrective and preventive action workflows",
    version=__version__,
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API Router with /api prefix
api_router = APIRouter(prefix="/api")

# Include route modules
api_router.include_router(auth.router)
api_router.include_router(workflows.router)

# Mount to app
app.include_router(api_router)


# ==================== ROOT ENDPOINTS ====================
@app.get("/")
async def root():
    return {
        "service": "EHS Hub",
        "version": __version__,
        "status": "running"
    }


@app.get("/api/health")
async def health():
    return {
        "status": "healthy",
        "service": "ehs-hub"
    }
