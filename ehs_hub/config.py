"""
EHS Hub - Configuration

All runtime settings for the workflow service. Values come from environment
variables (a local .env file is loaded first, if present).
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')
load_dotenv()  # Fall back to a .env in the working directory


# =============================================================================
# DATABASE
# =============================================================================

MONGO_URL = os.environ.get("MONGO_URL", "mongodb://localhost:27017")
DB_NAME = os.environ.get("DB_NAME", "ehs_hub")

WORKFLOWS_COLLECTION = os.environ.get("WORKFLOWS_COLLECTION", "workflows")


# =============================================================================
# IDENTITY
# =============================================================================

# Tokens are issued by the external auth service; we only verify them.
JWT_SECRET = os.environ.get("JWT_SECRET", "ehs-hub-secret-key")
JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.environ.get("JWT_AUDIENCE") or None


# =============================================================================
# EVIDENCE PHOTOS
# =============================================================================

EVIDENCE_BUCKET = os.environ.get("EVIDENCE_BUCKET", "workflow-evidence")
EVIDENCE_MAX_BYTES = int(os.environ.get("EVIDENCE_MAX_BYTES", str(5 * 1024 * 1024)))
EVIDENCE_MAX_PHOTOS = int(os.environ.get("EVIDENCE_MAX_PHOTOS", "5"))


# =============================================================================
# SERVER
# =============================================================================

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in os.environ.get("CORS_ORIGINS", "*").split(",")
    if origin.strip()
]
CREATE_INDEXES_ON_STARTUP = os.environ.get("CREATE_INDEXES_ON_STARTUP", "true").lower() == "true"
