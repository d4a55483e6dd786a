"""
EHS Hub - Routes Package

Modular API routers for the workflow service.
"""

from .auth import router as auth_router, set_identity_provider
from .workflows import router as workflows_router, set_dependencies as set_workflows_deps

__all__ = [
    'auth_router', 'set_identity_provider',
    'workflows_router', 'set_workflows_deps',
]
