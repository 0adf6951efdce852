"""Claim Resolution Engine - API Routers"""
from .auth import router as auth_router
from .audit import router as audit_router
from .legal import router as legal_router

__all__ = [
    "auth_router",
    "audit_router",
    "legal_router",
]
