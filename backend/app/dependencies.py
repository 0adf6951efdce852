"""
Claim Resolution Engine - Collaborator Providers

FastAPI dependencies for the external collaborators. Routes depend on
these instead of constructing clients, so tests can swap them through
app.dependency_overrides.
"""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import get_settings
from .database import SessionLocal, get_db
from .services.legal import LegalApprovalService, PackageBuilder
from .services.llm import ClaudeClient
from .services.notifications import NotificationDispatcher, get_email_service
from .services.storage import SupabaseStorage


@lru_cache(maxsize=1)
def get_llm_client() -> ClaudeClient:
    return ClaudeClient.from_settings()


@lru_cache(maxsize=1)
def get_storage() -> SupabaseStorage:
    return SupabaseStorage.from_settings()


@lru_cache(maxsize=1)
def get_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher; detached sends outlive the request."""
    return NotificationDispatcher(get_email_service(), SessionLocal)


def get_package_builder(storage: SupabaseStorage = Depends(get_storage)) -> PackageBuilder:
    return PackageBuilder(storage, download_timeout_seconds=get_settings().download_timeout_seconds)


def get_approval_service(
    db: Session = Depends(get_db),
    package_builder: PackageBuilder = Depends(get_package_builder),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> LegalApprovalService:
    return LegalApprovalService(
        db,
        package_builder,
        dispatcher,
        frontend_url=get_settings().frontend_url,
    )
