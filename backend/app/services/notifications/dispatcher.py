"""
Claim Resolution Engine - Notification Dispatcher

Two ways to send:
- send_now(): synchronous, the caller sees EmailDeliveryError
- dispatch(): detached on a bounded thread pool; the caller never observes
  the outcome

Either way every attempt is written to notification_logs through a
session the dispatcher opens itself, so a detached send never touches
the request's session or transaction.
"""
from __future__ import annotations
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import NotificationKind, NotificationLogDB, NotificationStatus
from ..errors import EmailDeliveryError
from .email_service import EmailMessage, EmailService

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


class NotificationDispatcher:
    def __init__(
        self,
        email_service: EmailService,
        session_factory: Callable[[], Session],
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self.email = email_service
        self.session_factory = session_factory
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._pending: List[Future] = []
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def send_now(
        self,
        kind: NotificationKind,
        message: EmailMessage,
        claim_id: Optional[str] = None,
        approval_request_id: Optional[str] = None,
    ) -> None:
        """Send in the caller's thread. Failure is recorded, then re-raised."""
        try:
            self.email.send(message)
        except EmailDeliveryError as e:
            self._record(kind, message.to_email, claim_id, approval_request_id, NotificationStatus.FAILED, str(e))
            raise
        self._record(kind, message.to_email, claim_id, approval_request_id, NotificationStatus.SENT)

    def dispatch(
        self,
        kind: NotificationKind,
        message: EmailMessage,
        claim_id: Optional[str] = None,
        approval_request_id: Optional[str] = None,
    ) -> Future:
        """Queue a detached send. The returned future never raises."""
        future = self._executor.submit(self._run_detached, kind, message, claim_id, approval_request_id)
        with self._lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)
        return future

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every queued send has finished."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _run_detached(
        self,
        kind: NotificationKind,
        message: EmailMessage,
        claim_id: Optional[str],
        approval_request_id: Optional[str],
    ) -> bool:
        try:
            self.email.send(message)
        except Exception as e:
            # Detached: nobody upstream can handle this, so record it and stop.
            logger.error(
                f"Detached {kind.value} notification to {message.to_email} failed "
                f"(claim {claim_id}, approval {approval_request_id}): {e}"
            )
            self._record(kind, message.to_email, claim_id, approval_request_id, NotificationStatus.FAILED, str(e))
            return False
        self._record(kind, message.to_email, claim_id, approval_request_id, NotificationStatus.SENT)
        return True

    def _record(
        self,
        kind: NotificationKind,
        recipient: str,
        claim_id: Optional[str],
        approval_request_id: Optional[str],
        status: NotificationStatus,
        error: Optional[str] = None,
    ) -> None:
        db = self.session_factory()
        try:
            db.add(NotificationLogDB(
                id=str(uuid4()),
                kind=kind.value,
                recipient=recipient,
                claim_id=claim_id,
                approval_request_id=approval_request_id,
                status=status.value,
                error=error,
            ))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning(f"Failed to record {kind.value} notification outcome for claim {claim_id}: {e}")
        finally:
            db.close()
