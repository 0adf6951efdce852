"""
Shared fixtures: a file-backed SQLite database, a seeded claim, and
in-test fakes for the model client, storage, photo downloads and email.
"""
import os
import tempfile
from datetime import date, datetime
from types import SimpleNamespace
from uuid import uuid4

import pytest

# The engine is built at import time, so point it at SQLite first.
_DB_DIR = tempfile.mkdtemp(prefix="claim-engine-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ.pop("SENDGRID_API_KEY", None)
os.environ.pop("ANTHROPIC_API_KEY", None)

from app.database import Base, SessionLocal, engine  # noqa: E402
from app.models import db_models  # noqa: E402,F401
from app.models.db_models import (  # noqa: E402
    AuditReportDB, AuditStatus, CarrierEstimateDB, ClaimDB, DocumentDB, DocumentStatus,
    DocumentType, OrganizationDB, PolicyDB, PropertyDB, ScopeSheetDB, UserDB,
)
from app.services.errors import EmailDeliveryError  # noqa: E402
from app.services.llm import ChatResponse  # noqa: E402
from app.services.notifications import EmailService, NotificationDispatcher  # noqa: E402


# =============================================================================
# SAMPLE PAYLOADS
# =============================================================================

CONTRACTOR_ESTIMATE = {
    "line_items": [
        {"description": "Remove and replace architectural shingles", "quantity": 28, "unit": "SQ",
         "unit_cost": 420.0, "total": 11760.0, "category": "Roofing"},
        {"description": "Ice and water shield", "quantity": 6, "unit": "SQ",
         "unit_cost": 180.0, "total": 1080.0, "category": "Roofing"},
        {"description": "Replace aluminum gutters", "quantity": 120, "unit": "LF",
         "unit_cost": 12.5, "total": 1500.0, "category": "Exterior"},
    ],
    "subtotal": 14340.0,
    "overhead_profit": 3000.0,
    "total": 17340.0,
}

CARRIER_ESTIMATE = {
    "line_items": [
        {"description": "Remove and replace architectural shingles", "total": 11200.0},
        {"description": "Replace aluminum gutters", "total": 1450.0},
        {"description": "Overhead and profit", "total": 2000.0},
    ],
    "total": 14650.0,
}


# =============================================================================
# FAKES
# =============================================================================

class FakeLLM:
    """Returns queued replies in order and records every prompt."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def queue(self, *replies):
        self.replies.extend(replies)

    def complete(self, prompt, system_prompt="", temperature=0.2, max_tokens=2000):
        self.calls.append({
            "prompt": prompt,
            "system_prompt": system_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResponse(content=reply, model="test-model", prompt_tokens=1200, completion_tokens=400)


class FakeStorage:
    def __init__(self):
        self.signed = []

    def generate_download_url(self, file_path):
        self.signed.append(file_path)
        return f"https://storage.test/signed/{file_path}?token=abc"


class FakeHTTPResponse:
    def __init__(self, status_code=200, content=b""):
        self.status_code = status_code
        self.content = content


class FakeHTTP:
    """Serves fake image bytes; URLs containing a failing fragment return 500."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.requested = []

    def get(self, url, timeout=None):
        self.requested.append(url)
        if any(fragment in url for fragment in self.fail_on):
            return FakeHTTPResponse(status_code=500)
        return FakeHTTPResponse(content=b"\xff\xd8\xff" + url.encode("utf-8"))


class RecordingEmailService(EmailService):
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.sent = []

    def send(self, message):
        if message.to_email in self.fail_for:
            raise EmailDeliveryError(f"Email service error 503 for {message.to_email}")
        self.sent.append(message)

    def sent_to(self, email):
        return [m for m in self.sent if m.to_email == email]


# =============================================================================
# DATABASE
# =============================================================================

@pytest.fixture
def session_factory():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    return SessionLocal


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def add_report(db, claim_id, estimate=None, status=AuditStatus.COMPLETED, created_at=None, **fields):
    report = AuditReportDB(
        id=str(uuid4()),
        claim_id=claim_id,
        generated_estimate=estimate,
        total_contractor_estimate=estimate["total"] if estimate else None,
        status=status.value,
        created_at=created_at or datetime(2026, 3, 1, 9, 0, 0),
        **fields,
    )
    db.add(report)
    db.commit()
    return report


def add_photo(db, claim_id, file_name, created_at, status=DocumentStatus.CONFIRMED,
              document_type=DocumentType.CONTRACTOR_PHOTO, mime_type="image/jpeg"):
    doc = DocumentDB(
        id=str(uuid4()),
        claim_id=claim_id,
        document_type=document_type.value,
        file_url=f"org/claims/{claim_id}/{file_name}",
        file_name=file_name,
        mime_type=mime_type,
        status=status.value,
        created_at=created_at,
    )
    db.add(doc)
    db.commit()
    return doc


@pytest.fixture
def seed(db):
    """One organization with a property, hail policy, claim, scope sheet and carrier estimate."""
    org = OrganizationDB(id=str(uuid4()), name="Summit Property Management")
    other_org = OrganizationDB(id=str(uuid4()), name="Elsewhere Holdings")
    user = UserDB(
        id=str(uuid4()),
        organization_id=org.id,
        email="pm@summit.example.com",
        name="Dana Reyes",
        password_hash="not-a-real-hash",
        role="member",
    )
    prop = PropertyDB(
        id=str(uuid4()),
        organization_id=org.id,
        nickname="Maple Court",
        legal_address="412 Maple Court, Denver, CO 80203",
        owner_entity_name="Maple Court Holdings LLC",
    )
    policy = PolicyDB(
        id=str(uuid4()),
        property_id=prop.id,
        carrier_name="Front Range Mutual",
        policy_number="FRM-220118",
        deductible_value=5000.0,
        exclusions="Flood damage is excluded",
    )
    claim = ClaimDB(
        id=str(uuid4()),
        property_id=prop.id,
        policy_id=policy.id,
        claim_number="CLM-2026-0042",
        loss_type="hail",
        incident_date=date(2026, 2, 14),
        status="open",
        adjuster_name="Chris Nolan",
        created_by_user_id=user.id,
    )
    scope = ScopeSheetDB(
        id=str(uuid4()),
        claim_id=claim.id,
        areas=[{
            "category": "Roof",
            "tags": ["shingles", "hail"],
            "dimensions": {"squares": 28},
            "notes": "Widespread bruising on the south and west slopes",
        }],
        general_notes="Gutters dented along the rear elevation",
        submitted_at=datetime(2026, 2, 20, 15, 0, 0),
    )
    carrier = CarrierEstimateDB(
        id=str(uuid4()),
        claim_id=claim.id,
        file_path=f"org/claims/{claim.id}/carrier.pdf",
        file_name="carrier.pdf",
        parsed_data=CARRIER_ESTIMATE,
        parse_status="completed",
    )
    db.add_all([org, other_org, user, prop, policy, claim, scope, carrier])
    db.commit()
    return SimpleNamespace(
        org=org, other_org=other_org, user=user, property=prop, policy=policy,
        claim=claim, scope=scope, carrier=carrier,
    )


# =============================================================================
# COLLABORATORS
# =============================================================================

@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def fake_http():
    return FakeHTTP()


@pytest.fixture
def email_service():
    return RecordingEmailService()


@pytest.fixture
def dispatcher(email_service, session_factory):
    d = NotificationDispatcher(email_service, session_factory, max_workers=1)
    yield d
    d.shutdown()
