"""
Test Suite: Legal Approval State Machine

Tests that:
1. Issuing writes the request and the claim escalation fields together
2. Expiry is observed lazily, exactly once
3. A token can be answered once (double and late submissions fail)
4. Approval assembles the package before committing; any assembly failure
   leaves the request pending and sends nothing
5. Delivery failure after commit is reported but the approval stands
6. Homeowner invite and PM confirmation are detached and logged
"""
import copy
import io
import zipfile
from datetime import datetime, timedelta

import pytest

from app.models.analysis import PMBrainAnalysis, PMBrainStatus, GeneratedEstimate, dump_blob
from app.models.db_models import (
    ApprovalStatus, ClaimDB, DocumentStatus, DocumentType, EscalationStatus,
    LegalApprovalRequestDB, NotificationLogDB,
)
from app.services.claims import reduce_line_items
from app.services.errors import (
    ArtifactAssemblyError, InvalidArgumentError, NotFoundError, PackageDeliveryError,
    PreconditionFailedError,
)
from app.services.legal import APPROVAL_TTL, LegalApprovalService, PackageBuilder

from conftest import CARRIER_ESTIMATE, CONTRACTOR_ESTIMATE, FakeHTTP, add_photo, add_report

PARTNER_EMAIL = "intake@harlowlaw.example.com"
OWNER_EMAIL = "owner@maplecourt.example.com"
PM_EMAIL = "pm@summit.example.com"


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return Clock(datetime(2026, 3, 10, 14, 30, 0))


@pytest.fixture
def claim_file(db, seed):
    """Completed audit report plus two confirmed contractor photos."""
    estimate = copy.deepcopy(CONTRACTOR_ESTIMATE)
    comparison = reduce_line_items(GeneratedEstimate.model_validate(estimate), CARRIER_ESTIMATE)
    pm_brain = PMBrainAnalysis(
        status=PMBrainStatus.DISPUTE_OFFER,
        plain_english_summary="Carrier underpaid roofing and omitted ice and water shield.",
        total_contractor_estimate=17340.0,
        total_carrier_estimate=14650.0,
        total_delta=2690.0,
    )
    add_report(
        db, seed.claim.id, estimate=estimate,
        comparison_data=dump_blob(comparison),
        pm_brain_analysis=dump_blob(pm_brain),
        total_carrier_estimate=14650.0,
        total_delta=2690.0,
    )
    add_photo(db, seed.claim.id, "roof-south.jpg", datetime(2026, 2, 21, 9, 0, 0))
    add_photo(db, seed.claim.id, "gutter.png", datetime(2026, 2, 21, 9, 5, 0), mime_type="image/png")
    add_photo(db, seed.claim.id, "draft.jpg", datetime(2026, 2, 21, 9, 10, 0), status=DocumentStatus.PENDING)
    add_photo(db, seed.claim.id, "policy.pdf", datetime(2026, 2, 21, 9, 15, 0),
              document_type=DocumentType.POLICY_PDF, mime_type="application/pdf")
    return seed


def _service(db, fake_storage, http, dispatcher, clock):
    builder = PackageBuilder(fake_storage, http_session=http)
    return LegalApprovalService(db, builder, dispatcher, frontend_url="https://app.test", clock=clock)


@pytest.fixture
def service(db, fake_storage, fake_http, dispatcher, clock):
    return _service(db, fake_storage, fake_http, dispatcher, clock)


def _issue(service, seed, dispatcher):
    request = service.issue_request(
        claim_id=seed.claim.id,
        org_id=seed.org.id,
        legal_partner_name="Harlow & Pike LLP",
        legal_partner_email=PARTNER_EMAIL,
        owner_name="Morgan Ellis",
        owner_email=OWNER_EMAIL,
    )
    dispatcher.drain()
    return request


def _claim(db, seed):
    db.expire_all()
    return db.query(ClaimDB).filter(ClaimDB.id == seed.claim.id).one()


def _request(db, request_id):
    db.expire_all()
    return db.query(LegalApprovalRequestDB).filter(LegalApprovalRequestDB.id == request_id).one()


def _logs(db, kind):
    db.expire_all()
    return db.query(NotificationLogDB).filter(NotificationLogDB.kind == kind).all()


# =============================================================================
# ISSUE
# =============================================================================

class TestIssue:

    def test_issue_creates_pending_request(self, db, seed, service, dispatcher, clock):
        request = _issue(service, seed, dispatcher)

        assert request.status == ApprovalStatus.PENDING.value
        assert request.expires_at == clock.now + timedelta(days=7)
        assert APPROVAL_TTL == timedelta(days=7)
        assert len(request.token) == 36

        claim = _claim(db, seed)
        assert claim.legal_escalation_status == EscalationStatus.PENDING_APPROVAL.value
        assert claim.legal_partner_email == PARTNER_EMAIL
        assert claim.legal_partner_name == "Harlow & Pike LLP"
        assert claim.owner_email == OWNER_EMAIL

    def test_homeowner_is_invited(self, db, seed, service, dispatcher, email_service):
        request = _issue(service, seed, dispatcher)

        invites = email_service.sent_to(OWNER_EMAIL)
        assert len(invites) == 1
        assert f"https://app.test/legal-approval/{request.token}" in invites[0].text_body
        assert "412 Maple Court" in invites[0].subject

        logs = _logs(db, "owner_approval_request")
        assert [log.status for log in logs] == ["sent"]
        assert logs[0].approval_request_id == request.id

    def test_invite_failure_does_not_undo_request(self, db, seed, service, dispatcher, email_service):
        email_service.fail_for.add(OWNER_EMAIL)

        request = _issue(service, seed, dispatcher)

        assert _request(db, request.id).status == ApprovalStatus.PENDING.value
        logs = _logs(db, "owner_approval_request")
        assert logs[0].status == "failed"
        assert "503" in logs[0].error

    def test_tokens_are_unique(self, seed, service, dispatcher):
        first = _issue(service, seed, dispatcher)
        second = _issue(service, seed, dispatcher)
        assert first.token != second.token

    @pytest.mark.parametrize("field,value", [
        ("legal_partner_email", "not-an-email"),
        ("owner_email", ""),
        ("owner_name", "   "),
        ("legal_partner_name", None),
    ])
    def test_invalid_input(self, db, seed, service, field, value):
        kwargs = dict(
            claim_id=seed.claim.id,
            org_id=seed.org.id,
            legal_partner_name="Harlow & Pike LLP",
            legal_partner_email=PARTNER_EMAIL,
            owner_name="Morgan Ellis",
            owner_email=OWNER_EMAIL,
        )
        kwargs[field] = value
        with pytest.raises(InvalidArgumentError):
            service.issue_request(**kwargs)
        assert db.query(LegalApprovalRequestDB).count() == 0

    def test_other_organization(self, seed, service):
        with pytest.raises(NotFoundError):
            service.issue_request(seed.claim.id, seed.other_org.id, "Harlow", PARTNER_EMAIL,
                                  "Morgan Ellis", OWNER_EMAIL)


# =============================================================================
# READ AND EXPIRY
# =============================================================================

class TestReadAndExpiry:

    def test_read_pending_with_summary(self, claim_file, service, dispatcher):
        request = _issue(service, claim_file, dispatcher)

        view = service.get_by_token(request.token)

        assert view.request.status == ApprovalStatus.PENDING.value
        assert view.claim_summary.property_address == "412 Maple Court, Denver, CO 80203"
        assert view.claim_summary.carrier_name == "Front Range Mutual"
        assert view.claim_summary.total_delta == 2690.0

    def test_unknown_token(self, seed, service):
        with pytest.raises(NotFoundError):
            service.get_by_token("no-such-token")

    def test_lazy_expiry_on_read(self, db, seed, service, dispatcher, clock):
        request = _issue(service, seed, dispatcher)
        clock.advance(days=7, seconds=1)

        view = service.get_by_token(request.token)

        assert view.request.status == ApprovalStatus.EXPIRED.value
        assert view.request.responded_at is None
        assert _request(db, request.id).status == ApprovalStatus.EXPIRED.value

    def test_expiry_transitions_once(self, seed, service, dispatcher, clock):
        request = _issue(service, seed, dispatcher)
        clock.advance(days=8)
        loaded = service._load_by_token(request.token)

        assert service._expire_if_due(loaded, clock.now) is True
        assert service._expire_if_due(loaded, clock.now) is False
        assert service.get_by_token(request.token).request.status == ApprovalStatus.EXPIRED.value

    def test_expiry_boundary_is_inclusive(self, seed, service, dispatcher, clock):
        request = _issue(service, seed, dispatcher)
        clock.advance(days=7)
        assert service.get_by_token(request.token).request.status == ApprovalStatus.EXPIRED.value

    def test_not_expired_before_deadline(self, seed, service, dispatcher, clock):
        request = _issue(service, seed, dispatcher)
        clock.advance(days=6, hours=23)
        assert service.get_by_token(request.token).request.status == ApprovalStatus.PENDING.value

    def test_late_response_fails_and_expires(self, db, seed, service, dispatcher, clock):
        request = _issue(service, seed, dispatcher)
        clock.advance(days=10)

        with pytest.raises(PreconditionFailedError) as exc_info:
            service.respond(request.token, "approve")

        assert "expired" in exc_info.value.message
        assert _request(db, request.id).status == ApprovalStatus.EXPIRED.value

    def test_response_after_expiry_was_read(self, seed, service, dispatcher, clock):
        request = _issue(service, seed, dispatcher)
        clock.advance(days=10)
        service.get_by_token(request.token)

        with pytest.raises(PreconditionFailedError):
            service.respond(request.token, "decline")

    def test_list_newest_first(self, seed, service, dispatcher, clock):
        first = _issue(service, seed, dispatcher)
        clock.advance(days=8)
        second = _issue(service, seed, dispatcher)

        listed = service.list_requests(seed.claim.id, seed.org.id)

        assert [r.id for r in listed] == [second.id, first.id]


# =============================================================================
# RESPOND
# =============================================================================

class TestDecline:

    def test_decline_one_day_later(self, db, claim_file, service, dispatcher, email_service, clock):
        request = _issue(service, claim_file, dispatcher)
        clock.advance(days=1)

        outcome = service.respond(request.token, "decline")
        dispatcher.drain()

        assert outcome.request.status == ApprovalStatus.DECLINED.value
        assert outcome.request.responded_at == clock.now
        assert outcome.package is None
        assert _claim(db, claim_file).legal_escalation_status == EscalationStatus.DECLINED.value
        assert email_service.sent_to(PARTNER_EMAIL) == []
        assert email_service.sent_to(PM_EMAIL) == []

    def test_action_is_case_insensitive(self, claim_file, service, dispatcher):
        request = _issue(service, claim_file, dispatcher)
        assert service.respond(request.token, " Decline ").request.status == ApprovalStatus.DECLINED.value

    @pytest.mark.parametrize("action", ["", "maybe", "approved", None])
    def test_invalid_action(self, db, seed, service, dispatcher, action):
        request = _issue(service, seed, dispatcher)
        with pytest.raises(InvalidArgumentError):
            service.respond(request.token, action)
        assert _request(db, request.id).status == ApprovalStatus.PENDING.value


class TestSingleUse:

    def test_decline_then_approve(self, claim_file, service, dispatcher):
        request = _issue(service, claim_file, dispatcher)
        service.respond(request.token, "decline")

        with pytest.raises(PreconditionFailedError) as exc_info:
            service.respond(request.token, "approve")
        assert "no longer pending" in exc_info.value.message

    def test_double_approve(self, claim_file, service, dispatcher, email_service):
        request = _issue(service, claim_file, dispatcher)
        service.respond(request.token, "approve")

        with pytest.raises(PreconditionFailedError):
            service.respond(request.token, "approve")
        assert len(email_service.sent_to(PARTNER_EMAIL)) == 1

    def test_concurrent_response_loses_compare_and_swap(self, db, session_factory, claim_file, service,
                                                         dispatcher, email_service):
        request = _issue(service, claim_file, dispatcher)
        stale = service._load_by_token(request.token)
        assert stale.status == ApprovalStatus.PENDING.value

        # Another request thread answers first.
        other = session_factory()
        other.query(LegalApprovalRequestDB).filter(LegalApprovalRequestDB.id == request.id).update(
            {"status": ApprovalStatus.DECLINED.value}, synchronize_session=False
        )
        other.commit()
        other.close()

        with pytest.raises(PreconditionFailedError):
            service.respond(request.token, "approve")

        assert _request(db, request.id).status == ApprovalStatus.DECLINED.value
        assert email_service.sent_to(PARTNER_EMAIL) == []


# =============================================================================
# APPROVE
# =============================================================================

class TestApprove:

    def test_approve_delivers_package(self, db, claim_file, service, dispatcher, email_service, clock):
        request = _issue(service, claim_file, dispatcher)
        clock.advance(days=1)

        outcome = service.respond(request.token, "approve")
        dispatcher.drain()

        assert outcome.request.status == ApprovalStatus.APPROVED.value
        assert outcome.request.responded_at == clock.now
        assert _claim(db, claim_file).legal_escalation_status == EscalationStatus.APPROVED.value

        delivered = email_service.sent_to(PARTNER_EMAIL)
        assert len(delivered) == 1
        attachment = delivered[0].attachments[0]
        assert attachment.filename == "Legal-Package-CLM-2026-0042-2026-03-11.zip"
        assert attachment.content_type == "application/zip"

        archive = zipfile.ZipFile(io.BytesIO(attachment.content))
        assert archive.namelist() == [
            "Discrepancy-Report.pdf",
            "photos/photo_001.jpg",
            "photos/photo_002.png",
        ]
        assert archive.read("Discrepancy-Report.pdf").startswith(b"%PDF")
        assert outcome.package.photo_count == 2

    def test_pm_is_confirmed(self, db, claim_file, service, dispatcher, email_service):
        request = _issue(service, claim_file, dispatcher)
        service.respond(request.token, "approve")
        dispatcher.drain()

        confirmations = email_service.sent_to(PM_EMAIL)
        assert len(confirmations) == 1
        assert PARTNER_EMAIL in confirmations[0].text_body
        assert [log.status for log in _logs(db, "legal_partner_package")] == ["sent"]
        assert [log.status for log in _logs(db, "pm_confirmation")] == ["sent"]

    def test_pm_confirmation_failure_is_swallowed(self, db, claim_file, service, dispatcher, email_service):
        email_service.fail_for.add(PM_EMAIL)
        request = _issue(service, claim_file, dispatcher)

        outcome = service.respond(request.token, "approve")
        dispatcher.drain()

        assert outcome.request.status == ApprovalStatus.APPROVED.value
        assert [log.status for log in _logs(db, "pm_confirmation")] == ["failed"]

    def test_photo_failure_aborts_without_sending(self, db, claim_file, fake_storage, dispatcher,
                                                  email_service, clock):
        service = _service(db, fake_storage, FakeHTTP(fail_on={"gutter.png"}), dispatcher, clock)
        request = _issue(service, claim_file, dispatcher)

        with pytest.raises(ArtifactAssemblyError):
            service.respond(request.token, "approve")
        dispatcher.drain()

        assert _request(db, request.id).status == ApprovalStatus.PENDING.value
        assert _request(db, request.id).responded_at is None
        assert _claim(db, claim_file).legal_escalation_status == EscalationStatus.PENDING_APPROVAL.value
        assert email_service.sent_to(PARTNER_EMAIL) == []
        assert email_service.sent_to(PM_EMAIL) == []

    def test_retry_after_assembly_failure(self, db, claim_file, fake_storage, dispatcher, email_service, clock):
        failing = _service(db, fake_storage, FakeHTTP(fail_on={"gutter.png"}), dispatcher, clock)
        request = _issue(failing, claim_file, dispatcher)
        with pytest.raises(ArtifactAssemblyError):
            failing.respond(request.token, "approve")

        healthy = _service(db, fake_storage, FakeHTTP(), dispatcher, clock)
        outcome = healthy.respond(request.token, "approve")

        assert outcome.request.status == ApprovalStatus.APPROVED.value
        assert len(email_service.sent_to(PARTNER_EMAIL)) == 1

    def test_requires_completed_report(self, db, seed, service, dispatcher, email_service):
        request = _issue(service, seed, dispatcher)

        with pytest.raises(PreconditionFailedError):
            service.respond(request.token, "approve")

        assert _request(db, request.id).status == ApprovalStatus.PENDING.value
        assert email_service.sent_to(PARTNER_EMAIL) == []

    def test_delivery_failure_keeps_approval(self, db, claim_file, service, dispatcher, email_service):
        email_service.fail_for.add(PARTNER_EMAIL)
        request = _issue(service, claim_file, dispatcher)

        with pytest.raises(PackageDeliveryError) as exc_info:
            service.respond(request.token, "approve")
        dispatcher.drain()

        assert exc_info.value.approval_id == request.id
        assert exc_info.value.details["approval_committed"] is True
        assert _request(db, request.id).status == ApprovalStatus.APPROVED.value
        assert _claim(db, claim_file).legal_escalation_status == EscalationStatus.APPROVED.value
        assert email_service.sent_to(PM_EMAIL) == []
        assert [log.status for log in _logs(db, "legal_partner_package")] == ["failed"]


# =============================================================================
# PROPERTY-MANAGER ACTIONS
# =============================================================================

class TestPackageActions:

    def test_resend_after_delivery_failure(self, db, claim_file, service, dispatcher, email_service):
        email_service.fail_for.add(PARTNER_EMAIL)
        request = _issue(service, claim_file, dispatcher)
        with pytest.raises(PackageDeliveryError):
            service.respond(request.token, "approve")

        email_service.fail_for.discard(PARTNER_EMAIL)
        outcome = service.resend_package(request.id, claim_file.org.id)

        assert outcome.package.photo_count == 2
        assert len(email_service.sent_to(PARTNER_EMAIL)) == 1
        assert [log.status for log in _logs(db, "legal_partner_package")] == ["failed", "sent"]

    def test_resend_requires_approval(self, claim_file, service, dispatcher):
        request = _issue(service, claim_file, dispatcher)
        with pytest.raises(PreconditionFailedError):
            service.resend_package(request.id, claim_file.org.id)

    def test_resend_other_organization(self, claim_file, service, dispatcher):
        request = _issue(service, claim_file, dispatcher)
        with pytest.raises(NotFoundError):
            service.resend_package(request.id, claim_file.other_org.id)

    def test_resend_scoped_to_claim(self, claim_file, service, dispatcher, email_service):
        email_service.fail_for.add(PARTNER_EMAIL)
        request = _issue(service, claim_file, dispatcher)
        with pytest.raises(PackageDeliveryError):
            service.respond(request.token, "approve")
        email_service.fail_for.discard(PARTNER_EMAIL)

        with pytest.raises(NotFoundError):
            service.resend_package(request.id, claim_file.org.id, claim_id="some-other-claim")
        assert email_service.sent_to(PARTNER_EMAIL) == []

        outcome = service.resend_package(request.id, claim_file.org.id, claim_id=claim_file.claim.id)
        assert outcome.request.id == request.id

    def test_download_has_no_side_effects(self, db, claim_file, service, email_service):
        package = service.download_package(claim_file.claim.id, claim_file.org.id)

        assert package.entries[0] == "Discrepancy-Report.pdf"
        assert len(package.sha256) == 64
        assert email_service.sent == []
        assert db.query(LegalApprovalRequestDB).count() == 0
        assert _claim(db, claim_file).legal_escalation_status is None
