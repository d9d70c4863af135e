import logging
import string
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.error_codes import ErrorCode
from app.core.errors import ErrorKind, ServiceResult
from app.core.security import now_utc
from app.models import InvitationCode, InvitationCodeUsage
from app.schemas.invitation_codes import (
    CreateInvitationCodeRequest,
    InvitationCodeValidationResponse,
    UpdateInvitationCodeRequest,
)
from app.services import invitation_service
from app.services.invitation_service import (
    MSG_DISABLED,
    MSG_EXPIRED,
    MSG_LIMIT_REACHED,
    MSG_NOT_FOUND,
    create_code,
    create_codes_batch,
    delete_code,
    generate_code,
    get_code_by_code,
    get_code_by_id,
    redeem_code,
    set_code_status,
    update_code,
    validate_code,
)


def _create(db, admin, **fields):
    result = create_code(db, CreateInvitationCodeRequest(**fields), created_by=admin.id)
    assert result.success, result.message
    return result.data


def _usage_count(db, code_id) -> int:
    return db.execute(
        select(func.count()).select_from(InvitationCodeUsage).where(InvitationCodeUsage.invitation_code_id == code_id)
    ).scalar_one()


def _used_count(db, code_id) -> int:
    db.expire_all()
    return db.get(InvitationCode, code_id).used_count


# ── Code generation ─────────────────────────────────────────────────────────


def test_generate_code_uses_uppercase_alphanumerics():
    code = generate_code()
    assert len(code) == 8
    assert set(code) <= set(string.ascii_uppercase + string.digits)
    assert len(generate_code(12)) == 12


def test_generated_codes_vary():
    assert len({generate_code() for _ in range(50)}) > 1


# ── Lifecycle ───────────────────────────────────────────────────────────────


def test_create_generates_code_with_fresh_counters(db, admin):
    created = _create(db, admin, max_uses=1)

    assert len(created.code) == 8
    assert created.used_count == 0
    assert created.remaining_uses == 1
    assert created.status == "active"
    assert created.is_available is True
    assert created.created_by == admin.id
    assert created.created_by_name == "Admin"


def test_create_with_explicit_code_is_normalised(db, admin):
    created = _create(db, admin, code="welcome2026", max_uses=5, description="launch batch")
    assert created.code == "WELCOME2026"
    assert created.description == "launch batch"


def test_create_rejects_existing_code(db, admin):
    _create(db, admin, code="DUPLICATE1")

    result = create_code(db, CreateInvitationCodeRequest(code="duplicate1"), created_by=admin.id)

    assert not result.success
    assert result.error_kind is ErrorKind.CONFLICT
    assert result.error_code == ErrorCode.CODE_EXISTS


def test_create_requires_known_creator(db):
    result = create_code(db, CreateInvitationCodeRequest(max_uses=1), created_by=uuid.uuid4())

    assert result.error_kind is ErrorKind.NOT_FOUND
    assert result.error_code == ErrorCode.CREATOR_NOT_FOUND
    assert db.execute(select(func.count()).select_from(InvitationCode)).scalar_one() == 0


def test_create_gives_up_when_generator_keeps_colliding(db, admin, monkeypatch):
    _create(db, admin, code="AAAAAAAA")
    monkeypatch.setattr(invitation_service, "generate_code", lambda length=None: "AAAAAAAA")

    result = create_code(db, CreateInvitationCodeRequest(), created_by=admin.id)

    assert result.error_kind is ErrorKind.CONFLICT
    assert result.error_code == ErrorCode.CODE_GENERATION_EXHAUSTED


def test_batch_create_generates_distinct_codes(db, admin, future):
    result = create_codes_batch(db, count=25, max_uses=3, expires_at=future, description=None, created_by=admin.id)

    assert result.success
    codes = [item.code for item in result.data]
    assert len(codes) == len(set(codes)) == 25
    assert all(item.max_uses == 3 for item in result.data)


def test_get_by_id_and_by_code(db, admin):
    created = _create(db, admin, code="LOOKUP01")

    assert get_code_by_id(db, created.id).data.code == "LOOKUP01"
    assert get_code_by_code(db, " lookup01 ").data.id == created.id
    assert get_code_by_code(db, "MISSING1").error_kind is ErrorKind.NOT_FOUND


def test_update_changes_only_supplied_fields(db, admin, future):
    created = _create(db, admin, max_uses=2, expires_at=future)

    result = update_code(db, created.id, UpdateInvitationCodeRequest(max_uses=10))

    assert result.success
    assert result.data.max_uses == 10
    assert result.data.status == "active"
    assert result.data.expires_at == future
    assert result.data.updated_at >= created.updated_at


def test_update_with_explicit_null_clears_expiry(db, admin, future):
    created = _create(db, admin, expires_at=future)

    result = update_code(db, created.id, UpdateInvitationCodeRequest.model_validate({"expires_at": None}))

    assert result.data.expires_at is None


def test_update_status_and_missing_code(db, admin):
    created = _create(db, admin)
    assert update_code(db, created.id, UpdateInvitationCodeRequest(status="disabled")).data.status == "disabled"
    assert update_code(db, uuid.uuid4(), UpdateInvitationCodeRequest(max_uses=1)).error_kind is ErrorKind.NOT_FOUND


def test_set_status_toggles(db, admin):
    created = _create(db, admin)

    assert set_code_status(db, created.id, enabled=False).success
    assert validate_code(db, created.code).data.message == MSG_DISABLED

    assert set_code_status(db, created.id, enabled=True).success
    assert validate_code(db, created.code).data.is_valid


def test_delete_unused_code(db, admin):
    created = _create(db, admin)

    result = delete_code(db, created.id)

    assert result.success
    assert get_code_by_id(db, created.id).error_kind is ErrorKind.NOT_FOUND


def test_delete_refuses_code_with_usages(db, admin, make_user):
    created = _create(db, admin, max_uses=2)
    assert redeem_code(db, created.code, make_user().id).success

    result = delete_code(db, created.id)

    assert result.error_kind is ErrorKind.CONFLICT
    assert result.error_code == ErrorCode.CODE_IN_USE
    assert get_code_by_id(db, created.id).success


# ── Validation ──────────────────────────────────────────────────────────────


def test_validate_fresh_code(db, admin):
    created = _create(db, admin, max_uses=1)

    result = validate_code(db, created.code)

    assert result.success
    assert result.data.is_valid is True
    assert result.data.invitation_code.id == created.id


def test_validate_unknown_code(db):
    result = validate_code(db, "NOPE0000")
    assert result.data.is_valid is False
    assert result.data.message == MSG_NOT_FOUND


def test_validate_expired_code(db, admin, past):
    created = _create(db, admin, max_uses=1, expires_at=past)

    result = validate_code(db, created.code)

    assert result.data.is_valid is False
    assert "expired" in result.data.message


def test_validate_reports_disabled_before_expired(db, admin, past):
    created = _create(db, admin, expires_at=past)
    set_code_status(db, created.id, enabled=False)

    assert validate_code(db, created.code).data.message == MSG_DISABLED


def test_validate_does_not_change_state(db, admin):
    created = _create(db, admin)
    for _ in range(3):
        validate_code(db, created.code)
    assert _used_count(db, created.id) == 0
    assert _usage_count(db, created.id) == 0


# ── Redemption ──────────────────────────────────────────────────────────────


def test_single_use_code_walkthrough(db, admin, make_user):
    first, second = make_user(), make_user()
    created = _create(db, admin, max_uses=1)

    assert redeem_code(db, created.code, first.id).success
    assert _used_count(db, created.id) == 1

    again = redeem_code(db, created.code, first.id)
    assert again.error_kind is ErrorKind.ALREADY_USED
    assert _used_count(db, created.id) == 1

    other = redeem_code(db, created.code, second.id)
    assert other.error_kind is ErrorKind.INVALID_STATE
    assert other.message == MSG_LIMIT_REACHED
    assert _used_count(db, created.id) == 1
    assert _usage_count(db, created.id) == 1


def test_same_user_cannot_redeem_twice(db, admin, make_user):
    user = make_user()
    created = _create(db, admin, max_uses=5)

    assert redeem_code(db, created.code, user.id, ip_address="10.0.0.1", user_agent="pytest").success
    again = redeem_code(db, created.code, user.id)

    assert again.error_kind is ErrorKind.ALREADY_USED
    assert again.error_code == ErrorCode.ALREADY_USED
    assert _used_count(db, created.id) == 1
    usage = db.execute(select(InvitationCodeUsage)).scalars().one()
    assert usage.ip_address == "10.0.0.1"
    assert usage.user_agent == "pytest"


@pytest.mark.parametrize("state", ["missing", "disabled", "expired", "exhausted"])
def test_invalid_code_never_records_usage(db, admin, make_user, past, state):
    user = make_user()
    code = "MISSING9"
    code_id = None
    if state != "missing":
        created = _create(db, admin, max_uses=1, expires_at=past if state == "expired" else None)
        code, code_id = created.code, created.id
        if state == "disabled":
            set_code_status(db, code_id, enabled=False)
        if state == "exhausted":
            assert redeem_code(db, code, make_user().id).success

    result = redeem_code(db, code, user.id)

    assert result.error_kind is ErrorKind.INVALID_STATE
    assert result.error_code == ErrorCode.INVALID_CODE
    total_usages = db.execute(select(func.count()).select_from(InvitationCodeUsage)).scalar_one()
    assert total_usages == (1 if state == "exhausted" else 0)
    if code_id is not None:
        assert _used_count(db, code_id) == (1 if state == "exhausted" else 0)


def test_used_count_never_exceeds_max_uses(db, admin, make_user):
    created = _create(db, admin, max_uses=3)
    outcomes = [redeem_code(db, created.code, make_user().id).success for _ in range(6)]

    assert outcomes == [True, True, True, False, False, False]
    assert _used_count(db, created.id) == 3
    assert _usage_count(db, created.id) == 3


def test_stale_validation_cannot_overdraw_quota(db, admin, make_user, monkeypatch):
    created = _create(db, admin, max_uses=1)
    assert redeem_code(db, created.code, make_user().id).success

    # Simulate a concurrent request that validated before the last use landed.
    stale = ServiceResult.ok(InvitationCodeValidationResponse(is_valid=True, message="ok"))
    monkeypatch.setattr(invitation_service, "validate_code", lambda _db, _code: stale)

    result = redeem_code(db, created.code, make_user().id)

    assert result.error_kind is ErrorKind.INVALID_STATE
    assert result.message == MSG_LIMIT_REACHED
    assert _used_count(db, created.id) == 1
    assert _usage_count(db, created.id) == 1


def test_storage_rejects_duplicate_usage_rows(db, admin, make_user):
    user = make_user()
    created = _create(db, admin, max_uses=5)
    assert redeem_code(db, created.code, user.id).success

    db.add(InvitationCodeUsage(invitation_code_id=created.id, user_id=user.id, used_at=now_utc()))
    with pytest.raises(IntegrityError):
        db.flush()
    db.rollback()


def test_storage_failure_commits_nothing(db, admin, make_user, monkeypatch, caplog):
    user = make_user()
    created = _create(db, admin, max_uses=2)

    def _broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db, "commit", _broken_commit)
    result = redeem_code(db, created.code, user.id)
    monkeypatch.undo()

    assert result.error_kind is ErrorKind.PERSISTENCE_FAILURE
    assert result.error_code == ErrorCode.PERSISTENCE_FAILURE
    assert _used_count(db, created.id) == 0
    assert _usage_count(db, created.id) == 0
    assert "Failed to use invitation code" in caplog.text


def test_expiry_is_enforced_at_redemption(db, admin, make_user):
    created = _create(db, admin, max_uses=1, expires_at=now_utc() + timedelta(hours=1))
    db.expire_all()
    row = db.get(InvitationCode, created.id)
    row.expires_at = now_utc() - timedelta(minutes=1)
    db.commit()

    result = redeem_code(db, created.code, make_user().id)

    assert result.message == MSG_EXPIRED
    assert _used_count(db, created.id) == 0


def test_concurrent_duplicate_is_caught_by_unique_usage(db, admin, make_user, monkeypatch):
    user = make_user()
    created = _create(db, admin, max_uses=5)
    assert redeem_code(db, created.code, user.id).success

    # Another request for the same user slipped past the existence check.
    real_usage_exists = invitation_service._usage_exists
    calls = []

    def _racing_usage_exists(db_, code_id, user_id):
        calls.append(code_id)
        return False if len(calls) == 1 else real_usage_exists(db_, code_id, user_id)

    monkeypatch.setattr(invitation_service, "_usage_exists", _racing_usage_exists)

    result = redeem_code(db, created.code, user.id)

    assert result.error_kind is ErrorKind.ALREADY_USED
    assert result.error_code == ErrorCode.ALREADY_USED
    assert len(calls) == 2
    assert _used_count(db, created.id) == 1
    assert _usage_count(db, created.id) == 1


def test_remaining_uses_never_negative_after_lowering_quota(db, admin, make_user):
    created = _create(db, admin, max_uses=3)
    for _ in range(2):
        assert redeem_code(db, created.code, make_user().id).success

    result = update_code(db, created.id, UpdateInvitationCodeRequest(max_uses=1))

    assert result.data.used_count == 2
    assert result.data.remaining_uses == 0
    assert result.data.is_available is False
    assert validate_code(db, created.code).data.message == MSG_LIMIT_REACHED


def test_create_logs_creator_display_name(db, admin, caplog):
    with caplog.at_level(logging.INFO, logger="app.services.invitation_service"):
        created = _create(db, admin, code="LOGGED01")
        batch = create_codes_batch(db, count=2, max_uses=1, expires_at=None, description=None, created_by=admin.id)

    assert batch.success
    assert f"Invitation code {created.code} created by Admin" in caplog.text
    assert "Batch-created 2 invitation codes for Admin" in caplog.text
