"""Verification session state machine: expiry, attempts, lockout, single use."""

import pytest
from sqlalchemy import select

from stepup.models.audit import AuditLog
from stepup.models.lockout import LockoutRecord
from stepup.models.session import SessionState, VerificationMethod, VerificationSession
from stepup.services import security
from stepup.services.container import build_services
from stepup.services.errors import (
    DeliveryFailure,
    Expired,
    InvalidCode,
    Locked,
    NotFound,
    SetupRequired,
    Timeout,
)
from tests.conftest import wrong_code


def _row(db, session_id: str) -> VerificationSession:
    db.expire_all()
    return db.get(VerificationSession, session_id)


def test_sms_initiate_dispatches_code_and_stores_only_hash(db, services, channel, subject, clock, config) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)

    assert start.session_id
    assert start.expires_at == clock() + config.session_ttl()
    assert start.destination == "****6789"
    destination, code = channel.sent[-1]
    assert destination == subject.phone
    assert len(code) == 6 and code.isdigit()

    row = _row(db, start.session_id)
    assert row.state == SessionState.PENDING
    assert row.attempts == 0
    assert code not in row.challenge_hash
    assert security.verify_code(code, row.challenge_hash)


def test_explicit_destination_overrides_profile_phone(db, services, channel, subject) -> None:
    services.sessions.initiate(db, subject.id, "sms", destination="+244900000001")
    assert channel.sent[-1][0] == "+244900000001"


def test_sms_without_destination_fails_delivery(db, services, channel) -> None:
    with pytest.raises(DeliveryFailure):
        services.sessions.initiate(db, "nobody", VerificationMethod.SMS)
    assert channel.sent == []


def test_successful_verify_is_single_use(db, services, channel, subject) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    code = channel.last_code

    outcome = services.sessions.verify(db, start.session_id, code)
    assert outcome.session.subject_id == subject.id
    assert _row(db, start.session_id).state == SessionState.VERIFIED

    with pytest.raises(NotFound):
        services.sessions.verify(db, start.session_id, code)


def test_unknown_session_is_not_found(db, services) -> None:
    with pytest.raises(NotFound):
        services.sessions.verify(db, "missing", "123456")


def test_wrong_code_reports_remaining_attempts(db, services, channel, subject) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)

    with pytest.raises(InvalidCode) as excinfo:
        services.sessions.verify(db, start.session_id, wrong_code(channel.last_code))

    assert excinfo.value.remaining_attempts == 4
    assert excinfo.value.kind == "invalid_code"
    assert "4" in excinfo.value.message("en")
    assert _row(db, start.session_id).attempts == 1


def test_attempt_exhaustion_locks_subject(db, services, channel, subject) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    code = channel.last_code
    bad = wrong_code(code)

    for expected_remaining in (4, 3, 2, 1):
        with pytest.raises(InvalidCode) as excinfo:
            services.sessions.verify(db, start.session_id, bad)
        assert excinfo.value.remaining_attempts == expected_remaining

    with pytest.raises(Locked):
        services.sessions.verify(db, start.session_id, bad)

    row = _row(db, start.session_id)
    assert row.attempts == 5
    assert row.state == SessionState.LOCKED_OUT
    assert db.get(LockoutRecord, subject.id) is not None

    # even the right code is refused once locked
    with pytest.raises(Locked):
        services.sessions.verify(db, start.session_id, code)


def test_lockout_blocks_new_sessions_until_it_lapses(db, services, channel, subject, clock) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    bad = wrong_code(channel.last_code)
    for _ in range(4):
        with pytest.raises(InvalidCode):
            services.sessions.verify(db, start.session_id, bad)
    with pytest.raises(Locked):
        services.sessions.verify(db, start.session_id, bad)

    sent_before = len(channel.sent)
    with pytest.raises(Locked) as excinfo:
        services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    assert excinfo.value.minutes == 30
    assert len(channel.sent) == sent_before

    clock.advance(minutes=30)
    with pytest.raises(Locked):
        services.sessions.initiate(db, subject.id, VerificationMethod.SMS)

    clock.advance(seconds=1)
    assert services.sessions.initiate(db, subject.id, VerificationMethod.SMS).session_id


def test_lockout_is_audited_as_critical(db, services, channel, subject) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    bad = wrong_code(channel.last_code)
    for _ in range(4):
        with pytest.raises(InvalidCode):
            services.sessions.verify(db, start.session_id, bad)
    with pytest.raises(Locked):
        services.sessions.verify(db, start.session_id, bad)

    events = db.execute(select(AuditLog).where(AuditLog.subject_id == subject.id)).scalars().all()
    by_type = {e.event_type: e for e in events}
    assert by_type["lockout_triggered"].severity == "critical"
    assert by_type["verification_failed"].severity == "warning"
    assert "challenge_initiated" in by_type


def test_expired_session_fails_regardless_of_code(db, services, channel, subject, clock) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    code = channel.last_code

    clock.advance(seconds=301)
    with pytest.raises(Expired):
        services.sessions.verify(db, start.session_id, code)
    with pytest.raises(Expired):
        services.sessions.verify(db, start.session_id, code)
    assert _row(db, start.session_id).state == SessionState.EXPIRED


def test_session_is_valid_up_to_its_expiry_instant(db, services, channel, subject, clock) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    clock.advance(seconds=300)
    assert services.sessions.verify(db, start.session_id, channel.last_code).session.id == start.session_id


def test_totp_requires_enrolled_secret(db, services, subject) -> None:
    with pytest.raises(SetupRequired):
        services.sessions.initiate(db, subject.id, VerificationMethod.TOTP)


def test_totp_session_verifies_live_code(db, services, totp_subject, clock, channel) -> None:
    start = services.sessions.initiate(db, totp_subject.id, VerificationMethod.TOTP)
    assert channel.sent == []
    assert start.destination == "Authenticator App"
    assert _row(db, start.session_id).challenge_hash == ""

    code = services.verifier.now_code(totp_subject.totp_secret, for_time=clock())
    assert services.sessions.verify(db, start.session_id, code).session.method == VerificationMethod.TOTP


def test_totp_session_tolerates_one_period_of_skew(db, services, totp_subject, clock) -> None:
    start = services.sessions.initiate(db, totp_subject.id, VerificationMethod.TOTP)
    verifier = services.verifier
    previous = verifier.at(totp_subject.totp_secret, verifier.timecode(clock()) - 1)
    services.sessions.verify(db, start.session_id, previous)


def test_resend_replaces_sms_session(db, services, channel, subject) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS, action_type="payment", amount=10.0)
    first_code = channel.last_code

    again = services.sessions.resend(db, start.session_id)

    assert again.session_id != start.session_id
    assert len(channel.sent) == 2
    assert _row(db, start.session_id).state == SessionState.CANCELLED
    with pytest.raises(NotFound):
        services.sessions.verify(db, start.session_id, first_code)

    outcome = services.sessions.verify(db, again.session_id, channel.last_code)
    assert outcome.session.action_type == "payment"


def test_resend_carries_failed_attempts_over(db, services, channel, subject) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    bad = wrong_code(channel.last_code)
    for _ in range(4):
        with pytest.raises(InvalidCode):
            services.sessions.verify(db, start.session_id, bad)

    again = services.sessions.resend(db, start.session_id)
    assert _row(db, again.session_id).attempts == 4

    with pytest.raises(Locked):
        services.sessions.verify(db, again.session_id, wrong_code(channel.last_code))
    with pytest.raises(Locked):
        services.sessions.initiate(db, subject.id, VerificationMethod.SMS)


def test_resend_is_refused_while_locked_out(db, services, channel, subject) -> None:
    first = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    second = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    bad = wrong_code(channel.last_code)
    for _ in range(4):
        with pytest.raises(InvalidCode):
            services.sessions.verify(db, second.session_id, bad)
    with pytest.raises(Locked):
        services.sessions.verify(db, second.session_id, bad)

    with pytest.raises(Locked):
        services.sessions.resend(db, first.session_id)
    assert _row(db, first.session_id).state == SessionState.PENDING


NON_ASCII_CODES = [
    "١٢٣٤٥٦",
    "１２３４５６",
]


@pytest.mark.parametrize("code", NON_ASCII_CODES)
def test_non_ascii_digits_count_as_failed_totp_attempt(db, services, totp_subject, code) -> None:
    start = services.sessions.initiate(db, totp_subject.id, VerificationMethod.TOTP)

    with pytest.raises(InvalidCode) as excinfo:
        services.sessions.verify(db, start.session_id, code)

    assert excinfo.value.remaining_attempts == 4
    assert _row(db, start.session_id).attempts == 1


@pytest.mark.parametrize("code", NON_ASCII_CODES)
def test_non_ascii_digits_count_as_failed_sms_attempt(db, services, subject, code) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)

    with pytest.raises(InvalidCode):
        services.sessions.verify(db, start.session_id, code)
    assert _row(db, start.session_id).attempts == 1


def test_resend_rejects_totp_sessions(db, services, totp_subject) -> None:
    start = services.sessions.initiate(db, totp_subject.id, VerificationMethod.TOTP)
    with pytest.raises(ValueError):
        services.sessions.resend(db, start.session_id)


def test_cancel_retires_session(db, services, channel, subject) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    services.sessions.cancel(db, start.session_id)

    with pytest.raises(NotFound):
        services.sessions.verify(db, start.session_id, channel.last_code)
    with pytest.raises(NotFound):
        services.sessions.cancel(db, start.session_id)


def test_delivery_failure_creates_no_session(db, services, channel, subject) -> None:
    channel.error = DeliveryFailure("gateway down")
    with pytest.raises(DeliveryFailure):
        services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    assert db.execute(select(VerificationSession)).scalars().all() == []


def test_delivery_timeout_surfaces_as_timeout(db, services, channel, subject) -> None:
    channel.error = Timeout("no answer")
    with pytest.raises(Timeout) as excinfo:
        services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    assert excinfo.value.kind == "timeout"
    assert db.execute(select(VerificationSession)).scalars().all() == []


def test_stale_cached_view_never_undercounts(db, session_factory, services, channel, config, clock, subject) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    bad = wrong_code(channel.last_code)
    assert services.sessions.get(db, start.session_id).attempts == 0

    # a second worker with its own cache records a failure behind our back
    other = build_services(session_factory, channel=channel, config=config, clock=clock)
    with session_factory() as other_db:
        with pytest.raises(InvalidCode):
            other.sessions.verify(other_db, start.session_id, bad)

    with pytest.raises(InvalidCode) as excinfo:
        services.sessions.verify(db, start.session_id, bad)

    assert excinfo.value.remaining_attempts == 3
    assert _row(db, start.session_id).attempts == 2


def test_cleanup_removes_finished_and_long_expired_sessions(db, services, channel, subject, clock, config) -> None:
    done = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    services.sessions.verify(db, done.session_id, channel.last_code)
    cancelled = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    services.sessions.cancel(db, cancelled.session_id)
    stale = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)

    assert services.sessions.cleanup(db) == 2

    clock.advance(seconds=config.session_validity_seconds + config.retired_session_retention_seconds + 1)
    live = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    assert services.sessions.cleanup(db) == 1

    remaining = db.execute(select(VerificationSession.id)).scalars().all()
    assert remaining == [live.session_id]
    assert services.sessions.get(db, stale.session_id) is None


def test_expired_row_survives_cleanup_within_retention(db, services, channel, subject, clock) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    code = channel.last_code
    clock.advance(minutes=6)
    with pytest.raises(Expired):
        services.sessions.verify(db, start.session_id, code)

    clock.advance(minutes=10)
    assert services.sessions.cleanup(db) == 0
    with pytest.raises(Expired):
        services.sessions.verify(db, start.session_id, code)


def test_locked_row_survives_cleanup_while_lockout_lasts(db, services, channel, subject, clock) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    code = channel.last_code
    bad = wrong_code(code)
    for _ in range(4):
        with pytest.raises(InvalidCode):
            services.sessions.verify(db, start.session_id, bad)
    with pytest.raises(Locked):
        services.sessions.verify(db, start.session_id, bad)

    assert services.sessions.cleanup(db) == 0
    with pytest.raises(Locked):
        services.sessions.verify(db, start.session_id, code)

    clock.advance(minutes=29)
    assert services.sessions.cleanup(db) == 0
    with pytest.raises(Locked):
        services.sessions.verify(db, start.session_id, code)

    clock.advance(minutes=1, seconds=1)
    assert services.sessions.cleanup(db) == 1
    assert _row(db, start.session_id) is None


def test_trusted_device_skips_admin_login_challenge(db, services, channel, subject) -> None:
    services.devices.trust(db, subject.id, "device-abc", "Pixel 8")

    start = services.sessions.initiate(
        db, subject.id, VerificationMethod.SMS, device_id="device-abc", action_type="admin_login"
    )

    assert start.exempt
    assert start.session_id is None
    assert channel.sent == []


@pytest.mark.parametrize("action_type", [None, "payment", "account_deletion"])
def test_trusted_device_does_not_exempt_other_challenges(db, services, channel, subject, action_type) -> None:
    services.devices.trust(db, subject.id, "device-abc", "Pixel 8")

    start = services.sessions.initiate(
        db, subject.id, VerificationMethod.SMS, device_id="device-abc", action_type=action_type
    )

    assert not start.exempt
    assert start.session_id is not None
    assert len(channel.sent) == 1


def test_verify_can_trust_device(db, services, channel, subject) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)

    outcome = services.sessions.verify(
        db, start.session_id, channel.last_code, trust_device=True, device_id="device-xyz", device_name="iPhone"
    )

    assert outcome.device_trusted
    assert services.devices.is_trusted(db, subject.id, "device-xyz")
    assert not services.sessions.challenge_required(db, subject.id, "device-xyz")
