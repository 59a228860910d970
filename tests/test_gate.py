"""Step-up thresholds and authorization receipts."""

import pytest
from jose import jwt

from stepup.models.session import VerificationMethod
from stepup.services.errors import InvalidCode
from stepup.services.gate import ActionType, Requirement, ThresholdTable
from tests.conftest import wrong_code


@pytest.fixture
def table() -> ThresholdTable:
    return ThresholdTable(100_000, 500_000, {"AOA": 1.0, "EUR": 1000.0, "USD": 900.0})


@pytest.mark.parametrize(
    "amount,currency,expected",
    [
        (0, "AOA", Requirement.NONE),
        (99_999, "AOA", Requirement.NONE),
        (100_000, "AOA", Requirement.CONFIRMATION_REQUIRED),
        (499_999.99, "AOA", Requirement.CONFIRMATION_REQUIRED),
        (500_000, "AOA", Requirement.SMS_REQUIRED),
        (99, "EUR", Requirement.NONE),
        (100, "EUR", Requirement.CONFIRMATION_REQUIRED),
        (500, "eur", Requirement.SMS_REQUIRED),
        (100, "USD", Requirement.NONE),
        (600, "USD", Requirement.SMS_REQUIRED),
    ],
)
def test_payment_thresholds(table, amount, currency, expected) -> None:
    assert table.requirement(ActionType.PAYMENT, amount, currency) == expected


@pytest.mark.parametrize(
    "action",
    [ActionType.ACCOUNT_DELETION, ActionType.ACCOUNT_CHANGE, ActionType.DATA_EXPORT, ActionType.ADMIN_LOGIN],
)
@pytest.mark.parametrize("amount", [0, 1, 10_000_000])
def test_sensitive_actions_always_need_sms(table, action, amount) -> None:
    assert table.requirement(action, amount, "AOA") == Requirement.SMS_REQUIRED


@pytest.mark.parametrize("action", [ActionType.WITHDRAWAL, ActionType.REFUND])
def test_money_out_needs_at_least_confirmation(table, action) -> None:
    assert table.requirement(action, 10, "AOA") == Requirement.CONFIRMATION_REQUIRED
    assert table.requirement(action, 100_000, "AOA") == Requirement.SMS_REQUIRED


def test_unknown_currency_is_rejected(table) -> None:
    with pytest.raises(ValueError):
        table.requirement(ActionType.PAYMENT, 10, "GBP")


def test_action_type_accepts_plain_strings(table) -> None:
    assert table.requirement("account_deletion", 0, "AOA") == Requirement.SMS_REQUIRED


def test_low_threshold_above_high_is_invalid() -> None:
    with pytest.raises(ValueError):
        ThresholdTable(10, 5, {"AOA": 1.0})


def test_small_payment_is_authorized_immediately(db, services, channel, subject, clock, config) -> None:
    gate = services.gate
    result = gate.authorize(db, subject.id, ActionType.PAYMENT, 5_000, "AOA")

    assert result.requirement == Requirement.NONE
    assert result.authorized
    assert result.receipt.expires_at == clock() + config.authorization_ttl()
    assert channel.sent == []
    assert gate.has_valid_authorization(db, subject.id, ActionType.PAYMENT)
    assert not gate.has_valid_authorization(db, subject.id, ActionType.WITHDRAWAL)


def test_receipt_expires_after_fifteen_minutes(db, services, subject, clock) -> None:
    gate = services.gate
    gate.authorize(db, subject.id, ActionType.PAYMENT, 10, "AOA")

    clock.advance(minutes=14, seconds=59)
    assert gate.has_valid_authorization(db, subject.id, ActionType.PAYMENT)
    clock.advance(seconds=1)
    assert not gate.has_valid_authorization(db, subject.id, ActionType.PAYMENT)


def test_confirmation_level_needs_explicit_confirmation(db, services, channel, subject) -> None:
    gate = services.gate
    confirmed = gate.authorize(db, subject.id, ActionType.PAYMENT, 200_000, "AOA", confirmed=True)
    assert confirmed.requirement == Requirement.CONFIRMATION_REQUIRED
    assert confirmed.authorized
    assert channel.sent == []

    unconfirmed = gate.authorize(db, subject.id, ActionType.PAYMENT, 200_000, "AOA")
    assert not unconfirmed.authorized
    assert unconfirmed.challenge.session_id
    assert len(channel.sent) == 1


def test_high_value_payment_runs_challenge(db, services, channel, subject) -> None:
    gate = services.gate
    result = gate.authorize(db, subject.id, ActionType.PAYMENT, 750_000, "AOA", confirmed=True)

    assert result.requirement == Requirement.SMS_REQUIRED
    assert not result.authorized
    assert not gate.has_valid_authorization(db, subject.id, ActionType.PAYMENT)

    with pytest.raises(InvalidCode):
        gate.complete(db, result.challenge.session_id, wrong_code(channel.last_code))
    assert not gate.has_valid_authorization(db, subject.id, ActionType.PAYMENT)

    receipt = gate.complete(db, result.challenge.session_id, channel.last_code)
    assert receipt.action_type == "payment"
    assert receipt.amount == 750_000
    assert receipt.currency == "AOA"
    assert gate.has_valid_authorization(db, subject.id, ActionType.PAYMENT)

    claims = jwt.get_unverified_claims(receipt.token)
    assert claims["scope"] == "step_up"
    assert claims["sub"] == subject.id
    assert claims["jti"] == receipt.id
    assert claims["act"] == "payment"


def test_account_deletion_with_totp(db, services, totp_subject, clock) -> None:
    gate = services.gate
    result = gate.authorize(db, totp_subject.id, ActionType.ACCOUNT_DELETION, method=VerificationMethod.TOTP)
    assert result.challenge.method == VerificationMethod.TOTP

    code = services.verifier.now_code(totp_subject.totp_secret, for_time=clock())
    receipt = gate.complete(db, result.challenge.session_id, code)
    assert receipt.action_type == "account_deletion"


def test_trusted_device_exempts_admin_login_only(db, services, channel, subject) -> None:
    gate = services.gate
    services.devices.trust(db, subject.id, "device-1", "Office PC")

    login = gate.authorize(db, subject.id, ActionType.ADMIN_LOGIN, device_id="device-1")
    assert login.authorized
    assert channel.sent == []

    deletion = gate.authorize(db, subject.id, ActionType.ACCOUNT_DELETION, device_id="device-1")
    assert not deletion.authorized
    assert len(channel.sent) == 1


def test_admin_login_can_trust_device_on_completion(db, services, channel, subject) -> None:
    gate = services.gate
    result = gate.authorize(db, subject.id, ActionType.ADMIN_LOGIN, device_id="device-9")
    gate.complete(db, result.challenge.session_id, channel.last_code, trust_device=True, device_id="device-9")

    assert services.devices.is_trusted(db, subject.id, "device-9")


def test_complete_rejects_plain_challenges(db, services, channel, subject) -> None:
    start = services.sessions.initiate(db, subject.id, VerificationMethod.SMS)
    with pytest.raises(ValueError):
        services.gate.complete(db, start.session_id, channel.last_code)
