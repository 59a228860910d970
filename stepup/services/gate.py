import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from stepup.config import Settings, settings as default_settings
from stepup.models.authorization import AuthorizedAction
from stepup.models.session import VerificationMethod
from stepup.services import security
from stepup.services.audit import AuditSink
from stepup.services.clock import Clock, ensure_aware, utcnow
from stepup.services.sessions import DEVICE_EXEMPT_ACTIONS, ChallengeStart, VerificationSessionManager

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    PAYMENT = "payment"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"
    ACCOUNT_CHANGE = "account_change"
    DATA_EXPORT = "data_export"
    ACCOUNT_DELETION = "account_deletion"
    ADMIN_LOGIN = "admin_login"


class Requirement(str, Enum):
    NONE = "none"
    CONFIRMATION_REQUIRED = "confirmation_required"
    SMS_REQUIRED = "sms_required"


ALWAYS_CHALLENGED = frozenset(
    {
        ActionType.ACCOUNT_CHANGE,
        ActionType.DATA_EXPORT,
        ActionType.ACCOUNT_DELETION,
        ActionType.ADMIN_LOGIN,
    }
)


class ThresholdTable:
    """Static amount thresholds, expressed in the reference currency."""

    def __init__(
        self,
        low: float,
        high: float,
        rates: Mapping[str, float],
        reference_currency: str = "AOA",
    ) -> None:
        if low > high:
            raise ValueError("low threshold must not exceed high threshold")
        self.low = low
        self.high = high
        self.rates = {code.upper(): rate for code, rate in rates.items()}
        self.reference_currency = reference_currency.upper()

    @classmethod
    def from_settings(cls, config: Settings) -> "ThresholdTable":
        return cls(config.low_threshold, config.high_threshold, config.exchange_rates, config.reference_currency)

    def normalize(self, amount: float, currency: str) -> float:
        code = (currency or self.reference_currency).upper()
        if code == self.reference_currency:
            return float(amount)
        try:
            return float(amount) * self.rates[code]
        except KeyError:
            raise ValueError(f"Unsupported currency {currency!r}") from None

    def requirement(self, action_type: ActionType, amount: float, currency: str) -> Requirement:
        action_type = ActionType(action_type)
        if action_type in ALWAYS_CHALLENGED:
            return Requirement.SMS_REQUIRED

        value = self.normalize(amount, currency)
        if action_type == ActionType.PAYMENT:
            if value >= self.high:
                return Requirement.SMS_REQUIRED
            if value >= self.low:
                return Requirement.CONFIRMATION_REQUIRED
            return Requirement.NONE

        # withdrawals and refunds always need at least a confirmation
        if value >= self.low:
            return Requirement.SMS_REQUIRED
        return Requirement.CONFIRMATION_REQUIRED


@dataclass(frozen=True)
class Receipt:
    id: str
    subject_id: str
    action_type: str
    amount: float
    currency: str
    authorized_at: datetime
    expires_at: datetime
    token: str


@dataclass(frozen=True)
class AuthorizationResult:
    requirement: Requirement
    receipt: Optional[Receipt] = None
    challenge: Optional[ChallengeStart] = None

    @property
    def authorized(self) -> bool:
        return self.receipt is not None


class StepUpGate:
    def __init__(
        self,
        sessions: VerificationSessionManager,
        audit_sink: AuditSink,
        table: Optional[ThresholdTable] = None,
        config: Settings = default_settings,
        clock: Clock = utcnow,
    ) -> None:
        self._sessions = sessions
        self._audit = audit_sink
        self._table = table or ThresholdTable.from_settings(config)
        self._config = config
        self._clock = clock

    def requirement(self, action_type: ActionType, amount: float = 0.0, currency: Optional[str] = None) -> Requirement:
        return self._table.requirement(action_type, amount, currency or self._table.reference_currency)

    def authorize(
        self,
        db: Session,
        subject_id: str,
        action_type: ActionType,
        amount: float = 0.0,
        currency: Optional[str] = None,
        confirmed: bool = False,
        method: VerificationMethod = VerificationMethod.SMS,
        destination: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> AuthorizationResult:
        """Authorize immediately when allowed, otherwise start a challenge.

        A pending result carries the challenge; finish it with :meth:`complete`.
        """
        action_type = ActionType(action_type)
        currency = (currency or self._table.reference_currency).upper()
        requirement = self.requirement(action_type, amount, currency)

        if requirement == Requirement.NONE or (requirement == Requirement.CONFIRMATION_REQUIRED and confirmed):
            receipt = self._mint(db, subject_id, action_type.value, amount, currency)
            return AuthorizationResult(requirement=requirement, receipt=receipt)

        challenge = self._sessions.initiate(
            db,
            subject_id,
            method,
            destination=destination,
            device_id=device_id,
            action_type=action_type.value,
            amount=amount,
            currency=currency,
        )
        if challenge.exempt:
            receipt = self._mint(db, subject_id, action_type.value, amount, currency)
            return AuthorizationResult(requirement=requirement, receipt=receipt)
        return AuthorizationResult(requirement=requirement, challenge=challenge)

    def complete(
        self,
        db: Session,
        session_id: str,
        code: str,
        trust_device: bool = False,
        device_id: Optional[str] = None,
        device_name: Optional[str] = None,
    ) -> Receipt:
        view = self._sessions.get(db, session_id)
        if view is not None and view.action_type is None:
            raise ValueError("challenge is not bound to a step-up action")

        outcome = self._sessions.verify(
            db,
            session_id,
            code,
            trust_device=trust_device and view is not None and view.action_type in DEVICE_EXEMPT_ACTIONS,
            device_id=device_id,
            device_name=device_name,
        )
        verified = outcome.session
        return self._mint(
            db,
            verified.subject_id,
            verified.action_type,
            verified.amount or 0.0,
            verified.currency or self._table.reference_currency,
            session_id=verified.id,
        )

    def latest_authorization(self, db: Session, subject_id: str, action_type: ActionType) -> Optional[AuthorizedAction]:
        return db.execute(
            select(AuthorizedAction)
            .where(AuthorizedAction.subject_id == subject_id)
            .where(AuthorizedAction.action_type == ActionType(action_type).value)
            .order_by(AuthorizedAction.authorized_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def has_valid_authorization(self, db: Session, subject_id: str, action_type: ActionType) -> bool:
        latest = self.latest_authorization(db, subject_id, action_type)
        if latest is None:
            return False
        return self._clock() < ensure_aware(latest.expires_at)

    def _mint(
        self,
        db: Session,
        subject_id: str,
        action_type: str,
        amount: float,
        currency: str,
        session_id: Optional[str] = None,
    ) -> Receipt:
        now = self._clock()
        expires_at = now + self._config.authorization_ttl()
        row = AuthorizedAction(
            subject_id=subject_id,
            action_type=action_type,
            amount=amount,
            currency=currency,
            session_id=session_id,
            authorized_at=now,
            expires_at=expires_at,
        )
        db.add(row)
        db.commit()

        logger.info("Authorized %s for subject %s until %s", action_type, subject_id, expires_at)
        self._audit.record(
            "action_authorized",
            subject_id=subject_id,
            action_type=action_type,
            amount=amount,
            currency=currency,
            session_id=session_id,
        )
        return Receipt(
            id=row.id,
            subject_id=subject_id,
            action_type=action_type,
            amount=amount,
            currency=currency,
            authorized_at=now,
            expires_at=expires_at,
            token=security.create_receipt_token(subject_id, row.id, action_type, amount, currency, expires_at),
        )
