from typing import Optional

from stepup.services.messages import translate


class VerificationError(Exception):
    """Base for every verification failure; carries a typed kind and a localized message."""

    kind = "error"
    message_key = "not_found"

    def __init__(self, detail: Optional[str] = None, **params: object) -> None:
        self.params = params
        self.detail = detail
        super().__init__(detail or self.message())

    def message(self, locale: Optional[str] = None) -> str:
        return translate(self.message_key, locale, **self.params)


class NotFound(VerificationError):
    kind = "not_found"
    message_key = "not_found"


class Expired(VerificationError):
    kind = "expired"
    message_key = "expired"


class Locked(VerificationError):
    kind = "locked"
    message_key = "locked"

    def __init__(self, detail: Optional[str] = None, minutes: int = 0) -> None:
        self.minutes = minutes
        super().__init__(detail, minutes=minutes)


class InvalidCode(VerificationError):
    kind = "invalid_code"
    message_key = "invalid_code"

    def __init__(self, detail: Optional[str] = None, remaining_attempts: int = 0) -> None:
        self.remaining_attempts = remaining_attempts
        super().__init__(detail, remaining=remaining_attempts)


class SetupRequired(VerificationError):
    kind = "setup_required"
    message_key = "setup_required"


class DeliveryFailure(VerificationError):
    kind = "delivery_failure"
    message_key = "delivery_failure"


class Timeout(DeliveryFailure):
    kind = "timeout"
    message_key = "timeout"
