"""HOTP (RFC 4226) and TOTP (RFC 6238) on top of pyotp.

Everything here is pure: no I/O, no persistence, and the wall clock is only
read when the caller does not pass ``for_time``.
"""

import base64
from datetime import datetime
from typing import Optional, Union
from urllib.parse import quote

import pyotp
from pyotp.utils import strings_equal

from stepup.services.clock import utcnow

# Characters left unescaped by the authenticator apps' URI encoder.
_URI_SAFE = "!~*'()"

_MAX_COUNTER = 0xFFFFFFFFFFFFFFFF


def hotp(secret: Union[str, bytes], counter: int, digits: int = 6) -> str:
    """Return the ``digits`` long HOTP value for ``counter``.

    :param secret: raw shared secret bytes or its base32 form
    :param counter: moving factor, an unsigned 64-bit integer
    """
    if counter < 0 or counter > _MAX_COUNTER:
        raise ValueError("counter must fit in an unsigned 64-bit integer")
    if not 1 <= digits <= 10:
        raise ValueError("digits must be between 1 and 10")
    return pyotp.HOTP(_as_base32(secret), digits=digits).at(counter)


def generate_secret(num_bytes: int = 20) -> str:
    """Fresh base32 shared secret without padding (160 bits by default)."""
    if num_bytes < 20:
        raise ValueError("secret must be at least 160 bits")
    # each base32 character carries 5 bits
    return pyotp.random_base32(length=-(-num_bytes * 8 // 5))


def decode_secret(secret: str) -> bytes:
    return pyotp.OTP(secret.replace(" ", "")).byte_secret()


def provisioning_uri(secret: str, account: str, issuer: str, digits: int = 6, period: int = 30) -> str:
    encoded_issuer = quote(issuer, safe=_URI_SAFE)
    encoded_account = quote(account, safe=_URI_SAFE)
    return (
        f"otpauth://totp/{encoded_issuer}:{encoded_account}"
        f"?secret={secret}&issuer={encoded_issuer}&algorithm=SHA1&digits={digits}&period={period}"
    )


def is_ascii_code(code: str, length: int) -> bool:
    """True when ``code`` is exactly ``length`` ASCII digits."""
    return len(code) == length and code.isascii() and code.isdigit()


class TotpVerifier:
    """Time-based codes over :func:`hotp` with a symmetric drift window."""

    def __init__(self, period: int = 30, digits: int = 6, drift: int = 1) -> None:
        if period <= 0:
            raise ValueError("period must be positive")
        if drift < 0:
            raise ValueError("drift must not be negative")
        self.period = period
        self.digits = digits
        self.drift = drift

    def timecode(self, for_time: Optional[Union[datetime, int, float]] = None) -> int:
        if for_time is None:
            for_time = utcnow()
        if isinstance(for_time, datetime):
            for_time = for_time.timestamp()
        return int(for_time // self.period)

    def at(self, secret: Union[str, bytes], counter: int) -> str:
        return hotp(secret, counter, self.digits)

    def now_code(self, secret: Union[str, bytes], for_time: Optional[Union[datetime, int, float]] = None) -> str:
        return self.at(secret, self.timecode(for_time))

    def match_offset(
        self,
        secret: Union[str, bytes],
        code: str,
        for_time: Optional[Union[datetime, int, float]] = None,
    ) -> Optional[int]:
        """Return the drift step ``k`` at which ``code`` matched, else None."""
        code = (code or "").strip()
        if not is_ascii_code(code, self.digits):
            return None

        generator = pyotp.HOTP(_as_base32(secret), digits=self.digits)
        counter = self.timecode(for_time)
        for k in range(-self.drift, self.drift + 1):
            if not 0 <= counter + k <= _MAX_COUNTER:
                continue
            if strings_equal(generator.at(counter + k), code):
                return k
        return None

    def verify(
        self,
        secret: Union[str, bytes],
        code: str,
        for_time: Optional[Union[datetime, int, float]] = None,
    ) -> bool:
        return self.match_offset(secret, code, for_time) is not None


def _as_base32(secret: Union[str, bytes]) -> str:
    if isinstance(secret, bytes):
        return base64.b32encode(secret).decode("ascii")
    return secret.replace(" ", "").upper()
