from .subject import Subject
from .session import VerificationSession
from .lockout import LockoutRecord
from .device import TrustedDevice
from .authorization import AuthorizedAction
from .backup_code import BackupCode
from .audit import AuditLog

__all__ = [
    "Subject",
    "VerificationSession",
    "LockoutRecord",
    "TrustedDevice",
    "AuthorizedAction",
    "BackupCode",
    "AuditLog",
]
