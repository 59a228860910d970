import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from stepup.models.audit import AuditLog
from stepup.services.clock import Clock, utcnow

logger = logging.getLogger(__name__)

INFO = "info"
WARNING = "warning"
CRITICAL = "critical"


class AuditSink:
    """Writes security events in a session of its own.

    Recording is fire-and-forget: any failure is logged and dropped so the
    verification flow that triggered it is never blocked.
    """

    def __init__(self, session_factory: Callable[[], Session], clock: Clock = utcnow) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def record(
        self,
        event_type: str,
        subject_id: Optional[str] = None,
        severity: str = INFO,
        **details: Any,
    ) -> None:
        log_level = {WARNING: logging.WARNING, CRITICAL: logging.CRITICAL}.get(severity, logging.INFO)
        logger.log(log_level, "[AUDIT] %s subject=%s details=%s", event_type, subject_id, details)
        try:
            with self._session_factory() as db:
                db.add(
                    AuditLog(
                        occurred_at=self._clock(),
                        subject_id=subject_id,
                        event_type=event_type,
                        severity=severity,
                        details=_jsonable(details),
                    )
                )
                db.commit()
        except Exception:
            logger.exception("Failed to write audit event %s for subject=%s", event_type, subject_id)


def _jsonable(details: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value if isinstance(value, (str, int, float, bool, type(None))) else str(value)
            for key, value in details.items()}
