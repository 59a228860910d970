from stepup.models.audit import AuditLog
from stepup.services.audit import CRITICAL, AuditSink


def test_record_persists_event(session_factory, clock, db) -> None:
    sink = AuditSink(session_factory, clock=clock)
    sink.record("lockout_triggered", subject_id="client-1", severity=CRITICAL, attempts=5, until=clock())

    entry = db.query(AuditLog).one()
    assert entry.event_type == "lockout_triggered"
    assert entry.severity == CRITICAL
    assert entry.details["attempts"] == 5
    assert entry.details["until"] == str(clock())


def test_record_never_raises(clock) -> None:
    def broken_factory():
        raise RuntimeError("database is gone")

    AuditSink(broken_factory, clock=clock).record("verification_failed", subject_id="client-1")
