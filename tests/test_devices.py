from stepup.models.device import TrustedDevice


def test_trust_is_effective_until_expiry(db, services, clock) -> None:
    registry = services.devices
    assert not registry.is_trusted(db, "client-1", "device-1")

    registry.trust(db, "client-1", "device-1", "Galaxy S24")
    assert registry.is_trusted(db, "client-1", "device-1")

    clock.advance(days=29, hours=23)
    assert registry.is_trusted(db, "client-1", "device-1")

    clock.advance(hours=1)
    assert not registry.is_trusted(db, "client-1", "device-1")


def test_trust_is_scoped_to_subject(db, services) -> None:
    services.devices.trust(db, "client-1", "device-1")
    assert not services.devices.is_trusted(db, "client-2", "device-1")
    assert not services.devices.is_trusted(db, "client-1", None)


def test_trust_again_refreshes_single_row(db, services, clock) -> None:
    registry = services.devices
    registry.trust(db, "client-1", "device-1", "Old name")
    clock.advance(days=20)
    device = registry.trust(db, "client-1", "device-1", "New name")

    rows = db.query(TrustedDevice).filter(TrustedDevice.subject_id == "client-1").all()
    assert len(rows) == 1
    assert device.device_name == "New name"

    clock.advance(days=15)
    assert registry.is_trusted(db, "client-1", "device-1")


def test_list_and_revoke(db, services, clock) -> None:
    registry = services.devices
    registry.trust(db, "client-1", "device-1", "Phone")
    clock.advance(minutes=1)
    registry.trust(db, "client-1", "device-2", "Tablet")
    registry.trust(db, "client-2", "device-3", "Laptop")

    assert [d.device_id for d in registry.list_devices(db, "client-1")] == ["device-2", "device-1"]

    assert registry.revoke(db, "client-1", "device-1")
    assert not registry.revoke(db, "client-1", "device-1")
    assert not registry.is_trusted(db, "client-1", "device-1")

    assert registry.revoke_all(db, "client-1") == 1
    assert registry.list_devices(db, "client-1") == []
    assert registry.is_trusted(db, "client-2", "device-3")
