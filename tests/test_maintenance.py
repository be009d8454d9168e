from sqlalchemy import select

from app.core.config import settings
from app.models import AuditAction, AuditLog, SystemSetting
from app.models.system_setting import MAINTENANCE_MODE_KEY
from app.schemas.maintenance import MaintenanceModeSettings
from app.services.maintenance import MaintenanceGate, MaintenanceModeService, maintenance_gate
from tests.conftest import auth_headers

ROLES = ["edufam_admin", "school_owner", "principal", "teacher", "parent", "finance_officer", None]


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_gate_fails_open_when_read_raises():
    def broken_reader():
        raise ConnectionError("settings store unreachable")

    gate = MaintenanceGate(reader=broken_reader, poll_interval=30)

    for role in ROLES:
        assert gate.check_access(role).allowed is True
    assert gate.is_enabled() is False


def test_gate_blocks_everyone_but_allowed_roles():
    settings = MaintenanceModeSettings(enabled=True, message="down for upgrade", allowed_roles=["principal"])
    gate = MaintenanceGate(reader=lambda: settings, poll_interval=30)

    blocked = gate.check_access("teacher")
    assert blocked.allowed is False
    assert blocked.reason == "down for upgrade"
    assert gate.check_access(None).allowed is False
    assert gate.check_access("principal").allowed is True
    # Platform admins always pass, even when not listed
    assert gate.check_access("edufam_admin").allowed is True


def test_gate_caches_for_poll_interval():
    reads = []
    state = {"enabled": False}

    def reader():
        reads.append(1)
        return MaintenanceModeSettings(enabled=state["enabled"])

    clock = FakeClock()
    gate = MaintenanceGate(reader=reader, poll_interval=30, clock=clock)

    assert gate.is_enabled() is False
    state["enabled"] = True
    clock.now = 29
    assert gate.is_enabled() is False
    assert len(reads) == 1

    clock.now = 30
    assert gate.is_enabled() is True
    assert len(reads) == 2

    state["enabled"] = False
    gate.invalidate()
    assert gate.is_enabled() is False
    assert len(reads) == 3


def test_gate_recovers_after_failed_read():
    calls = {"count": 0}

    def flaky_reader():
        calls["count"] += 1
        if calls["count"] == 1:
            raise TimeoutError("slow query")
        return MaintenanceModeSettings(enabled=True)

    clock = FakeClock()
    gate = MaintenanceGate(reader=flaky_reader, poll_interval=10, clock=clock)

    assert gate.check_access("teacher").allowed is True
    clock.now = 10
    assert gate.check_access("teacher").allowed is False


def test_service_defaults_when_row_missing_or_invalid(db, seed):
    service = MaintenanceModeService(db)
    assert service.get_settings().enabled is False
    assert service.get_settings().allowed_roles == ["edufam_admin"]

    db.add(SystemSetting(setting_key=MAINTENANCE_MODE_KEY, setting_value={"enabled": "not-a-bool"}))
    db.commit()
    assert service.get_settings().enabled is False


def test_default_message_follows_setting(monkeypatch, db, seed):
    monkeypatch.setattr(settings, "MAINTENANCE_DEFAULT_MESSAGE", "Back after the exam upload window")

    assert MaintenanceModeSettings().message == "Back after the exam upload window"
    assert MaintenanceModeService(db).get_settings().message == "Back after the exam upload window"


def test_service_toggle_upserts_one_row_and_audits(db, seed):
    service = MaintenanceModeService(db)

    enabled = service.enable(seed.admin, message="down for upgrade", estimated_duration="2 hours")
    assert enabled.enabled is True
    assert enabled.updated_by == seed.admin.id

    disabled = service.disable(seed.admin)
    db.commit()
    assert disabled.enabled is False
    # Message is kept for the next time
    assert disabled.message == "down for upgrade"

    rows = db.execute(select(SystemSetting)).scalars().all()
    assert len(rows) == 1
    actions = db.execute(select(AuditLog.action).order_by(AuditLog.id)).scalars().all()
    assert actions == [AuditAction.MAINTENANCE_ENABLED, AuditAction.MAINTENANCE_DISABLED]


def test_maintenance_toggle_through_api(client, seed):
    admin = auth_headers(seed.admin, school_id=seed.school.id)
    teacher = auth_headers(seed.teacher)

    response = client.put(
        "/api/v1/system/maintenance",
        json={"enabled": True, "message": "down for upgrade"},
        headers=admin,
    )
    assert response.status_code == 200
    assert response.json()["enabled"] is True

    blocked = client.get("/api/v1/grades", headers=teacher)
    assert blocked.status_code == 503
    assert blocked.json()["error"] == {
        "code": "MAINTENANCE_MODE",
        "message": "down for upgrade",
        "details": {},
    }

    status = client.get("/api/v1/system/maintenance/status", headers=teacher)
    assert status.status_code == 200
    assert status.json()["allowed"] is False

    assert client.get("/api/v1/grades", headers=admin).status_code == 200
    assert client.get("/health").status_code == 200

    response = client.put("/api/v1/system/maintenance", json={"enabled": False}, headers=admin)
    assert response.status_code == 200

    assert client.get("/api/v1/grades", headers=teacher).status_code == 200
    assert client.get("/api/v1/grades", headers=auth_headers(seed.principal)).status_code == 200


def test_login_stays_open_during_maintenance(client, db, seed):
    MaintenanceModeService(db).enable(seed.admin, message="down for upgrade")
    db.commit()
    maintenance_gate.invalidate()

    response = client.post("/api/v1/auth/login", json={"username": "teacher", "password": "password123"})
    assert response.status_code == 200


def test_only_platform_admin_manages_maintenance(client, seed):
    for user in (seed.principal, seed.teacher, seed.owner):
        response = client.get("/api/v1/system/maintenance", headers=auth_headers(user))
        assert response.status_code == 403
        response = client.put("/api/v1/system/maintenance", json={"enabled": True}, headers=auth_headers(user))
        assert response.status_code == 403

    response = client.get("/api/v1/system/maintenance", headers=auth_headers(seed.admin))
    assert response.status_code == 200
    assert response.json()["enabled"] is False
