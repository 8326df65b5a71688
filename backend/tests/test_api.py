"""API tests against the test database."""
from datetime import datetime

import pytest

from hostwatch.main import app
from hostwatch.models import CheckResult, HostingRecord
from hostwatch.routers.ssl import get_certificate_inspector
from hostwatch.services.alerter import AlerterService
from hostwatch.services.certbot import CertbotUnavailableError, IssuanceError
from hostwatch.services.certificates import CertificateInspector
from hostwatch.services.probe import ProbeOutcome
from hostwatch.services.scheduler import scheduler_service
from hostwatch.services.tls import parse_certificate
from hostwatch.utils.db_utils import month_of, utcnow


class StubIssuer:
    def __init__(self, info=None, error=None):
        self.info = info
        self.error = error

    def resolve_certbot(self):
        return "/usr/bin/certbot"

    async def issue(self, domain, email=None, renew=False):
        if self.error:
            raise self.error
        return self.info


class StubInspector(CertificateInspector):
    def __init__(self, answers, issuer=None):
        issuer = issuer or StubIssuer(error=IssuanceError("", "issuance is not configured"))
        super().__init__(issuer=issuer, alerter=AlerterService(webhook_url=None))
        self.answers = answers

    async def fetch(self, domain, port=443):
        if domain in self.answers:
            return self.answers[domain], None
        return None, "Connection refused"


@pytest.fixture
def use_inspector():
    def _use(inspector):
        app.dependency_overrides[get_certificate_inspector] = lambda: inspector
        return inspector
    return _use


async def failing(tracker, target):
    return await tracker.record(ProbeOutcome(
        target_id=target.id, url=target.url, checked_at=utcnow(), error="Request timed out",
    ))


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestMonitoringApi:

    @pytest.mark.asyncio
    async def test_status_lists_targets(self, client, add_target, tracker):
        up = await add_target("up.example.com")
        down = await add_target("down.example.com")
        await tracker.record(ProbeOutcome(target_id=up.id, url=up.url, checked_at=utcnow(), status_code=200))
        await failing(tracker, down)

        response = await client.get("/api/monitoring/status")

        assert response.status_code == 200
        entries = {e["domain"]: e for e in response.json()}
        assert entries["up.example.com"]["alarm_active"] is False
        assert entries["up.example.com"]["last_status_code"] == 200
        assert entries["down.example.com"]["is_down"] is True
        assert entries["down.example.com"]["alarm_active"] is True
        assert entries["down.example.com"]["acknowledged"] is False
        assert entries["down.example.com"]["last_error"] == "Request timed out"

    @pytest.mark.asyncio
    async def test_acknowledge(self, client, add_target, tracker):
        target = await add_target()
        await failing(tracker, target)

        response = await client.post(f"/api/monitoring/ack/{target.id}", json={"actor": "ops"})

        assert response.status_code == 200
        body = response.json()
        assert body["acknowledged"] is True
        assert body["acknowledged_by"] == "ops"
        assert body["alarm_active"] is True

        again = await client.post(f"/api/monitoring/ack/{target.id}")
        assert again.status_code == 200
        assert again.json()["acknowledged_by"] == "ops"

    @pytest.mark.asyncio
    async def test_acknowledge_unknown_target(self, client):
        response = await client.post("/api/monitoring/ack/999")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_report_download(self, client, add_target, db_session):
        target = await add_target("example.com")
        checked_at = datetime(2025, 3, 2, 12, 0, 0)
        db_session.add(CheckResult(
            target_id=target.id, checked_at=checked_at, period=month_of(checked_at),
            url=target.url, ok=True, status_code=200, response_time_ms=90,
        ))
        await db_session.commit()

        response = await client.get("/api/monitoring/report", params={"month": "2025-03", "target_id": target.id})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert f'filename="monitoring-2025-03-{target.id}.csv"' in response.headers["content-disposition"]
        assert response.text.splitlines() == [
            "timestamp,domain,status_code,response_time_ms,error",
            "2025-03-02T12:00:00,example.com,200,90,",
        ]

    @pytest.mark.asyncio
    async def test_report_invalid_month(self, client):
        response = await client.get("/api/monitoring/report", params={"month": "2025-13"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_register_and_disable_target(self, client, db_session):
        record = HostingRecord(domain="new.example.com", client_name="Client")
        db_session.add(record)
        await db_session.commit()

        created = await client.post("/api/monitoring/targets", json={"hosting_id": record.id})
        assert created.status_code == 201
        assert created.json()["url"] == "https://new.example.com"

        disabled = await client.post(f"/api/monitoring/targets/{record.id}/disable")
        assert disabled.status_code == 200
        assert disabled.json()["enabled"] is False

        listed = await client.get("/api/monitoring/targets")
        assert [t["domain"] for t in listed.json()] == ["new.example.com"]

    @pytest.mark.asyncio
    async def test_register_unknown_hosting(self, client):
        response = await client.post("/api/monitoring/targets", json={"hosting_id": 12345})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_register_cancelled_hosting(self, client, db_session):
        record = HostingRecord(domain="gone.example.com", client_name="Client", status="cancelled")
        db_session.add(record)
        await db_session.commit()

        response = await client.post("/api/monitoring/targets", json={"hosting_id": record.id})

        assert response.status_code == 409
        assert (await client.get("/api/monitoring/targets")).json() == []

    @pytest.mark.asyncio
    async def test_recent_checks(self, client, add_target, tracker):
        target = await add_target()
        await failing(tracker, target)

        response = await client.get(f"/api/monitoring/targets/{target.id}/checks")

        assert response.status_code == 200
        checks = response.json()
        assert len(checks) == 1
        assert checks[0]["ok"] is False
        assert checks[0]["error"] == "Request timed out"

    @pytest.mark.asyncio
    async def test_sweep_conflict(self, client, monkeypatch):
        monkeypatch.setattr(scheduler_service, "_sweep_in_progress", True)

        response = await client.post("/api/monitoring/sweep")

        assert response.status_code == 409


class TestSslApi:

    @pytest.mark.asyncio
    async def test_add_and_get(self, client, use_inspector, make_certificate):
        use_inspector(StubInspector({"example.com": parse_certificate(make_certificate(days_after=60))}))

        created = await client.post("/api/ssl", json={"domain": "Example.com"})
        assert created.status_code == 201
        assert created.json()["status"] == "valid"

        fetched = await client.get("/api/ssl/example.com")
        assert fetched.status_code == 200
        assert fetched.json()["days_until_expiry"] == 60

        listed = await client.get("/api/ssl")
        assert [c["domain"] for c in listed.json()] == ["example.com"]

    @pytest.mark.asyncio
    async def test_unknown_certificate(self, client, use_inspector):
        use_inspector(StubInspector({}))

        assert (await client.get("/api/ssl/missing.example.com")).status_code == 404
        assert (await client.delete("/api/ssl/missing.example.com")).status_code == 404

    @pytest.mark.asyncio
    async def test_delete(self, client, use_inspector, make_certificate):
        use_inspector(StubInspector({"example.com": parse_certificate(make_certificate())}))
        await client.post("/api/ssl", json={"domain": "example.com"})

        response = await client.delete("/api/ssl/example.com")

        assert response.status_code == 204
        assert (await client.get("/api/ssl/example.com")).status_code == 404

    @pytest.mark.asyncio
    async def test_discover(self, client, use_inspector, db_session, make_certificate):
        db_session.add_all([
            HostingRecord(domain="up.example.com", client_name="A"),
            HostingRecord(domain="down.example.com", client_name="B"),
        ])
        await db_session.commit()
        use_inspector(StubInspector({"up.example.com": parse_certificate(make_certificate())}))

        response = await client.post("/api/ssl/discover")

        assert response.status_code == 200
        body = response.json()
        assert [c["domain"] for c in body["checked"]] == ["up.example.com"]
        assert body["skipped"] == ["down.example.com"]

    @pytest.mark.asyncio
    async def test_generate(self, client, use_inspector, make_certificate):
        issued = parse_certificate(make_certificate(days_before=0, days_after=90))
        use_inspector(StubInspector({}, issuer=StubIssuer(info=issued)))

        response = await client.post("/api/ssl/generate/example.com", json={"email": "ops@example.com"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "valid"
        assert body["renewal_count"] == 1
        assert body["last_renewed_at"] is not None

    @pytest.mark.asyncio
    async def test_generate_failure(self, client, use_inspector):
        error = IssuanceError("example.com", "too many certificates already issued")
        use_inspector(StubInspector({}, issuer=StubIssuer(error=error)))

        response = await client.post("/api/ssl/generate/example.com")

        assert response.status_code == 502
        assert response.json()["detail"] == {
            "domain": "example.com",
            "error": "too many certificates already issued",
        }

    @pytest.mark.asyncio
    async def test_generate_without_certbot(self, client, use_inspector):
        error = CertbotUnavailableError("example.com", "certbot is not installed")
        use_inspector(StubInspector({}, issuer=StubIssuer(error=error)))

        response = await client.post("/api/ssl/generate/example.com")

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "certbot is not installed"

    @pytest.mark.asyncio
    async def test_update_renewal_settings(self, client, use_inspector, make_certificate):
        use_inspector(StubInspector({"example.com": parse_certificate(make_certificate(days_after=60))}))
        await client.post("/api/ssl", json={"domain": "example.com"})

        response = await client.put("/api/ssl/example.com", json={"auto_renew": False, "renewal_threshold_days": 21})

        assert response.status_code == 200
        body = response.json()
        assert body["auto_renew"] is False
        assert body["renewal_threshold_days"] == 21

    @pytest.mark.asyncio
    async def test_update_validation(self, client, use_inspector):
        use_inspector(StubInspector({}))

        assert (await client.put("/api/ssl/missing.example.com", json={"auto_renew": True})).status_code == 404
        assert (await client.put("/api/ssl/example.com", json={"renewal_threshold_days": 0})).status_code == 422

    @pytest.mark.asyncio
    async def test_renew(self, client, use_inspector, make_certificate):
        inspector = use_inspector(StubInspector({"example.com": parse_certificate(make_certificate(days_after=60))}))
        await client.post("/api/ssl", json={"domain": "example.com"})
        inspector.issuer = StubIssuer(info=parse_certificate(make_certificate(days_before=0, days_after=90)))

        response = await client.post("/api/ssl/renew/example.com")

        assert response.status_code == 200
        assert response.json()["renewal_count"] == 1
        assert (await client.post("/api/ssl/renew/missing.example.com")).status_code == 404


class TestSslAlarmApi:

    @pytest.mark.asyncio
    async def test_acknowledge(self, client, use_inspector, make_certificate):
        use_inspector(StubInspector({"example.com": parse_certificate(make_certificate(days_after=5))}))
        await client.post("/api/ssl", json={"domain": "example.com"})

        response = await client.post("/api/ssl/example.com/acknowledge", json={"actor": "ops"})

        assert response.status_code == 200
        body = response.json()
        assert body["alarm_active"] is True
        assert body["acknowledged"] is True
        assert body["acknowledged_by"] == "ops"

    @pytest.mark.asyncio
    async def test_acknowledge_unknown(self, client, use_inspector):
        use_inspector(StubInspector({}))

        response = await client.post("/api/ssl/missing.example.com/acknowledge")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_summary(self, client, use_inspector, make_certificate):
        use_inspector(StubInspector({"example.com": parse_certificate(make_certificate(days_after=5))}))
        await client.post("/api/ssl", json={"domain": "example.com"})
        await client.post("/api/ssl", json={"domain": "other.example.com"})

        response = await client.get("/api/ssl/stats/summary")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert body["expiring_soon"] == 1
        assert body["not_found"] == 1
        assert body["alarms"] == 1
        assert body["certbot_available"] is True
        assert body["certbot_path"] == "/usr/bin/certbot"
