"""
Tests for health checks.
"""
from hybrid_brain import HybridBrain
from hybrid_brain.health import HealthChecker, HealthStatus, check_disk_space

from conftest import ScriptedStrategist


class TestHealthChecker:

    def test_defaults_healthy(self):
        health = HealthChecker().run_all()

        assert health.healthy
        assert [c.name for c in health.checks] == ["python_version", "dependencies"]

    def test_custom_check(self):
        checker = HealthChecker(include_defaults=False)
        checker.add_check("strategist", lambda: HealthStatus("strategist", True, "ready"))

        status = checker.run_check("strategist")

        assert status.healthy
        assert status.latency_ms >= 0.0

    def test_unknown_check(self):
        status = HealthChecker(include_defaults=False).run_check("nope")

        assert not status.healthy
        assert "Unknown check" in status.message

    def test_raising_check_reports_unhealthy(self):
        def broken():
            raise RuntimeError("boom")

        checker = HealthChecker(include_defaults=False)
        checker.add_check("broken", broken)
        health = checker.run_all()

        assert not health.healthy
        assert health.checks[0].message == "Check failed: boom"

    def test_to_dict_flattens_details(self):
        checker = HealthChecker(include_defaults=False)
        checker.add_check("x", lambda: HealthStatus("x", True, "ok", details={"ready": True}))

        data = checker.run_all().to_dict()

        assert data["healthy"] is True
        assert data["checks"][0]["ready"] is True

    def test_disk_space_missing_path_falls_back(self, tmp_path):
        status = check_disk_space(str(tmp_path / "does-not-exist"))

        assert status.name == "disk_space"
        assert status.details["free_gb"] >= 0


class TestComponentChecks:

    def test_offline_brain_is_healthy(self, offline_config):
        brain = HybridBrain(offline_config)
        try:
            health = brain.health()
        finally:
            brain.router.close()

        checks = {c.name: c for c in health.checks}
        assert health.healthy
        assert checks["strategist"].details["ready"] is False
        assert checks["remote_budget"].message == "0/0 remote calls left this hour"
        assert checks["learner"].details["running"] is False

    def test_ready_strategist_reported(self, config):
        brain = HybridBrain(config, strategist=ScriptedStrategist())
        try:
            status = brain.health_checker.run_check("strategist")
        finally:
            brain.router.close()

        assert status.details["ready"] is True
        assert status.message == "scripted ready"
