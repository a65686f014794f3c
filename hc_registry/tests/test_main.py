import json
import logging

from starlette.testclient import TestClient

from hc_registry.core.models.base import Verdict
from hc_registry.core.services import build_registry_services
from hc_registry.logging_config import logger
from hc_registry.main import app
from hc_registry.settings import Settings
from hc_registry.tests.conftest import FAST_SETTINGS, WINDOW_END, WINDOW_START
from hc_registry.verification.schemas import VerificationClaim


class TestApplication:
    def test_root(self, api_client: TestClient):
        response = api_client.get("/")

        assert response.status_code == 200
        assert response.json()["version"] == app.version

    def test_change_log_level(self, api_client: TestClient):
        try:
            response = api_client.post("/change_log_level", json={"level": "DEBUG"})

            assert response.status_code == 200
            assert "hc_registry" in response.json()["updated_loggers"]
            assert logger.level == logging.DEBUG
        finally:
            api_client.post("/change_log_level", json={"level": "INFO"})

        assert logger.level == logging.INFO

    def test_change_log_level_rejects_unknown_level(self, api_client: TestClient):
        response = api_client.post("/change_log_level", json={"level": "LOUD"})

        assert response.status_code == 422

    def test_lifespan_builds_registry(self):
        try:
            with TestClient(app) as client:
                assert client.get("/ledger/statistics").json()["total_credits"] == 0
                assert app.state.registry.engine is not None
        finally:
            del app.state.registry


class TestBuildRegistryServices:
    def test_seed_files_are_loaded(self, tmp_path):
        actors_fp = tmp_path / "actors.json"
        actors_fp.write_text(
            json.dumps(
                [
                    {"actor_id": "auditor-1", "name": "Auditor", "role": "auditor"},
                    {
                        "actor_id": "plant-1",
                        "name": "Plant",
                        "role": "plant",
                        "auditor_id": "auditor-1",
                    },
                ]
            )
        )
        measurements_fp = tmp_path / "measurements.csv"
        measurements_fp.write_text(
            "actor_id,kind,interval_start,interval_end,quantity\n"
            f"plant-1,production,{WINDOW_START.isoformat()},{WINDOW_END.isoformat()},80.0\n"
        )

        services = build_registry_services(
            Settings(
                **FAST_SETTINGS,
                ACTORS_FP=str(actors_fp),
                MEASUREMENT_DATA_FP=str(measurements_fp),
                VERIFICATION_RELATIVE_TOLERANCE=0.1,
            )
        )

        assert services.actors.auditor_for("plant-1").actor_id == "auditor-1"
        assert len(services.measurements) == 1
        result = services.oracle.verify(
            "REQ-1",
            VerificationClaim(
                request_type="issue",
                actor_id="plant-1",
                amount=85.0,
                window_start=WINDOW_START,
                window_end=WINDOW_END,
            ),
            services.measurements.snapshot(),
        )
        assert result.verdict == Verdict.VERIFIED
        assert services.coordinator.confirmation_timeout == 0.2
