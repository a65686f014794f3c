import datetime
from typing import Any, Callable, Generator

import pytest
from starlette.testclient import TestClient

from hc_registry.actor.schemas import Actor
from hc_registry.actor.services import ActorDirectory
from hc_registry.core.models.base import ActorRole, MeasurementKind, RequestType
from hc_registry.core.services import RegistryServices, build_registry_services
from hc_registry.ledger.client import InMemoryLedgerClient
from hc_registry.ledger.services import CreditLedger
from hc_registry.main import app
from hc_registry.measurement.schemas import MeasurementReport
from hc_registry.measurement.services import MeasurementStore
from hc_registry.request.schemas import CreditRequest, RequestCreate
from hc_registry.request.services import RequestWorkflowEngine
from hc_registry.settings import Settings
from hc_registry.sync.services import LedgerSyncCoordinator
from hc_registry.verification.services import VerificationOracle

WINDOW_START = datetime.datetime(2024, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)
WINDOW_END = datetime.datetime(2024, 1, 2, 0, 0, tzinfo=datetime.timezone.utc)

FAST_SETTINGS = {
    "LEDGER_CONFIRMATION_TIMEOUT_SECONDS": 0.2,
    "LEDGER_POLL_INTERVAL_SECONDS": 0.01,
    "LEDGER_SUBMIT_MAX_ATTEMPTS": 3,
    "LEDGER_SUBMIT_BACKOFF_SECONDS": 0.0,
    "LEDGER_CONFIRMATION_DELAY_SECONDS": 0.0,
}


def quarter_day_reports(
    actor_id: str, kind: MeasurementKind, total: float
) -> list[MeasurementReport]:
    """Four 6-hour reports covering the test window and summing to total."""
    return [
        MeasurementReport(
            actor_id=actor_id,
            kind=kind,
            interval_start=WINDOW_START + datetime.timedelta(hours=6 * i),
            interval_end=WINDOW_START + datetime.timedelta(hours=6 * (i + 1)),
            quantity=total / 4,
        )
        for i in range(4)
    ]


@pytest.fixture()
def ledger() -> CreditLedger:
    return CreditLedger()


@pytest.fixture()
def ledger_client(ledger: CreditLedger) -> InMemoryLedgerClient:
    return InMemoryLedgerClient(ledger)


@pytest.fixture()
def coordinator(ledger_client: InMemoryLedgerClient) -> LedgerSyncCoordinator:
    return LedgerSyncCoordinator(
        ledger_client,
        confirmation_timeout=FAST_SETTINGS["LEDGER_CONFIRMATION_TIMEOUT_SECONDS"],
        poll_interval=FAST_SETTINGS["LEDGER_POLL_INTERVAL_SECONDS"],
        max_submit_attempts=FAST_SETTINGS["LEDGER_SUBMIT_MAX_ATTEMPTS"],
        submit_backoff=FAST_SETTINGS["LEDGER_SUBMIT_BACKOFF_SECONDS"],
    )


@pytest.fixture()
def oracle() -> VerificationOracle:
    return VerificationOracle(relative_tolerance=0.05, absolute_tolerance=0.0)


@pytest.fixture()
def actors() -> ActorDirectory:
    directory = ActorDirectory()
    directory.register_many(
        [
            Actor(actor_id="auditor-1", name="Auditor One", role=ActorRole.AUDITOR),
            Actor(actor_id="auditor-2", name="Auditor Two", role=ActorRole.AUDITOR),
            Actor(
                actor_id="plant-1",
                name="Electrolyser Plant One",
                role=ActorRole.PLANT,
                auditor_id="auditor-1",
            ),
            Actor(
                actor_id="plant-2",
                name="Electrolyser Plant Two",
                role=ActorRole.PLANT,
                auditor_id="auditor-1",
            ),
            Actor(
                actor_id="industry-1",
                name="Steelworks",
                role=ActorRole.INDUSTRY,
                auditor_id="auditor-2",
            ),
            Actor(
                actor_id="industry-2",
                name="Ammonia Works",
                role=ActorRole.INDUSTRY,
                auditor_id="auditor-2",
            ),
            Actor(actor_id="plant-orphan", name="Unassigned Plant", role=ActorRole.PLANT),
        ]
    )
    return directory


@pytest.fixture()
def measurements() -> MeasurementStore:
    store = MeasurementStore()
    store.add_reports(quarter_day_reports("plant-1", MeasurementKind.PRODUCTION, 100.0))
    store.add_reports(quarter_day_reports("plant-2", MeasurementKind.PRODUCTION, 40.0))
    store.add_reports(quarter_day_reports("plant-1", MeasurementKind.DELIVERY, 100.0))
    store.add_reports(quarter_day_reports("plant-1", MeasurementKind.CONSUMPTION, 100.0))
    store.add_reports(quarter_day_reports("industry-1", MeasurementKind.CONSUMPTION, 100.0))
    store.add_reports(quarter_day_reports("industry-1", MeasurementKind.DELIVERY, 100.0))
    return store


@pytest.fixture()
def engine(
    ledger_client: InMemoryLedgerClient,
    coordinator: LedgerSyncCoordinator,
    oracle: VerificationOracle,
    measurements: MeasurementStore,
    actors: ActorDirectory,
) -> RequestWorkflowEngine:
    return RequestWorkflowEngine(
        ledger_client, coordinator, oracle, measurements, actors
    )


def request_payload(request_type: RequestType, **kwargs: Any) -> RequestCreate:
    return RequestCreate(
        request_type=request_type,
        window_start=WINDOW_START,
        window_end=WINDOW_END,
        **kwargs,
    )


@pytest.fixture()
def credit_factory(engine: RequestWorkflowEngine) -> Callable:
    """Factory issuing a finalized credit to a plant through the full workflow."""

    async def _issue_credit(
        credit_id: str,
        plant_id: str = "plant-1",
        amount: float = 100.0,
        auditor_id: str = "auditor-1",
    ) -> CreditRequest:
        created = await engine.create_request(
            plant_id,
            request_payload(RequestType.ISSUE, credit_id=credit_id, amount=amount),
        )
        return await engine.decide(
            created.request_id, auditor_id, approve=True, rationale="matches metering"
        )

    return _issue_credit


@pytest.fixture()
def registry_services(actors: ActorDirectory) -> RegistryServices:
    services = build_registry_services(Settings(**FAST_SETTINGS))
    services.actors.register_many(actors.list_all())
    services.measurements.add_reports(
        quarter_day_reports("plant-1", MeasurementKind.PRODUCTION, 100.0)
    )
    services.measurements.add_reports(
        quarter_day_reports("plant-1", MeasurementKind.DELIVERY, 100.0)
    )
    services.measurements.add_reports(
        quarter_day_reports("industry-1", MeasurementKind.CONSUMPTION, 100.0)
    )
    return services


@pytest.fixture()
def api_client(
    registry_services: RegistryServices,
) -> Generator[TestClient, None, None]:
    """API Client for testing routes"""
    app.state.registry = registry_services
    with TestClient(app) as client:
        yield client
    del app.state.registry
