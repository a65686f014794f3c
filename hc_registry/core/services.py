from dataclasses import dataclass

from fastapi import Header, Request

from hc_registry.actor.schemas import Actor
from hc_registry.actor.services import ActorDirectory
from hc_registry.ledger.client import InMemoryLedgerClient
from hc_registry.ledger.services import CreditLedger
from hc_registry.logging_config import logger
from hc_registry.measurement.services import MeasurementStore
from hc_registry.request.services import RequestWorkflowEngine
from hc_registry.settings import Settings
from hc_registry.sync.services import LedgerSyncCoordinator
from hc_registry.verification.services import VerificationOracle


@dataclass
class RegistryServices:
    ledger: CreditLedger
    ledger_client: InMemoryLedgerClient
    coordinator: LedgerSyncCoordinator
    oracle: VerificationOracle
    measurements: MeasurementStore
    actors: ActorDirectory
    engine: RequestWorkflowEngine


def build_registry_services(config: Settings) -> RegistryServices:
    """Wire the ledger, coordinator, oracle and workflow engine from settings."""
    ledger = CreditLedger()
    ledger_client = InMemoryLedgerClient(
        ledger, confirmation_delay=config.LEDGER_CONFIRMATION_DELAY_SECONDS
    )
    coordinator = LedgerSyncCoordinator(
        ledger_client,
        confirmation_timeout=config.LEDGER_CONFIRMATION_TIMEOUT_SECONDS,
        poll_interval=config.LEDGER_POLL_INTERVAL_SECONDS,
        max_submit_attempts=config.LEDGER_SUBMIT_MAX_ATTEMPTS,
        submit_backoff=config.LEDGER_SUBMIT_BACKOFF_SECONDS,
    )
    oracle = VerificationOracle(
        relative_tolerance=config.VERIFICATION_RELATIVE_TOLERANCE,
        absolute_tolerance=config.VERIFICATION_ABSOLUTE_TOLERANCE,
    )
    measurements = MeasurementStore()
    actors = ActorDirectory()

    if config.MEASUREMENT_DATA_FP:
        measurements.load_file(config.MEASUREMENT_DATA_FP)
    if config.ACTORS_FP:
        logger.info(f"Loaded {actors.load_file(config.ACTORS_FP)} actors")

    engine = RequestWorkflowEngine(
        ledger_client,
        coordinator,
        oracle,
        measurements,
        actors,
        anomaly_policy=config.ANOMALY_POLICY,
    )
    return RegistryServices(
        ledger=ledger,
        ledger_client=ledger_client,
        coordinator=coordinator,
        oracle=oracle,
        measurements=measurements,
        actors=actors,
        engine=engine,
    )


def get_registry_services(request: Request) -> RegistryServices:
    return request.app.state.registry


def get_current_actor(
    request: Request,
    x_actor_id: str = Header(description="Actor identity asserted by the authentication layer"),
) -> Actor:
    """Resolve the authenticated actor against the actor directory."""
    return get_registry_services(request).actors.get(x_actor_id)
