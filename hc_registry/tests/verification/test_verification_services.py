import datetime

import pytest

from hc_registry.core.models.base import RequestType, Verdict
from hc_registry.measurement.services import MeasurementStore
from hc_registry.verification.schemas import VerificationClaim
from hc_registry.verification.services import VerificationOracle

from hc_registry.tests.conftest import WINDOW_END, WINDOW_START


def claim(
    request_type: RequestType = RequestType.ISSUE,
    actor_id: str = "plant-1",
    amount: float | None = 100.0,
    window_start: datetime.datetime | None = WINDOW_START,
    window_end: datetime.datetime | None = WINDOW_END,
) -> VerificationClaim:
    return VerificationClaim(
        request_type=request_type,
        actor_id=actor_id,
        amount=amount,
        window_start=window_start,
        window_end=window_end,
    )


class TestVerificationOracle:
    def test_matching_production_is_verified(
        self, oracle: VerificationOracle, measurements: MeasurementStore
    ):
        result = oracle.verify("REQ-1", claim(), measurements.snapshot())

        assert result.verdict == Verdict.VERIFIED
        assert result.request_id == "REQ-1"
        assert result.claimed_amount == 100.0
        assert result.measured_amount == 100.0
        assert result.measurement_reference.startswith("production:plant-1:")

    def test_claim_within_tolerance_is_verified(
        self, oracle: VerificationOracle, measurements: MeasurementStore
    ):
        result = oracle.verify("REQ-1", claim(amount=105.0), measurements.snapshot())

        assert result.verdict == Verdict.VERIFIED

    def test_under_claim_is_verified(
        self, oracle: VerificationOracle, measurements: MeasurementStore
    ):
        result = oracle.verify("REQ-1", claim(amount=60.0), measurements.snapshot())

        assert result.verdict == Verdict.VERIFIED

    def test_claim_beyond_tolerance_is_anomalous(
        self, oracle: VerificationOracle, measurements: MeasurementStore
    ):
        result = oracle.verify("REQ-1", claim(amount=105.5), measurements.snapshot())

        assert result.verdict == Verdict.ANOMALOUS
        assert result.measured_amount == 100.0
        assert "exceeds" in result.rationale

    def test_missing_measurements_are_anomalous(
        self, oracle: VerificationOracle, measurements: MeasurementStore
    ):
        result = oracle.verify(
            "REQ-1", claim(actor_id="plant-unknown"), measurements.snapshot()
        )

        assert result.verdict == Verdict.ANOMALOUS
        assert result.measured_amount is None
        assert result.measurement_reference.endswith("n=0")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"window_start": None},
            {"window_end": None},
            {"window_start": WINDOW_END, "window_end": WINDOW_START},
            {"amount": None},
            {"amount": 0.0},
            {"amount": -5.0},
        ],
    )
    def test_claim_without_linkage_is_unverified(
        self, oracle: VerificationOracle, measurements: MeasurementStore, kwargs
    ):
        result = oracle.verify("REQ-1", claim(**kwargs), measurements.snapshot())

        assert result.verdict == Verdict.UNVERIFIED
        assert result.measurement_reference is None

    def test_request_type_selects_measurement_kind(
        self, oracle: VerificationOracle, measurements: MeasurementStore
    ):
        snapshot = measurements.snapshot()

        retire = oracle.verify(
            "REQ-1", claim(RequestType.RETIRE, actor_id="industry-1"), snapshot
        )
        transfer = oracle.verify("REQ-2", claim(RequestType.TRANSFER), snapshot)
        # plant-2 has production data only
        plant_2_retire = oracle.verify(
            "REQ-3", claim(RequestType.RETIRE, actor_id="plant-2", amount=10.0), snapshot
        )

        assert retire.verdict == Verdict.VERIFIED
        assert retire.measurement_reference.startswith("consumption:")
        assert transfer.verdict == Verdict.VERIFIED
        assert transfer.measurement_reference.startswith("delivery:")
        assert plant_2_retire.verdict == Verdict.ANOMALOUS

    def test_absolute_tolerance_floor(self, measurements: MeasurementStore):
        oracle = VerificationOracle(relative_tolerance=0.0, absolute_tolerance=2.0)
        snapshot = measurements.snapshot()

        assert oracle.verify("REQ-1", claim(amount=102.0), snapshot).verdict == Verdict.VERIFIED
        assert oracle.verify("REQ-1", claim(amount=102.5), snapshot).verdict == Verdict.ANOMALOUS

    def test_verdict_is_deterministic(
        self, oracle: VerificationOracle, measurements: MeasurementStore
    ):
        snapshot = measurements.snapshot()

        first = oracle.verify("REQ-1", claim(amount=103.0), snapshot)
        second = oracle.verify("REQ-1", claim(amount=103.0), snapshot)

        assert first == second

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValueError):
            VerificationOracle(relative_tolerance=-0.1)

    @pytest.mark.parametrize("amount", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_amount_is_unverified(
        self, oracle: VerificationOracle, measurements: MeasurementStore, amount: float
    ):
        result = oracle.verify("REQ-1", claim(amount=amount), measurements.snapshot())

        assert result.verdict == Verdict.UNVERIFIED
        assert result.measured_amount is None
