import datetime

import pytest

from hc_registry.core.models.base import MeasurementKind
from hc_registry.measurement.schemas import MeasurementReport
from hc_registry.measurement.services import MeasurementStore
from hc_registry.utils import parse_import_file

CSV_CONTENT = """actor_id,kind,interval_start,interval_end,quantity
plant-9,production,2024-03-01T00:00:00Z,2024-03-01T12:00:00Z,30.5
plant-9,production,2024-03-01T12:00:00Z,2024-03-02T00:00:00Z,19.5
plant-9,consumption,2024-03-01T00:00:00Z,2024-03-02T00:00:00Z,7
"""


class TestMeasurementStore:
    def test_aggregate_window(self, measurements: MeasurementStore):
        snapshot = measurements.snapshot()

        aggregate = snapshot.aggregate(
            "plant-1",
            MeasurementKind.PRODUCTION,
            datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
            datetime.datetime(2024, 1, 1, 12, tzinfo=datetime.timezone.utc),
        )

        assert aggregate.total == 50.0
        assert aggregate.row_count == 2
        assert aggregate.reference.startswith("production:plant-1:")
        assert aggregate.reference.endswith("n=2")

    def test_aggregate_treats_naive_datetimes_as_utc(self, measurements: MeasurementStore):
        aggregate = measurements.snapshot().aggregate(
            "plant-1",
            MeasurementKind.PRODUCTION,
            datetime.datetime(2024, 1, 1),
            datetime.datetime(2024, 1, 2),
        )

        assert aggregate.total == 100.0
        assert aggregate.row_count == 4

    def test_aggregate_filters_actor_and_kind(self, measurements: MeasurementStore):
        snapshot = measurements.snapshot()
        start = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
        end = datetime.datetime(2024, 1, 2, tzinfo=datetime.timezone.utc)

        assert snapshot.aggregate("plant-2", MeasurementKind.PRODUCTION, start, end).total == 40.0
        missing = snapshot.aggregate("plant-2", MeasurementKind.CONSUMPTION, start, end)
        assert missing.total == 0.0
        assert missing.row_count == 0

    def test_snapshot_is_isolated_from_later_reports(self, measurements: MeasurementStore):
        snapshot = measurements.snapshot()
        measurements.add_reports(
            [
                MeasurementReport(
                    actor_id="plant-1",
                    kind=MeasurementKind.PRODUCTION,
                    interval_start=datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc),
                    interval_end=datetime.datetime(2024, 1, 1, 1, tzinfo=datetime.timezone.utc),
                    quantity=10.0,
                )
            ]
        )
        start = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)
        end = datetime.datetime(2024, 1, 2, tzinfo=datetime.timezone.utc)

        assert snapshot.aggregate("plant-1", MeasurementKind.PRODUCTION, start, end).total == 100.0
        assert (
            measurements.snapshot().aggregate("plant-1", MeasurementKind.PRODUCTION, start, end).total
            == 110.0
        )

    def test_load_csv_content(self):
        store = MeasurementStore()

        loaded = store.load_content("readings.csv", CSV_CONTENT)

        assert loaded == 3
        aggregate = store.snapshot().aggregate(
            "plant-9",
            MeasurementKind.PRODUCTION,
            datetime.datetime(2024, 3, 1, tzinfo=datetime.timezone.utc),
            datetime.datetime(2024, 3, 2, tzinfo=datetime.timezone.utc),
        )
        assert aggregate.total == 50.0

    def test_load_rejects_missing_columns(self):
        store = MeasurementStore()

        with pytest.raises(ValueError, match="missing columns"):
            store.load_content("readings.json", '[{"actor_id": "plant-9", "quantity": 1}]')

    def test_load_rejects_unknown_kind(self):
        store = MeasurementStore()
        content = CSV_CONTENT.replace("consumption", "leakage")

        with pytest.raises(ValueError, match="Unknown measurement kinds"):
            store.load_content("readings.csv", content)
        assert len(store) == 0

    def test_report_interval_must_be_ordered(self):
        with pytest.raises(ValueError):
            MeasurementReport(
                actor_id="plant-1",
                kind=MeasurementKind.PRODUCTION,
                interval_start=datetime.datetime(2024, 1, 2),
                interval_end=datetime.datetime(2024, 1, 1),
                quantity=1.0,
            )


class TestParseImportFile:
    def test_json_array(self):
        df = parse_import_file(None, '[{"a": 1, "b": 2}, {"a": 3, "b": 4}]')
        assert list(df.columns) == ["a", "b"]
        assert len(df) == 2

    def test_json_object_of_arrays(self):
        df = parse_import_file("data.json", '{"a": [1, 2], "b": [3, 4]}')
        assert df["b"].tolist() == [3, 4]

    def test_csv_fallback(self):
        df = parse_import_file(None, "a,b\n1,2\n")
        assert df["a"].tolist() == [1]

    def test_empty_json_array(self):
        with pytest.raises(ValueError, match="empty array"):
            parse_import_file("data.json", "[]")
