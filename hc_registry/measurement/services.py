"""
Measurement Store

Read-only view over measurement aggregates reported by the IoT layer. The
verification oracle never reads the live store, only immutable snapshots.
"""

import datetime
from pathlib import Path
from typing import Iterable

import pandas as pd

from hc_registry.core.models.base import MeasurementKind
from hc_registry.logging_config import logger
from hc_registry.measurement.schemas import MeasurementAggregate, MeasurementReport
from hc_registry.utils import ensure_utc, parse_import_file

MEASUREMENT_COLUMNS = ["actor_id", "kind", "interval_start", "interval_end", "quantity"]


def normalise_measurement_frame(df: pd.DataFrame) -> pd.DataFrame:
    """Validate columns and coerce types of a raw measurement DataFrame."""
    missing = [column for column in MEASUREMENT_COLUMNS if column not in df.columns]
    if missing:
        raise ValueError(f"Measurement data is missing columns: {missing}")

    df = df[MEASUREMENT_COLUMNS].copy()
    df["actor_id"] = df["actor_id"].astype(str)
    df["kind"] = df["kind"].astype(str)
    unknown_kinds = set(df["kind"]) - set(MeasurementKind.values())
    if unknown_kinds:
        raise ValueError(f"Unknown measurement kinds: {sorted(unknown_kinds)}")

    df["interval_start"] = pd.to_datetime(df["interval_start"], utc=True)
    df["interval_end"] = pd.to_datetime(df["interval_end"], utc=True)
    df["quantity"] = df["quantity"].astype(float)

    if (df["quantity"] < 0).any():
        raise ValueError("Measurement quantities must be non-negative")
    if (df["interval_end"] <= df["interval_start"]).any():
        raise ValueError("Measurement intervals must end after they start")

    return df


class MeasurementSnapshot:
    """Immutable copy of the measurement data at a point in time"""

    def __init__(self, df: pd.DataFrame):
        self._df = df.copy()

    def __len__(self) -> int:
        return len(self._df)

    def aggregate(
        self,
        actor_id: str,
        kind: MeasurementKind,
        window_start: datetime.datetime,
        window_end: datetime.datetime,
    ) -> MeasurementAggregate:
        """
        Sum the measured quantity of intervals lying inside a window.

        Args:
            actor_id: The measured actor
            kind: Production, delivery or consumption
            window_start: Inclusive window start
            window_end: Inclusive window end

        Returns:
            MeasurementAggregate with the total and number of intervals
        """
        start = ensure_utc(window_start)
        end = ensure_utc(window_end)

        df = self._df
        mask = (
            (df["actor_id"] == actor_id)
            & (df["kind"] == kind.value)
            & (df["interval_start"] >= pd.Timestamp(start))
            & (df["interval_end"] <= pd.Timestamp(end))
        )
        rows = df.loc[mask, "quantity"]

        return MeasurementAggregate(
            actor_id=actor_id,
            kind=kind,
            window_start=start,
            window_end=end,
            total=float(rows.sum()),
            row_count=int(rows.count()),
        )


class MeasurementStore:
    """Accumulates measurement reports and hands out snapshots"""

    def __init__(self):
        self._df = pd.DataFrame(columns=MEASUREMENT_COLUMNS)

    def __len__(self) -> int:
        return len(self._df)

    def add_reports(self, reports: Iterable[MeasurementReport]) -> int:
        rows = [report.model_dump(mode="json") for report in reports]
        if not rows:
            return 0
        return self._append(pd.DataFrame(rows))

    def load_content(self, filename: str | None, content: str) -> int:
        """Load measurement rows from CSV or JSON content"""
        return self._append(parse_import_file(filename, content))

    def load_file(self, file_path: str | Path) -> int:
        path = Path(file_path)
        return self.load_content(path.name, path.read_text(encoding="utf-8"))

    def snapshot(self) -> MeasurementSnapshot:
        return MeasurementSnapshot(self._df)

    def _append(self, raw: pd.DataFrame) -> int:
        df = normalise_measurement_frame(raw)
        if self._df.empty:
            self._df = df.reset_index(drop=True)
        else:
            self._df = pd.concat([self._df, df], ignore_index=True)
        logger.info(f"Loaded {len(df)} measurement rows ({len(self._df)} total)")
        return len(df)
