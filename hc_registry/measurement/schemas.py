import datetime

from pydantic import BaseModel, Field, model_validator

from hc_registry.core.models.base import MeasurementKind


class MeasurementReport(BaseModel):
    actor_id: str
    kind: MeasurementKind
    interval_start: datetime.datetime
    interval_end: datetime.datetime
    quantity: float = Field(
        ge=0,
        description="Hydrogen produced, delivered or consumed in kg over the interval.",
    )

    @model_validator(mode="after")
    def check_interval(self) -> "MeasurementReport":
        if self.interval_end <= self.interval_start:
            raise ValueError("interval_end must be after interval_start")
        return self


class MeasurementAggregate(BaseModel):
    actor_id: str
    kind: MeasurementKind
    window_start: datetime.datetime
    window_end: datetime.datetime
    total: float
    row_count: int

    @property
    def reference(self) -> str:
        return (
            f"{self.kind.value}:{self.actor_id}:"
            f"{self.window_start.isoformat()}/{self.window_end.isoformat()}:"
            f"n={self.row_count}"
        )
