"""Result models returned by the trigger interface and scheduler ticks."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class IngestionResult(BaseModel):
    """Outcome of one ingestion run for one shop."""

    tenant_id: str
    shop_id: int
    window_start: datetime
    window_end: datetime
    listed: int = 0
    fetched: int = 0
    stored: int = 0
    failed_batches: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)


class NormalizationResult(BaseModel):
    """Outcome of one normalization run for one tenant."""

    tenant_id: str
    selected: int = 0
    normalized: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = Field(default_factory=list)


RunStatus = Literal["succeeded", "partial", "failed", "skipped", "cancelled"]


class ShopRunReport(BaseModel):
    """Status of one unit of work (a shop or a tenant) inside a run."""

    tenant_id: str
    shop_id: int | None = None
    status: RunStatus
    ingestion: IngestionResult | None = None
    normalization: NormalizationResult | None = None
    error: dict[str, Any] | None = None


class RunReport(BaseModel):
    """Aggregated counts and per-unit outcomes of a trigger or tick."""

    kind: Literal["ingestion", "normalization"]
    started_at: datetime
    finished_at: datetime | None = None
    fetched: int = 0
    stored: int = 0
    normalized: int = 0
    failed: int = 0
    units: list[ShopRunReport] = Field(default_factory=list)

    def add(self, unit: ShopRunReport) -> None:
        self.units.append(unit)
        if unit.ingestion is not None:
            self.fetched += unit.ingestion.fetched
            self.stored += unit.ingestion.stored
            self.failed += unit.ingestion.failed_batches
        if unit.normalization is not None:
            self.normalized += unit.normalization.normalized
            self.failed += unit.normalization.failed
        if unit.status == "failed":
            self.failed += 1

    @property
    def errors(self) -> list[dict[str, Any]]:
        summaries: list[dict[str, Any]] = []
        for unit in self.units:
            scope = {"tenant_id": unit.tenant_id, "shop_id": unit.shop_id}
            if unit.error:
                summaries.append({**scope, **unit.error})
            for result in (unit.ingestion, unit.normalization):
                if result is not None:
                    summaries.extend({**scope, **error} for error in result.errors)
        return summaries
