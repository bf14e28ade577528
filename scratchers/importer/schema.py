"""Internal data contracts for CSV import."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ParsedRow(BaseModel):
    """
    Canonical shape of one admitted CSV row, used across parse -> reconcile.
    """

    # Required fields
    game_number: str = Field(min_length=1)
    game_name: str = Field(min_length=1)
    state: str = Field(min_length=1)

    price: float = Field(default=0.0, ge=0)
    top_prize: float = Field(default=0.0, ge=0)
    top_prizes_remaining: int = Field(default=0, ge=0)
    total_top_prizes: int = Field(default=0, ge=0)

    # Optional fields
    overall_odds: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    image_url: Optional[str] = None
    source: Optional[str] = None
    source_url: Optional[str] = None

    # 1-based line in the source file (header is line 1); not persisted.
    line_number: int = 0

    @property
    def label(self) -> str:
        return f"{self.game_name} ({self.game_number})"


PARSED_ROW_FIELDS: frozenset[str] = frozenset(
    name for name in ParsedRow.model_fields if name != "line_number"
)


ImportStatus = Literal["success", "partial", "failed"]


@dataclass
class RowFailure:
    row: int
    error: str


@dataclass
class ImportDetails:
    inserted: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    failed: list[RowFailure] = field(default_factory=list)


@dataclass
class RowOutcome:
    """Result of reconciling a single row: exactly one of inserted/updated/failed."""

    action: Literal["inserted", "updated", "failed"]
    row: int
    label: str = ""
    error: str | None = None


@dataclass
class ImportResult:
    status: ImportStatus = "success"
    records_processed: int = 0
    records_inserted: int = 0
    records_updated: int = 0
    records_failed: int = 0
    error_message: str | None = None
    details: ImportDetails = field(default_factory=ImportDetails)
    total_rows: int = 0
    processed_up_to: int = 0
    has_more: bool = False
    next_offset: int | None = None

    def record(self, outcome: RowOutcome) -> None:
        if outcome.action == "inserted":
            self.records_inserted += 1
            self.details.inserted.append(outcome.label)
        elif outcome.action == "updated":
            self.records_updated += 1
            self.details.updated.append(outcome.label)
        else:
            self.records_failed += 1
            self.details.failed.append(RowFailure(row=outcome.row, error=outcome.error or ""))

    def finalize(self) -> None:
        if self.records_processed == 0:
            self.status = "failed"
            self.error_message = "No valid rows to import"
        elif self.records_failed == self.records_processed:
            self.status = "failed"
            self.error_message = "All records failed to import"
        elif self.records_failed > 0:
            self.status = "partial"
            self.error_message = f"{self.records_failed} records failed"
        else:
            self.status = "success"
            self.error_message = None

    @property
    def has_writes(self) -> bool:
        return self.records_inserted > 0 or self.records_updated > 0

    def to_dict(self) -> dict:
        return asdict(self)
