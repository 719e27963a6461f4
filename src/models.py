"""Data models for the hours reconciliation service."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum


class SourceMode(Enum):
    """How the timekeeping exports were supplied for a run."""
    COMBINED = "combined"
    DUAL = "dual"


class DiffStatus(Enum):
    """Classification of a key when comparing two runs."""
    ADDED = "added"
    REMOVED = "removed"
    CHANGED = "changed"
    UNCHANGED = "unchanged"


@dataclass
class RawReconciliationRecord:
    """One normalized record produced by a sheet extractor."""
    client_name: str
    employee_name: str
    service_date: str
    carecenta_hours: Optional[float] = None
    hha_hours: Optional[float] = None
    confirmed_appts: Optional[int] = None
    units: Optional[float] = None
    # Original row data kept for audit
    raw: Any = None


@dataclass
class RejectedRow:
    """A source row that was dropped, and why."""
    source: str
    raw_index: Optional[int]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"source": self.source, "rawIndex": self.raw_index, "reason": self.reason}


@dataclass
class ExtractionResult:
    """Accepted records plus the rows an extractor rejected."""
    records: List[RawReconciliationRecord] = field(default_factory=list)
    rejected: List[RejectedRow] = field(default_factory=list)


@dataclass
class ReconciliationRun:
    """Header for one ingestion event."""
    id: str
    period_start: str
    period_end: str
    source_mode: str
    total_carecenta_hours: float = 0.0
    total_hha_hours: float = 0.0
    variance_hours: float = 0.0
    variance_percent: Optional[float] = None
    total_hours: float = 0.0
    label: Optional[str] = None
    created_at: Any = None

    def to_dict(self) -> Dict[str, Any]:
        created = self.created_at.isoformat() if hasattr(self.created_at, "isoformat") else self.created_at
        return {
            "id": self.id,
            "created_at": created,
            "label": self.label,
            "period_start": self.period_start,
            "period_end": self.period_end,
            "source_mode": self.source_mode,
            "total_hours": self.total_hours,
            "total_carecenta_hours": self.total_carecenta_hours,
            "total_hha_hours": self.total_hha_hours,
            "variance_hours": self.variance_hours,
            "variance_percent": self.variance_percent,
        }


@dataclass
class ReconciliationRow:
    """Detail row belonging to a run."""
    run_id: str
    client_name: Optional[str] = None
    employee_name: Optional[str] = None
    service_date: Optional[str] = None
    carecenta_hours: Optional[float] = None
    hha_hours: Optional[float] = None
    variance_hours: Optional[float] = None
    confirmed_appts: Optional[int] = None
    units: Optional[float] = None
    notes: Optional[str] = None
    raw_payload: Any = None
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "run_id": self.run_id,
            "client_name": self.client_name,
            "employee_name": self.employee_name,
            "service_date": self.service_date,
            "carecenta_hours": self.carecenta_hours,
            "hha_hours": self.hha_hours,
            "variance_hours": self.variance_hours,
            "confirmed_appts": self.confirmed_appts,
            "units": self.units,
            "notes": self.notes,
        }


@dataclass
class RowFilter:
    """Filters for selecting reconciliation rows. None means unfiltered."""
    run_id: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    client: Optional[str] = None
    employee: Optional[str] = None


@dataclass
class RunSummary:
    """Totals for a set of reconciliation rows or records."""
    total_carecenta_hours: float = 0.0
    total_hha_hours: float = 0.0
    variance_hours: float = 0.0
    variance_percent: Optional[float] = None
    row_count: int = 0
    confirmed_appts: int = 0

    @property
    def total_hours(self) -> float:
        """HHAeX total when present, otherwise the CareCenta total."""
        return self.total_hha_hours or self.total_carecenta_hours

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalCarecentaHours": self.total_carecenta_hours,
            "totalHhaHours": self.total_hha_hours,
            "varianceHours": self.variance_hours,
            "variancePercent": self.variance_percent,
            "rowCount": self.row_count,
            "confirmedAppts": self.confirmed_appts,
        }


@dataclass
class IngestionResult:
    """Outcome of a successful ingestion."""
    run_id: str
    summary: RunSummary
    rejected: List[RejectedRow] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        summary = self.summary.to_dict()
        summary.pop("confirmedAppts")
        return {
            "runId": self.run_id,
            "summary": summary,
            "rejected": [r.to_dict() for r in self.rejected],
        }


@dataclass
class DailyTotal:
    """Hours for one service date."""
    date: str
    carecenta: float = 0.0
    hha: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"date": self.date, "carecenta": self.carecenta, "hha": self.hha}


@dataclass
class EmployeeAggregate:
    """Per-employee totals with the distinct clients they served."""
    employee: str
    clients: int = 0
    confirmed_appts: int = 0
    units: float = 0.0
    carecenta_hours: float = 0.0
    hha_hours: float = 0.0

    @property
    def diff(self) -> float:
        return self.hha_hours - self.carecenta_hours

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee": self.employee,
            "clients": self.clients,
            "confirmedAppts": self.confirmed_appts,
            "units": self.units,
            "carecentaHours": self.carecenta_hours,
            "hhaHours": self.hha_hours,
            "diff": self.diff,
        }


@dataclass
class ClientAggregate:
    """Per-client totals with the distinct employees who served them."""
    client: str
    employees: int = 0
    service_dates: int = 0
    notes_count: int = 0
    confirmed_appts: int = 0
    units: float = 0.0
    carecenta_hours: float = 0.0
    hha_hours: float = 0.0

    @property
    def diff(self) -> float:
        return self.hha_hours - self.carecenta_hours

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client": self.client,
            "employees": self.employees,
            "serviceDates": self.service_dates,
            "notesCount": self.notes_count,
            "confirmedAppts": self.confirmed_appts,
            "units": self.units,
            "carecentaHours": self.carecenta_hours,
            "hhaHours": self.hha_hours,
            "diff": self.diff,
        }


@dataclass
class GroupTotals:
    """Hours summed under one grouping key."""
    key: str
    care: float = 0.0
    hha: float = 0.0

    @property
    def variance(self) -> float:
        return self.hha - self.care

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "care": self.care, "hha": self.hha, "variance": self.variance}


@dataclass
class DiffEntry:
    """One key in a run-to-run comparison."""
    key: str
    status: DiffStatus
    delta: GroupTotals
    a: Optional[GroupTotals] = None
    b: Optional[GroupTotals] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "status": self.status.value,
            "a": self.a.to_dict() if self.a else None,
            "b": self.b.to_dict() if self.b else None,
            "delta": self.delta.to_dict(),
        }
