"""Aggregations over reconciliation rows for the reporting dashboard."""

from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from models import (
    ClientAggregate,
    DailyTotal,
    EmployeeAggregate,
    GroupTotals,
    ReconciliationRow,
    RunSummary,
)


UNKNOWN = "Unknown"

DATE_PRESETS = {
    "last14": 14,
    "last30": 30,
    "last60": 60,
    "last90": 90,
}


def _num(value) -> float:
    return float(value) if value is not None else 0.0


def _label(value: Optional[str]) -> str:
    return (value or "").strip() or UNKNOWN


def summarize(rows: Sequence[ReconciliationRow]) -> RunSummary:
    """
    Total hours, variance and appointments across rows.

    Returns:
        RunSummary; variance_percent is None when CareCenta hours are zero
    """
    care = 0.0
    hha = 0.0
    appts = 0
    for row in rows:
        care += _num(row.carecenta_hours)
        hha += _num(row.hha_hours)
        appts += int(row.confirmed_appts or 0)

    variance = hha - care
    return RunSummary(
        total_carecenta_hours=care,
        total_hha_hours=hha,
        variance_hours=variance,
        variance_percent=(variance / care * 100) if care > 0 else None,
        row_count=len(rows),
        confirmed_appts=appts,
    )


def time_series(rows: Iterable[ReconciliationRow]) -> List[DailyTotal]:
    """Daily CareCenta/HHAeX totals, ascending by date. Undated rows are skipped."""
    buckets: Dict[str, DailyTotal] = {}
    for row in rows:
        if not row.service_date:
            continue
        bucket = buckets.setdefault(row.service_date, DailyTotal(date=row.service_date))
        bucket.carecenta += _num(row.carecenta_hours)
        bucket.hha += _num(row.hha_hours)
    return [buckets[key] for key in sorted(buckets)]


def _by_abs_diff(items):
    return sorted(items, key=lambda item: abs(item.diff), reverse=True)


def aggregate_employees(rows: Iterable[ReconciliationRow]) -> List[EmployeeAggregate]:
    """
    Per-employee totals with distinct client counts.

    Returns:
        EmployeeAggregate list, largest absolute variance first
    """
    aggregates: Dict[str, EmployeeAggregate] = {}
    clients: Dict[str, Set[str]] = {}

    for row in rows:
        employee = _label(row.employee_name)
        entry = aggregates.setdefault(employee, EmployeeAggregate(employee=employee))
        names = clients.setdefault(employee, set())
        if row.client_name and row.client_name.strip():
            names.add(row.client_name)
        entry.confirmed_appts += int(row.confirmed_appts or 0)
        entry.units += _num(row.units)
        entry.carecenta_hours += _num(row.carecenta_hours)
        entry.hha_hours += _num(row.hha_hours)

    for employee, entry in aggregates.items():
        entry.clients = len(clients[employee])
    return _by_abs_diff(aggregates.values())


def aggregate_clients(rows: Iterable[ReconciliationRow]) -> List[ClientAggregate]:
    """
    Per-client totals with distinct employee and service-date counts.

    Returns:
        ClientAggregate list, largest absolute variance first
    """
    aggregates: Dict[str, ClientAggregate] = {}
    employees: Dict[str, Set[str]] = {}
    dates: Dict[str, Set[str]] = {}

    for row in rows:
        client = _label(row.client_name)
        entry = aggregates.setdefault(client, ClientAggregate(client=client))
        names = employees.setdefault(client, set())
        if row.employee_name and row.employee_name.strip():
            names.add(row.employee_name)
        if row.service_date:
            dates.setdefault(client, set()).add(row.service_date)
        if row.notes and row.notes.strip():
            entry.notes_count += 1
        entry.confirmed_appts += int(row.confirmed_appts or 0)
        entry.units += _num(row.units)
        entry.carecenta_hours += _num(row.carecenta_hours)
        entry.hha_hours += _num(row.hha_hours)

    for client, entry in aggregates.items():
        entry.employees = len(employees[client])
        entry.service_dates = len(dates.get(client, ()))
    return _by_abs_diff(aggregates.values())


KEY_SELECTORS: Dict[str, Callable[[ReconciliationRow], Optional[str]]] = {
    "client": lambda row: row.client_name,
    "employee": lambda row: row.employee_name,
    "date": lambda row: row.service_date,
}


def aggregate_by(
    rows: Iterable[ReconciliationRow],
    key_selector: Callable[[ReconciliationRow], Optional[str]],
) -> Dict[str, GroupTotals]:
    """
    Sum CareCenta and HHAeX hours under a grouping key.

    Args:
        rows: Rows to aggregate
        key_selector: Returns the grouping key; blank keys become "Unknown"

    Returns:
        Mapping of key -> GroupTotals
    """
    totals: Dict[str, GroupTotals] = {}
    for row in rows:
        key = _label(key_selector(row))
        group = totals.setdefault(key, GroupTotals(key=key))
        group.care += _num(row.carecenta_hours)
        group.hha += _num(row.hha_hours)
    return totals


def filter_vocabulary(rows: Iterable[ReconciliationRow]) -> Dict[str, Any]:
    """Distinct clients/employees and the date bounds, for filter controls."""
    clients: Set[str] = set()
    employees: Set[str] = set()
    dates: List[str] = []
    for row in rows:
        if row.client_name and row.client_name.strip():
            clients.add(row.client_name)
        if row.employee_name and row.employee_name.strip():
            employees.add(row.employee_name)
        if row.service_date:
            dates.append(row.service_date)
    return {
        "clients": sorted(clients),
        "employees": sorted(employees),
        "dateMin": min(dates) if dates else None,
        "dateMax": max(dates) if dates else None,
    }


def apply_date_preset(preset: Optional[str], max_date: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Resolve a "last N days" preset against the latest service date.

    Args:
        preset: 'last14', 'last30', 'last60', 'last90' or 'custom'
        max_date: Latest service date in scope (YYYY-MM-DD)

    Returns:
        (start, end) ISO dates, or (None, None) for custom/unknown presets
    """
    days = DATE_PRESETS.get(preset or "")
    if days is None or not max_date:
        return None, None
    end = date.fromisoformat(max_date)
    return (end - timedelta(days=days)).isoformat(), end.isoformat()


def build_dashboard(
    rows: Sequence[ReconciliationRow],
    vocabulary_rows: Optional[Sequence[ReconciliationRow]] = None,
) -> Dict[str, Any]:
    """
    Bundle summary, time series, aggregates and filter vocabulary.

    Args:
        rows: Filtered rows to aggregate
        vocabulary_rows: Rows used for the filter vocabulary (default: rows)

    Returns:
        JSON-ready dict
    """
    summary = summarize(rows)
    return {
        "summary": summary.to_dict(),
        "timeseries": [day.to_dict() for day in time_series(rows)],
        "employees": [entry.to_dict() for entry in aggregate_employees(rows)],
        "clients": [entry.to_dict() for entry in aggregate_clients(rows)],
        "filters": filter_vocabulary(rows if vocabulary_rows is None else vocabulary_rows),
    }
