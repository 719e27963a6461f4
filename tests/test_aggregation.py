import pytest

from aggregation import (
    aggregate_by,
    aggregate_clients,
    aggregate_employees,
    apply_date_preset,
    build_dashboard,
    filter_vocabulary,
    summarize,
    time_series,
)
from models import ReconciliationRow


def row(employee, client, service_date, care=None, hha=None, appts=None, units=None, notes=None):
    return ReconciliationRow(
        run_id="run-1",
        employee_name=employee,
        client_name=client,
        service_date=service_date,
        carecenta_hours=care,
        hha_hours=hha,
        confirmed_appts=appts,
        units=units,
        notes=notes,
    )


@pytest.fixture
def rows():
    return [
        row("Sam", "A", "2024-01-01", care=4, hha=5, appts=1, units=16),
        row("Sam", "A", "2024-01-02", care=3, hha=3, appts=1, units=12, notes="late visit"),
        row("Sam", "B", "2024-01-02", care=2),
        row("Pat", "A", "2024-01-01", hha=6, appts=2, units=24, notes="  "),
        row(None, "C", None, care=1, hha=1),
    ]


def test_summarize(rows):
    summary = summarize(rows)
    assert summary.total_carecenta_hours == 10
    assert summary.total_hha_hours == 15
    assert summary.variance_hours == 5
    assert summary.variance_percent == pytest.approx(50.0)
    assert summary.row_count == 5
    assert summary.confirmed_appts == 4


def test_summarize_empty():
    summary = summarize([])
    assert summary.row_count == 0
    assert summary.variance_percent is None


def test_time_series_skips_undated_rows(rows):
    series = time_series(rows)
    assert [(d.date, d.carecenta, d.hha) for d in series] == [
        ("2024-01-01", 4, 11),
        ("2024-01-02", 5, 3),
    ]


def test_employee_aggregate(rows):
    employees = aggregate_employees(rows)
    assert [e.employee for e in employees] == ["Pat", "Sam", "Unknown"]

    sam = employees[1]
    assert sam.clients == 2
    assert sam.confirmed_appts == 2
    assert sam.units == 28
    assert sam.carecenta_hours == 9
    assert sam.hha_hours == 8
    assert sam.diff == -1

    pat = employees[0]
    assert pat.clients == 1
    assert pat.diff == 6


def test_client_aggregate_counts_distinct_names(rows):
    clients = {c.client: c for c in aggregate_clients(rows)}
    assert clients["A"].employees == 2
    assert clients["A"].service_dates == 2
    assert clients["A"].notes_count == 1
    assert clients["A"].carecenta_hours == 7
    assert clients["A"].hha_hours == 14
    assert clients["B"].diff == -2
    assert clients["C"].employees == 0
    assert clients["C"].service_dates == 0
    assert [c.client for c in aggregate_clients(rows)] == ["A", "B", "C"]


def test_aggregate_by_defaults_blank_keys(rows):
    totals = aggregate_by(rows, lambda r: r.service_date)
    assert set(totals) == {"2024-01-01", "2024-01-02", "Unknown"}
    assert totals["Unknown"].care == 1
    assert totals["2024-01-01"].variance == 7


def test_filter_vocabulary(rows):
    vocab = filter_vocabulary(rows)
    assert vocab == {
        "clients": ["A", "B", "C"],
        "employees": ["Pat", "Sam"],
        "dateMin": "2024-01-01",
        "dateMax": "2024-01-02",
    }


def test_apply_date_preset():
    assert apply_date_preset("last30", "2024-03-31") == ("2024-03-01", "2024-03-31")
    assert apply_date_preset("last14", "2024-01-10") == ("2023-12-27", "2024-01-10")
    assert apply_date_preset("custom", "2024-03-31") == (None, None)
    assert apply_date_preset("last30", None) == (None, None)


def test_build_dashboard_shape(rows):
    dashboard = build_dashboard(rows)
    assert set(dashboard) == {"summary", "timeseries", "employees", "clients", "filters"}
    assert dashboard["summary"]["rowCount"] == 5
    assert dashboard["employees"][0] == {
        "employee": "Pat",
        "clients": 1,
        "confirmedAppts": 2,
        "units": 24.0,
        "carecentaHours": 0.0,
        "hhaHours": 6.0,
        "diff": 6.0,
    }


def test_distinct_counts_ignore_missing_names():
    combined = [
        row(None, "Acme", "2024-01-01", care=4.5, hha=5),
        row("", "Acme", "2024-01-01", care=2.5, hha=3),
        row("Sam", None, "2024-01-02", care=1),
    ]

    acme = {c.client: c for c in aggregate_clients(combined)}["Acme"]
    assert acme.employees == 0
    assert acme.carecenta_hours == 7

    sam = {e.employee: e for e in aggregate_employees(combined)}["Sam"]
    assert sam.clients == 0
