import csv
import io
import os

import pytest

from conftest import COMBINED_CSV


CARE_CSV = (
    "Client,Employee,Service Date,Hours,# of Appts\n"
    "Acme,Sam,2024-01-01,4,1\n"
    "Acme,Pat,2024-01-02,3,1\n"
    "Beta,Sam,2024-01-03,2,1\n"
)

HHA_CSV = (
    "Client,Employee,Service Date,Hours\n"
    "Acme,Sam,2024-01-01,5\n"
    "Acme,Pat,2024-01-02,3\n"
    "Beta,Sam,2024-01-03,1\n"
)


def upload(client, **fields):
    data = {"period_start": "2024-01-01", "period_end": "2024-01-31"}
    for name, value in fields.items():
        if name.endswith("_file"):
            data[name] = (io.BytesIO(value.encode("utf-8")), f"{name}.csv")
        else:
            data[name] = value
    return client.post("/api/reconciliation/ingest", data=data, content_type="multipart/form-data")


def ingest_dual(client, care=CARE_CSV, hha=HHA_CSV):
    resp = upload(client, mode="dual", carecenta_file=care, hha_file=hha)
    assert resp.status_code == 200, resp.get_json()
    return resp.get_json()["runId"]


def test_ingest_combined(client):
    resp = upload(client, combined_file=COMBINED_CSV)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["runId"]
    assert body["summary"] == {
        "totalCarecentaHours": pytest.approx(7.0),
        "totalHhaHours": pytest.approx(8.0),
        "varianceHours": pytest.approx(1.0),
        "variancePercent": pytest.approx(14.2857, rel=1e-4),
        "rowCount": 2,
    }
    assert isinstance(body["rejected"], list)


def test_ingest_requires_period(client):
    resp = client.post(
        "/api/reconciliation/ingest",
        data={"combined_file": (io.BytesIO(COMBINED_CSV.encode()), "c.csv")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "period_start and period_end are required"}


def test_ingest_dual_requires_both_files(client):
    resp = upload(client, mode="dual", hha_file=HHA_CSV)
    assert resp.status_code == 400
    assert "carecenta_file" in resp.get_json()["error"]


def test_ingest_without_usable_rows(client):
    resp = upload(client, combined_file="Name,Hours\nAcme,5\n")
    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("No usable rows found")


def test_ingest_unreadable_workbook(client):
    resp = client.post(
        "/api/reconciliation/ingest",
        data={
            "period_start": "2024-01-01",
            "period_end": "2024-01-31",
            "combined_file": (io.BytesIO(b"PK\x03\x04garbage"), "combined.xlsx"),
        },
        content_type="multipart/form-data",
    )
    assert resp.status_code == 500
    assert "error" in resp.get_json()


def test_runs_listing_and_delete(client):
    run_id = ingest_dual(client)
    runs = client.get("/api/reconciliation/runs").get_json()["runs"]
    assert [r["id"] for r in runs] == [run_id]
    assert runs[0]["source_mode"] == "dual"
    assert runs[0]["total_carecenta_hours"] == 9

    assert client.delete(f"/api/reconciliation/run?id={run_id}").get_json() == {"ok": True}
    assert client.get("/api/reconciliation/runs").get_json()["runs"] == []
    assert client.delete(f"/api/reconciliation/run?id={run_id}").status_code == 404
    assert client.delete("/api/reconciliation/run").status_code == 400


def test_summary_with_filters(client):
    run_id = ingest_dual(client)

    body = client.get(f"/api/reconciliation/summary?run_id={run_id}&client=all").get_json()
    assert body["summary"]["rowCount"] == 3
    assert body["summary"]["totalHhaHours"] == 9
    assert [d["date"] for d in body["timeseries"]] == ["2024-01-01", "2024-01-02", "2024-01-03"]
    assert body["filters"]["clients"] == ["Acme", "Beta"]
    assert body["filters"]["employees"] == ["Pat", "Sam"]
    assert body["filters"]["dateMax"] == "2024-01-03"

    body = client.get(
        f"/api/reconciliation/summary?run_id={run_id}&employee=Sam&from=2024-01-02"
    ).get_json()
    assert body["summary"]["rowCount"] == 1
    assert body["clients"][0]["client"] == "Beta"
    assert body["filters"]["clients"] == ["Acme", "Beta"]


def test_summary_date_preset(client):
    run_id = ingest_dual(client)
    body = client.get(f"/api/reconciliation/summary?run_id={run_id}&preset=last14").get_json()
    assert body["summary"]["rowCount"] == 3


def test_summary_empty_store(client):
    body = client.get("/api/reconciliation/summary").get_json()
    assert body["summary"]["rowCount"] == 0
    assert body["timeseries"] == []
    assert body["filters"]["dateMin"] is None


def test_compare_runs(client):
    run_a = ingest_dual(client)
    run_b = ingest_dual(client, hha=HHA_CSV + "Gamma,Lee,2024-01-04,2\n")

    body = client.get(f"/api/reconciliation/compare?run_a={run_a}&run_b={run_b}").get_json()
    assert body["runA"]["id"] == run_a
    assert body["runB"]["id"] == run_b
    clients = body["diffs"]["client"]
    assert clients[0] == {
        "key": "Gamma",
        "status": "added",
        "a": None,
        "b": {"key": "Gamma", "care": 0.0, "hha": 2.0, "variance": 2.0},
        "delta": {"key": "Gamma", "care": 0.0, "hha": 2.0, "variance": 2.0},
    }
    assert {c["status"] for c in clients[1:]} == {"unchanged"}


def test_compare_requires_known_runs(client):
    run_a = ingest_dual(client)
    assert client.get(f"/api/reconciliation/compare?run_a={run_a}").status_code == 400
    assert client.get(f"/api/reconciliation/compare?run_a={run_a}&run_b=nope").status_code == 404


def test_update_notes(client, store):
    run_id = ingest_dual(client)
    row_id = store.query_rows()[0].id

    resp = client.patch(f"/api/reconciliation/rows/{row_id}", json={"notes": " Missed clock-out "})
    assert resp.status_code == 200
    assert resp.get_json()["row"]["notes"] == "Missed clock-out"

    body = client.get(f"/api/reconciliation/summary?run_id={run_id}").get_json()
    assert sum(c["notesCount"] for c in body["clients"]) == 1

    assert client.patch(f"/api/reconciliation/rows/{row_id}", json={}).status_code == 400
    assert client.patch("/api/reconciliation/rows/987654", json={"notes": "x"}).status_code == 404


def test_export_csv(client):
    run_id = ingest_dual(client)
    resp = client.get(f"/api/reconciliation/export?run_id={run_id}&client=Acme")
    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"

    rows = list(csv.DictReader(io.StringIO(resp.get_data(as_text=True))))
    resp.close()
    assert [r["employee"] for r in rows] == ["Sam", "Pat"]
    assert rows[0]["variance_hours"] == "1.0"


def test_export_without_rows(client):
    assert client.get("/api/reconciliation/export").status_code == 404


def test_export_leaves_no_files_behind(client, app):
    run_id = ingest_dual(client)
    for _ in range(3):
        resp = client.get(f"/api/reconciliation/export?run_id={run_id}")
        assert resp.status_code == 200
        resp.close()
    assert client.get("/api/reconciliation/export?client=Nobody").status_code == 404

    assert os.listdir(app.config["EXPORT_FOLDER"]) == []


def test_ingest_empty_dual_files_is_no_data(client):
    resp = upload(client, mode="dual", carecenta_file="", hha_file="")
    assert resp.status_code == 400
    assert resp.get_json()["error"].startswith("No usable rows found")
