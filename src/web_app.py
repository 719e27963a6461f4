import io
import os
import uuid
from typing import Any, Dict, Optional

import structlog
from flask import Flask, current_app, jsonify, request, send_file
from werkzeug.datastructures import FileStorage
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from aggregation import apply_date_preset, build_dashboard, filter_vocabulary
from comparison import compare_all
from config import Config, configure_logging
from errors import NotFoundError, ReconciliationError, ValidationError
from exporter import Exporter
from ingestion import IngestionService
from models import RowFilter
from record_store import ReconStore
from sheet_extractors import SheetSource


logger = structlog.get_logger(__name__)


def create_app(config: Optional[Dict[str, Any]] = None, store: Optional[ReconStore] = None) -> Flask:
    """
    Build the reconciliation API.

    Args:
        config: Settings overriding Config
        store: Record store to use (default: DuckDB at DATABASE_PATH)
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if config:
        app.config.update(config)

    configure_logging(app.config["LOG_LEVEL"], app.config["LOG_JSON"])

    if store is None:
        store = ReconStore(app.config["DATABASE_PATH"])
    app.extensions["recon_store"] = store
    app.extensions["recon_ingestion"] = IngestionService(store, dual_join=app.config["DUAL_JOIN"])

    _register_error_handlers(app)
    _register_routes(app)
    return app


def get_store() -> ReconStore:
    return current_app.extensions["recon_store"]


def _upload(field: str) -> Optional[SheetSource]:
    """Uploaded file for a form field, or None when absent/empty."""
    file: Optional[FileStorage] = request.files.get(field)
    if file is None or file.filename == "":
        return None
    return SheetSource(data=file.read(), filename=file.filename)


def _choice(name: str) -> Optional[str]:
    """Query parameter where '' and 'all' mean no filter."""
    value = request.args.get(name)
    if not value or value == "all":
        return None
    return value


def _row_filter() -> RowFilter:
    """
    Build the row filter from query parameters.

    A date preset is resolved against the latest service date within the
    run/client/employee scope when no explicit bounds are given.
    """
    row_filter = RowFilter(
        run_id=_choice("run_id"),
        date_from=_choice("from"),
        date_to=_choice("to"),
        client=_choice("client"),
        employee=_choice("employee"),
    )
    preset = request.args.get("preset")
    if preset and preset != "custom" and not (row_filter.date_from or row_filter.date_to):
        scoped = get_store().query_rows(RowFilter(
            run_id=row_filter.run_id,
            client=row_filter.client,
            employee=row_filter.employee,
        ))
        row_filter.date_from, row_filter.date_to = apply_date_preset(
            preset, filter_vocabulary(scoped)["dateMax"]
        )
    return row_filter


def _register_error_handlers(app: Flask):
    @app.errorhandler(ReconciliationError)
    def handle_reconciliation_error(e: ReconciliationError):
        if e.status_code >= 500:
            logger.error("request.failed", path=request.path, error=e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(e):
        return jsonify({"error": "Uploaded file is too large"}), 413

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        if isinstance(e, HTTPException):
            return jsonify({"error": e.description}), e.code
        logger.exception("request.unexpected_error", path=request.path)
        return jsonify({"error": "Unexpected server error"}), 500


def _register_routes(app: Flask):

    # ==========================================
    # INGESTION
    # ==========================================

    @app.route("/api/reconciliation/ingest", methods=["POST"])
    def ingest():
        service: IngestionService = current_app.extensions["recon_ingestion"]
        result = service.ingest(
            mode=request.form.get("mode") or "combined",
            period_start=request.form.get("period_start"),
            period_end=request.form.get("period_end"),
            combined_file=_upload("combined_file"),
            carecenta_file=_upload("carecenta_file"),
            hha_file=_upload("hha_file"),
            label=request.form.get("label"),
        )
        return jsonify(result.to_dict())

    # ==========================================
    # RUNS
    # ==========================================

    @app.route("/api/reconciliation/runs")
    def list_runs():
        return jsonify({"runs": [run.to_dict() for run in get_store().list_runs()]})

    @app.route("/api/reconciliation/run", methods=["DELETE"])
    def delete_run():
        run_id = request.args.get("id")
        if not run_id:
            raise ValidationError("Missing id query parameter")
        get_store().delete_run(run_id)
        return jsonify({"ok": True})

    @app.route("/api/reconciliation/rows/<int:row_id>", methods=["PATCH"])
    def update_row(row_id: int):
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict) or "notes" not in payload:
            raise ValidationError("Request body must be JSON with a 'notes' field")
        notes = payload["notes"]
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("notes must be a string or null")
        row = get_store().update_row_notes(row_id, (notes.strip() or None) if notes else None)
        return jsonify({"row": row.to_dict()})

    # ==========================================
    # REPORTING
    # ==========================================

    @app.route("/api/reconciliation/summary")
    def summary():
        store = get_store()
        row_filter = _row_filter()
        rows = store.query_rows(row_filter)
        scope = store.query_rows(RowFilter(run_id=row_filter.run_id))
        return jsonify(build_dashboard(rows, vocabulary_rows=scope))

    @app.route("/api/reconciliation/compare")
    def compare():
        run_a = request.args.get("run_a")
        run_b = request.args.get("run_b")
        if not run_a or not run_b:
            raise ValidationError("run_a and run_b query parameters are required")
        store = get_store()
        meta_a = store.get_run(run_a)
        meta_b = store.get_run(run_b)
        result = compare_all(
            store.query_rows(RowFilter(run_id=run_a)),
            store.query_rows(RowFilter(run_id=run_b)),
        )
        result["runA"] = meta_a.to_dict()
        result["runB"] = meta_b.to_dict()
        return jsonify(result)

    @app.route("/api/reconciliation/export")
    def export_rows():
        row_filter = _row_filter()
        if row_filter.run_id:
            get_store().get_run(row_filter.run_id)
        path, count = Exporter(get_store()).export_rows(
            row_filter,
            current_app.config["EXPORT_FOLDER"],
            file_name=f"export-{uuid.uuid4().hex}.csv",
        )
        try:
            with open(path, "rb") as f:
                data = f.read()
        finally:
            os.remove(path)
        if count == 0:
            raise NotFoundError("No reconciliation rows match the selected filters")
        return send_file(
            io.BytesIO(data),
            as_attachment=True,
            download_name=Exporter.FILE_NAME,
            mimetype="text/csv",
        )


if __name__ == "__main__":
    create_app().run(debug=True)
