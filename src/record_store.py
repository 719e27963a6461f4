"""DuckDB-backed record store for reconciliation runs and rows."""

import json
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import duckdb
import structlog

from errors import NotFoundError, PersistenceError
from models import ReconciliationRow, ReconciliationRun, RowFilter


logger = structlog.get_logger(__name__)

RUNS_TABLE = "reconciliation_runs"
ROWS_TABLE = "reconciliation_rows"

RUN_COLUMNS = [
    "id", "created_at", "label", "period_start", "period_end", "source_mode",
    "total_hours", "total_carecenta_hours", "total_hha_hours",
    "variance_hours", "variance_percent",
]

ROW_COLUMNS = [
    "id", "run_id", "client_name", "employee_name", "service_date",
    "carecenta_hours", "hha_hours", "variance_hours", "confirmed_appts",
    "units", "notes", "raw_payload",
]

SCHEMA = f"""
    CREATE TABLE IF NOT EXISTS {RUNS_TABLE} (
        id VARCHAR PRIMARY KEY,
        created_at TIMESTAMP NOT NULL,
        label VARCHAR,
        period_start VARCHAR NOT NULL,
        period_end VARCHAR NOT NULL,
        source_mode VARCHAR NOT NULL,
        total_hours DOUBLE,
        total_carecenta_hours DOUBLE,
        total_hha_hours DOUBLE,
        variance_hours DOUBLE,
        variance_percent DOUBLE
    );
    CREATE SEQUENCE IF NOT EXISTS reconciliation_rows_id_seq START 1;
    CREATE TABLE IF NOT EXISTS {ROWS_TABLE} (
        id BIGINT PRIMARY KEY DEFAULT nextval('reconciliation_rows_id_seq'),
        run_id VARCHAR NOT NULL,
        client_name VARCHAR,
        employee_name VARCHAR,
        service_date VARCHAR,
        carecenta_hours DOUBLE,
        hha_hours DOUBLE,
        variance_hours DOUBLE,
        confirmed_appts INTEGER,
        units DOUBLE,
        notes VARCHAR,
        raw_payload VARCHAR
    );
"""


class ReconStore:
    """
    Record store for reconciliation runs and their rows.

    Exposes generic insert/query/delete plus the run-level operations the
    ingestion and reporting layers need. Multi-statement writes run inside a
    single transaction so a run is never left without its rows.
    """

    def __init__(self, database: str = ":memory:"):
        """
        Open (or create) the DuckDB database and ensure the schema exists.

        Args:
            database: DuckDB file path, or ":memory:" for a private database
        """
        self.database = database
        self.conn = duckdb.connect(database)
        # One connection is shared across request threads
        self._lock = threading.RLock()
        self.conn.execute(SCHEMA)

    # =========================================================================
    # Generic record operations
    # =========================================================================

    def _insert(self, table: str, records: Sequence[Dict[str, Any]]) -> int:
        if not records:
            return 0
        columns = list(records[0].keys())
        cols_str = ", ".join(columns)
        placeholders = ", ".join(["?"] * len(columns))
        self.conn.executemany(
            f"INSERT INTO {table} ({cols_str}) VALUES ({placeholders})",
            [[record.get(col) for col in columns] for record in records],
        )
        return len(records)

    def insert(self, table: str, records: Sequence[Dict[str, Any]]) -> int:
        """
        Insert records into a table.

        Args:
            table: Target table name
            records: Dicts sharing the same keys (column names)

        Returns:
            Number of records inserted
        """
        with self._lock:
            try:
                return self._insert(table, records)
            except duckdb.Error as e:
                logger.error("store.insert_failed", table=table, error=str(e))
                raise PersistenceError(f"Failed to insert into {table}") from e

    def query(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        columns: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows matching every equality filter.

        Args:
            table: Source table
            filters: Column -> value equality conditions (AND-combined)
            order_by: Optional ORDER BY clause
            columns: Columns to return (default: all)

        Returns:
            List of row dicts
        """
        where, params = self._equality_clause(filters)
        return self._select(table, where, params, order_by, columns)

    def delete(self, table: str, key: Dict[str, Any]) -> int:
        """
        Delete rows matching the key columns.

        Returns:
            Number of rows deleted
        """
        if not key:
            raise ValueError("Refusing to delete without a key")
        where, params = self._equality_clause(key)
        with self._lock:
            try:
                return self._delete(table, where, params)
            except duckdb.Error as e:
                logger.error("store.delete_failed", table=table, error=str(e))
                raise PersistenceError(f"Failed to delete from {table}") from e

    def _equality_clause(self, filters: Optional[Dict[str, Any]]):
        if not filters:
            return "", []
        parts = [f'"{col}" = ?' for col in filters]
        return " WHERE " + " AND ".join(parts), list(filters.values())

    def _delete(self, table: str, where: str, params: List[Any]) -> int:
        count = self.conn.execute(f"SELECT COUNT(*) FROM {table}{where}", params).fetchone()
        self.conn.execute(f"DELETE FROM {table}{where}", params)
        return count[0] if count else 0

    def _select(
        self,
        table: str,
        where: str,
        params: List[Any],
        order_by: Optional[str] = None,
        columns: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        cols_str = ", ".join(columns) if columns else "*"
        order = f" ORDER BY {order_by}" if order_by else ""
        with self._lock:
            try:
                cursor = self.conn.execute(f"SELECT {cols_str} FROM {table}{where}{order}", params)
                names = [desc[0] for desc in cursor.description]
                return [dict(zip(names, row)) for row in cursor.fetchall()]
            except duckdb.Error as e:
                logger.error("store.query_failed", table=table, error=str(e))
                raise PersistenceError(f"Failed to query {table}") from e

    # =========================================================================
    # Runs
    # =========================================================================

    def create_run(self, run: ReconciliationRun, rows: Sequence[ReconciliationRow]) -> str:
        """
        Persist a run header and its rows atomically.

        A run id is generated when the run has none. Either both the header
        and every row are written, or nothing is.

        Returns:
            The run id
        """
        run.id = run.id or str(uuid.uuid4())
        run.created_at = run.created_at or datetime.now(timezone.utc).replace(tzinfo=None)
        header = run.to_dict()
        header["created_at"] = run.created_at
        detail = [self._row_record(run.id, row) for row in rows]

        with self._lock:
            try:
                self.conn.begin()
                self._insert(RUNS_TABLE, [header])
                self._insert(ROWS_TABLE, detail)
                self.conn.commit()
            except duckdb.Error as e:
                self.conn.rollback()
                logger.error("store.create_run_failed", run_id=run.id, rows=len(detail), error=str(e))
                raise PersistenceError("Failed to create reconciliation run") from e

        logger.info("store.run_created", run_id=run.id, rows=len(detail))
        return run.id

    def _row_record(self, run_id: str, row: ReconciliationRow) -> Dict[str, Any]:
        record = {col: getattr(row, col) for col in ROW_COLUMNS if col not in ("id", "raw_payload")}
        record["run_id"] = run_id
        record["raw_payload"] = (
            json.dumps(row.raw_payload, default=str) if row.raw_payload is not None else None
        )
        return record

    def delete_run(self, run_id: str) -> int:
        """
        Delete a run and all of its rows in one transaction.

        Returns:
            Number of rows deleted along with the run

        Raises:
            NotFoundError: If the run does not exist
        """
        with self._lock:
            try:
                self.conn.begin()
                removed = self._delete(ROWS_TABLE, " WHERE run_id = ?", [run_id])
                runs = self._delete(RUNS_TABLE, " WHERE id = ?", [run_id])
                if runs == 0:
                    self.conn.rollback()
                    raise NotFoundError(f"Reconciliation run {run_id} not found")
                self.conn.commit()
            except duckdb.Error as e:
                self.conn.rollback()
                logger.error("store.delete_run_failed", run_id=run_id, error=str(e))
                raise PersistenceError("Failed to delete reconciliation run") from e

        logger.info("store.run_deleted", run_id=run_id, rows=removed)
        return removed

    def get_run(self, run_id: str) -> ReconciliationRun:
        """Fetch one run header, raising NotFoundError if absent."""
        found = self.query(RUNS_TABLE, {"id": run_id}, columns=RUN_COLUMNS)
        if not found:
            raise NotFoundError(f"Reconciliation run {run_id} not found")
        return ReconciliationRun(**found[0])

    def list_runs(self) -> List[ReconciliationRun]:
        """All runs, newest first."""
        found = self.query(RUNS_TABLE, order_by="created_at DESC", columns=RUN_COLUMNS)
        return [ReconciliationRun(**record) for record in found]

    # =========================================================================
    # Rows
    # =========================================================================

    def _filter_clause(self, row_filter: Optional[RowFilter]):
        parts = []
        params: List[Any] = []
        if row_filter is not None:
            if row_filter.run_id:
                parts.append("run_id = ?")
                params.append(row_filter.run_id)
            if row_filter.date_from:
                parts.append("service_date >= ?")
                params.append(row_filter.date_from)
            if row_filter.date_to:
                parts.append("service_date <= ?")
                params.append(row_filter.date_to)
            if row_filter.client:
                parts.append("client_name = ?")
                params.append(row_filter.client)
            if row_filter.employee:
                parts.append("employee_name = ?")
                params.append(row_filter.employee)
        where = " WHERE " + " AND ".join(parts) if parts else ""
        return where, params

    def query_rows(self, row_filter: Optional[RowFilter] = None) -> List[ReconciliationRow]:
        """
        Rows matching a filter, ordered by service date.

        Args:
            row_filter: Run, date range, client and employee conditions

        Returns:
            List of ReconciliationRow
        """
        where, params = self._filter_clause(row_filter)
        found = self._select(ROWS_TABLE, where, params, order_by="service_date ASC NULLS LAST, id ASC")
        rows = []
        for record in found:
            payload = record.pop("raw_payload")
            rows.append(ReconciliationRow(
                raw_payload=json.loads(payload) if payload else None,
                **record,
            ))
        return rows

    def update_row_notes(self, row_id: int, notes: Optional[str]) -> ReconciliationRow:
        """
        Set the user-editable notes on a row.

        Raises:
            NotFoundError: If the row does not exist
        """
        with self._lock:
            try:
                exists = self.conn.execute(
                    f"SELECT COUNT(*) FROM {ROWS_TABLE} WHERE id = ?", [row_id]
                ).fetchone()
                if not exists or exists[0] == 0:
                    raise NotFoundError(f"Reconciliation row {row_id} not found")
                self.conn.execute(f"UPDATE {ROWS_TABLE} SET notes = ? WHERE id = ?", [notes, row_id])
            except duckdb.Error as e:
                logger.error("store.update_notes_failed", row_id=row_id, error=str(e))
                raise PersistenceError("Failed to update reconciliation row") from e

        record = self.query(ROWS_TABLE, {"id": row_id})[0]
        record.pop("raw_payload")
        return ReconciliationRow(**record)

    def copy_rows_to_csv(self, row_filter: Optional[RowFilter], output_path: str) -> int:
        """
        Export filtered rows to CSV with DuckDB's COPY.

        Returns:
            Number of rows exported
        """
        where, params = self._filter_clause(row_filter)
        query = f"""
            SELECT
                run_id,
                COALESCE(client_name, '') AS client,
                COALESCE(employee_name, '') AS employee,
                service_date,
                carecenta_hours,
                hha_hours,
                variance_hours,
                confirmed_appts,
                units,
                COALESCE(notes, '') AS notes
            FROM {ROWS_TABLE}{where}
            ORDER BY service_date ASC NULLS LAST, id ASC
        """
        with self._lock:
            try:
                count = self.conn.execute(f"SELECT COUNT(*) FROM {ROWS_TABLE}{where}", params).fetchone()
                # COPY does not take bound parameters, so stage the selection first
                self.conn.execute(f"CREATE OR REPLACE TEMP TABLE export_rows AS {query}", params)
                escaped = output_path.replace("'", "''")
                self.conn.execute(f"COPY export_rows TO '{escaped}' (HEADER, DELIMITER ',')")
                self.conn.execute("DROP TABLE export_rows")
            except duckdb.Error as e:
                logger.error("store.export_failed", path=output_path, error=str(e))
                raise PersistenceError("Failed to export reconciliation rows") from e
        return count[0] if count else 0

    def close(self):
        """Close the database connection."""
        self.conn.close()
