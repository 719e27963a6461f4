"""Run ingestion: extract, total, and persist a reconciliation run."""

from typing import List, Optional, Sequence, Tuple

import structlog

from errors import NoDataError, ValidationError
from models import (
    ExtractionResult,
    IngestionResult,
    RawReconciliationRecord,
    ReconciliationRow,
    ReconciliationRun,
    RejectedRow,
    RunSummary,
    SourceMode,
)
from record_store import ReconStore
from sheet_extractors import SheetSource, extract_combined, extract_dual
from value_parsers import parse_date


logger = structlog.get_logger(__name__)

DUAL_JOIN_MODES = ("hha", "outer")


def compute_totals(records: Sequence[RawReconciliationRecord]) -> RunSummary:
    """
    Sum both sources across records (missing hours count as zero).

    Returns:
        RunSummary with totals and variance; row_count is the record count
    """
    total_care = 0.0
    total_hha = 0.0
    appts = 0
    for record in records:
        total_care += record.carecenta_hours or 0
        total_hha += record.hha_hours or 0
        appts += record.confirmed_appts or 0

    variance = total_hha - total_care
    return RunSummary(
        total_carecenta_hours=total_care,
        total_hha_hours=total_hha,
        variance_hours=variance,
        variance_percent=(variance / total_care * 100) if total_care > 0 else None,
        row_count=len(records),
        confirmed_appts=appts,
    )


def _hours(value) -> Optional[float]:
    return None if value is None else float(value)


def build_rows(
    records: Sequence[RawReconciliationRecord],
    run_id: str = "",
) -> Tuple[List[ReconciliationRow], List[RejectedRow]]:
    """
    Map extracted records to persistable rows.

    Rows with neither CareCenta nor HHAeX hours are dropped and reported.

    Returns:
        Tuple of (rows to insert, rejected records)
    """
    rows: List[ReconciliationRow] = []
    rejected: List[RejectedRow] = []

    for idx, record in enumerate(records):
        care = _hours(record.carecenta_hours)
        hha = _hours(record.hha_hours)
        if care is None and hha is None:
            rejected.append(RejectedRow("record", idx, "no_hours"))
            continue

        variance = round(hha - care, 2) if care is not None and hha is not None else None
        rows.append(ReconciliationRow(
            run_id=run_id,
            client_name=record.client_name or None,
            employee_name=record.employee_name or None,
            service_date=record.service_date or None,
            carecenta_hours=care,
            hha_hours=hha,
            variance_hours=variance,
            confirmed_appts=record.confirmed_appts,
            units=record.units,
            notes=None,
            raw_payload=record.raw,
        ))

    return rows, rejected


class IngestionService:
    """Orchestrates extraction and persistence of a reconciliation run."""

    def __init__(self, store: ReconStore, dual_join: str = "hha"):
        """
        Args:
            store: Record store receiving runs and rows
            dual_join: Dual-mode join policy, 'hha' or 'outer'
        """
        if dual_join not in DUAL_JOIN_MODES:
            raise ValueError(f"Unknown dual join mode: {dual_join}")
        self.store = store
        self.dual_join = dual_join

    def _validate_period(self, period_start: Optional[str], period_end: Optional[str]) -> Tuple[str, str]:
        if not period_start or not period_end:
            raise ValidationError("period_start and period_end are required")
        start = parse_date(period_start)
        end = parse_date(period_end)
        if start is None or end is None:
            raise ValidationError("period_start and period_end must be dates (YYYY-MM-DD)")
        if start > end:
            raise ValidationError("period_start must not be after period_end")
        return start, end

    def _extract(
        self,
        mode: SourceMode,
        period_start: str,
        combined_file: Optional[SheetSource],
        carecenta_file: Optional[SheetSource],
        hha_file: Optional[SheetSource],
    ) -> ExtractionResult:
        if mode is SourceMode.DUAL:
            if not carecenta_file or not hha_file:
                raise ValidationError("Dual mode requires carecenta_file and hha_file")
            return extract_dual(carecenta_file, hha_file, join=self.dual_join)

        if not combined_file:
            raise ValidationError("Combined mode requires combined_file")
        return extract_combined(combined_file, period_start)

    def ingest(
        self,
        mode: str,
        period_start: Optional[str],
        period_end: Optional[str],
        combined_file: Optional[SheetSource] = None,
        carecenta_file: Optional[SheetSource] = None,
        hha_file: Optional[SheetSource] = None,
        label: Optional[str] = None,
    ) -> IngestionResult:
        """
        Ingest uploaded exports as a new reconciliation run.

        Args:
            mode: 'combined' or 'dual'
            period_start: Billing period start (required)
            period_end: Billing period end (required)
            combined_file: Combined export (combined mode)
            carecenta_file: CareCenta export (dual mode)
            hha_file: HHAeX export (dual mode)
            label: Optional display label for the run

        Returns:
            IngestionResult with the run id, totals and rejected rows

        Raises:
            ValidationError: Missing period dates or files
            NoDataError: Nothing usable was extracted
            ExtractionError, PersistenceError: Server-side failures
        """
        try:
            source_mode = SourceMode(mode or SourceMode.COMBINED.value)
        except ValueError:
            raise ValidationError("mode must be 'combined' or 'dual'") from None

        start, end = self._validate_period(period_start, period_end)
        extraction = self._extract(source_mode, start, combined_file, carecenta_file, hha_file)

        if not extraction.records:
            logger.warning(
                "reconciliation.no_records",
                mode=source_mode.value,
                rejected=len(extraction.rejected),
            )
            raise NoDataError()

        totals = compute_totals(extraction.records)
        rows, dropped = build_rows(extraction.records)
        if not rows:
            raise NoDataError()

        run = ReconciliationRun(
            id="",
            label=label or None,
            period_start=start,
            period_end=end,
            source_mode=source_mode.value,
            total_hours=totals.total_hours,
            total_carecenta_hours=totals.total_carecenta_hours,
            total_hha_hours=totals.total_hha_hours,
            variance_hours=totals.variance_hours,
            variance_percent=totals.variance_percent,
        )
        run_id = self.store.create_run(run, rows)

        totals.row_count = len(rows)
        rejected = extraction.rejected + dropped
        logger.info(
            "reconciliation.ingest_completed",
            run_id=run_id,
            mode=source_mode.value,
            rows=len(rows),
            rejected=len(rejected),
            variance_hours=totals.variance_hours,
        )
        return IngestionResult(run_id=run_id, summary=totals, rejected=rejected)
