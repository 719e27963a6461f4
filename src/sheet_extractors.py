"""Extract reconciliation records from CareCenta and HHAeX spreadsheet exports."""

import csv
import io
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
import structlog

from errors import ExtractionError, HeaderNotFoundError
from models import ExtractionResult, RawReconciliationRecord, RejectedRow
from value_parsers import normalize_label, parse_date, parse_int_safe, parse_number


logger = structlog.get_logger(__name__)

XLSX_MAGIC = b"PK\x03\x04"
XLS_MAGIC = b"\xd0\xcf\x11\xe0"

# Canonical field -> accepted header labels (normalized), in priority order.
# New vendor label variants are added here, not in the extractors.
COMBINED_COLUMN_ALIASES: Dict[str, List[str]] = {
    "client": ["client"],
    "hha_hours": ["hhaex", "hhaex hours", "hha hours"],
    "carecenta_hours": [
        "carecenta",
        "carecenta hours",
        "carecenta hrs",
        "carecenta hours (ddd evv)",
        "carecenta hrs (ddd evv)",
    ],
    "confirmed_appts": ["# of appts", "confirmed appts", "# appts", "appointments"],
    "units": ["units", "total units"],
}

COMBINED_REQUIRED = ("client", "hha_hours", "carecenta_hours")

DUAL_COLUMN_ALIASES: Dict[str, List[str]] = {
    "client": ["client", "client name"],
    "employee": ["employee", "employee name", "caregiver"],
    "service_date": ["service date", "date"],
    "carecenta_hours": ["hours", "carecenta hours", "units"],
    "hha_hours": ["hours", "hha hours", "hhaex hours", "units"],
    "confirmed_appts": ["# of appts", "confirmed appts", "# appts"],
    "units": ["units", "total units"],
}


@dataclass
class SheetSource:
    """An uploaded spreadsheet: raw bytes plus the client-side file name."""
    data: bytes
    filename: Optional[str] = None

    @property
    def is_csv(self) -> bool:
        if self.filename:
            return self.filename.lower().endswith(".csv")
        return not (self.data.startswith(XLSX_MAGIC) or self.data.startswith(XLS_MAGIC))


# =========================================================================
# Column matching
# =========================================================================

def match_columns(headers: Sequence[Any], aliases: Sequence[str]) -> List[int]:
    """
    Find the header cells matching any alias (case-insensitive).

    Args:
        headers: Header cells of a sheet
        aliases: Accepted labels, highest priority first

    Returns:
        Matching column indices, ordered by alias priority then position
    """
    normalized = [normalize_label(h) for h in headers]
    indices: List[int] = []
    for alias in aliases:
        alias = normalize_label(alias)
        for idx, label in enumerate(normalized):
            if label == alias and idx not in indices:
                indices.append(idx)
    return indices


def _first_index(headers: Sequence[Any], aliases: Sequence[str]) -> Optional[int]:
    found = match_columns(headers, aliases)
    return found[0] if found else None


def _cell(row: Sequence[Any], idx: Optional[int]) -> Any:
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:
        return ""
    return str(value).strip()


# =========================================================================
# Sheet reading
# =========================================================================

def _frame_to_rows(frame: pd.DataFrame) -> List[List[Any]]:
    frame = frame.astype(object).where(frame.notna(), None)
    return frame.values.tolist()


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def read_grid(source: SheetSource) -> List[List[Any]]:
    """
    Read the first sheet as a 2-D grid of raw cell values, no header inference.

    CSV rows may be ragged (report titles above the table), so they are read
    with the csv module rather than a rectangular frame reader.
    """
    try:
        if source.is_csv:
            reader = csv.reader(io.StringIO(_decode(source.data)))
            return [[cell if cell != "" else None for cell in row] for row in reader]
        frame = pd.read_excel(io.BytesIO(source.data), sheet_name=0, header=None)
    except Exception as e:
        logger.error("sheet.unreadable", filename=source.filename, error=str(e))
        raise ExtractionError(f"Could not read spreadsheet {source.filename or ''}".strip()) from e
    return _frame_to_rows(frame)


def read_records(source: SheetSource) -> Tuple[List[str], List[Dict[str, Any]]]:
    """
    Read the first sheet as row dicts keyed by its own header row.

    Returns:
        Tuple of (column names, list of row dicts)
    """
    try:
        if source.is_csv:
            frame = pd.read_csv(io.BytesIO(source.data), dtype=object, encoding_errors="replace")
        else:
            frame = pd.read_excel(io.BytesIO(source.data), sheet_name=0)
    except pd.errors.EmptyDataError:
        logger.warning("sheet.empty", filename=source.filename)
        return [], []
    except Exception as e:
        logger.error("sheet.unreadable", filename=source.filename, error=str(e))
        raise ExtractionError(f"Could not read spreadsheet {source.filename or ''}".strip()) from e
    columns = [str(c) for c in frame.columns]
    frame.columns = columns
    rows = _frame_to_rows(frame)
    return columns, [dict(zip(columns, row)) for row in rows]


# =========================================================================
# Combined-file extraction
# =========================================================================

def locate_header(rows: Sequence[Sequence[Any]]) -> Tuple[int, Dict[str, Optional[int]]]:
    """
    Scan top to bottom for the first row carrying client and both hours columns.

    Returns:
        Tuple of (header row index, canonical field -> column index)

    Raises:
        HeaderNotFoundError: If no row qualifies
    """
    for row_idx, row in enumerate(rows):
        columns = {
            name: _first_index(row, aliases)
            for name, aliases in COMBINED_COLUMN_ALIASES.items()
        }
        if all(columns[name] is not None for name in COMBINED_REQUIRED):
            return row_idx, columns
    raise HeaderNotFoundError("No header row with Client, HHAeX and CareCenta columns")


def extract_combined_rows(
    rows: Sequence[Sequence[Any]],
    fallback_date: str,
) -> ExtractionResult:
    """
    Turn a combined CareCenta/HHAeX grid into reconciliation records.

    The export prints each client label once above its rows, so the last
    non-blank client cell is carried forward.

    Args:
        rows: Grid of raw cell values
        fallback_date: Service date for every record (the run's period start)

    Returns:
        ExtractionResult with accepted records and rejected row reasons
    """
    result = ExtractionResult()
    try:
        header_idx, columns = locate_header(rows)
    except HeaderNotFoundError:
        logger.warning("combined.header_not_found", rows=len(rows))
        return result

    current_client: Optional[str] = None

    for row_idx in range(header_idx + 1, len(rows)):
        row = rows[row_idx]

        client = _text(_cell(row, columns["client"]))
        if client:
            current_client = client

        hha_hours = parse_number(_cell(row, columns["hha_hours"]))
        care_hours = parse_number(_cell(row, columns["carecenta_hours"]))

        if hha_hours is None and care_hours is None:
            if any(_text(cell) for cell in row):
                result.rejected.append(RejectedRow("combined", row_idx, "no_hours"))
            continue

        if not current_client:
            result.rejected.append(RejectedRow("combined", row_idx, "no_client"))
            continue

        result.records.append(RawReconciliationRecord(
            client_name=current_client,
            employee_name="",
            service_date=fallback_date,
            carecenta_hours=care_hours,
            hha_hours=hha_hours,
            confirmed_appts=parse_int_safe(_cell(row, columns["confirmed_appts"])),
            units=parse_number(_cell(row, columns["units"])),
            raw={"rowIndex": row_idx, "row": list(row)},
        ))

    return result


def extract_combined(source: SheetSource, fallback_date: str) -> ExtractionResult:
    """Extract records from a single combined export."""
    return extract_combined_rows(read_grid(source), fallback_date)


# =========================================================================
# Dual-file extraction
# =========================================================================

def _resolve_columns(columns: Sequence[str]) -> Dict[str, List[str]]:
    return {
        name: [columns[i] for i in match_columns(columns, aliases)]
        for name, aliases in DUAL_COLUMN_ALIASES.items()
    }


def _pick(row: Dict[str, Any], candidates: Iterable[str]) -> Any:
    """First non-blank value among candidate columns."""
    for column in candidates:
        value = row.get(column)
        if _text(value):
            return value
    return None


def _visit_identity(
    row: Dict[str, Any],
    columns: Dict[str, List[str]],
) -> Tuple[str, str, Optional[str]]:
    client = _text(_pick(row, columns["client"]))
    employee = _text(_pick(row, columns["employee"]))
    service_date = parse_date(_pick(row, columns["service_date"]))
    return client, employee, service_date


def _identity_problem(client: str, employee: str, service_date: Optional[str]) -> Optional[str]:
    if not client:
        return "missing_client"
    if not employee:
        return "missing_employee"
    if not service_date:
        return "unresolved_date"
    return None


def visit_key(client: str, employee: str, service_date: str) -> str:
    """Composite join key: case-insensitive client and employee plus date."""
    return f"{client.lower()}|{employee.lower()}|{service_date}"


def extract_dual_rows(
    care_rows: Sequence[Dict[str, Any]],
    care_columns: Sequence[str],
    hha_rows: Sequence[Dict[str, Any]],
    hha_columns: Sequence[str],
    join: str = "hha",
) -> ExtractionResult:
    """
    Join CareCenta and HHAeX visit rows on client + employee + service date.

    Args:
        care_rows: CareCenta rows keyed by header
        care_columns: CareCenta header names
        hha_rows: HHAeX rows keyed by header
        hha_columns: HHAeX header names
        join: 'hha' emits one record per HHAeX visit and reports unmatched
            CareCenta visits as rejected; 'outer' also emits them

    Returns:
        ExtractionResult with accepted records and rejected row reasons
    """
    result = ExtractionResult()
    care_cols = _resolve_columns(care_columns)
    hha_cols = _resolve_columns(hha_columns)

    # Later CareCenta rows with the same key replace earlier ones
    care_lookup: Dict[str, Dict[str, Any]] = {}
    for idx, row in enumerate(care_rows):
        client, employee, service_date = _visit_identity(row, care_cols)
        problem = _identity_problem(client, employee, service_date)
        if problem:
            result.rejected.append(RejectedRow("carecenta", idx, problem))
            continue
        care_lookup[visit_key(client, employee, service_date)] = {
            "index": idx,
            "client": client,
            "employee": employee,
            "service_date": service_date,
            "hours": parse_number(_pick(row, care_cols["carecenta_hours"])),
            "appts": parse_int_safe(_pick(row, care_cols["confirmed_appts"])),
            "units": parse_number(_pick(row, care_cols["units"])),
            "raw": row,
        }

    matched = set()
    for idx, row in enumerate(hha_rows):
        client, employee, service_date = _visit_identity(row, hha_cols)
        problem = _identity_problem(client, employee, service_date)
        if problem:
            result.rejected.append(RejectedRow("hhaex", idx, problem))
            continue

        key = visit_key(client, employee, service_date)
        care = care_lookup.get(key)
        if care is not None:
            matched.add(key)

        result.records.append(RawReconciliationRecord(
            client_name=client,
            employee_name=employee,
            service_date=service_date,
            carecenta_hours=care["hours"] if care else None,
            hha_hours=parse_number(_pick(row, hha_cols["hha_hours"])),
            confirmed_appts=care["appts"] if care else None,
            units=care["units"] if care else None,
            raw={"care": care["raw"] if care else None, "hha": row},
        ))

    for key, care in care_lookup.items():
        if key in matched:
            continue
        if join == "outer":
            result.records.append(RawReconciliationRecord(
                client_name=care["client"],
                employee_name=care["employee"],
                service_date=care["service_date"],
                carecenta_hours=care["hours"],
                hha_hours=None,
                confirmed_appts=care["appts"],
                units=care["units"],
                raw={"care": care["raw"], "hha": None},
            ))
        else:
            result.rejected.append(RejectedRow("carecenta", care["index"], "no_hha_match"))

    logger.info(
        "dual.joined",
        join=join,
        carecenta_visits=len(care_lookup),
        hhaex_rows=len(hha_rows),
        matched=len(matched),
    )
    return result


def extract_dual(
    carecenta: SheetSource,
    hha: SheetSource,
    join: str = "hha",
) -> ExtractionResult:
    """Extract records from separate CareCenta and HHAeX exports."""
    care_columns, care_rows = read_records(carecenta)
    hha_columns, hha_rows = read_records(hha)
    return extract_dual_rows(care_rows, care_columns, hha_rows, hha_columns, join=join)
