"""Export utilities for reconciliation rows."""

import os
from typing import Optional, Tuple

from models import RowFilter
from record_store import ReconStore


class Exporter:
    """Handles exporting filtered reconciliation rows to CSV files."""

    FILE_NAME = "hours-reconciliation.csv"

    def __init__(self, store: ReconStore):
        """
        Initialize exporter with a record store.

        Args:
            store: ReconStore holding the runs and rows
        """
        self.store = store

    def export_rows(
        self,
        row_filter: Optional[RowFilter],
        output_dir: str,
        file_name: Optional[str] = None,
    ) -> Tuple[str, int]:
        """
        Export filtered rows to CSV.

        Args:
            row_filter: Run, date range, client and employee conditions
            output_dir: Directory to save the CSV file
            file_name: Override for the output file name

        Returns:
            Tuple of (path to the exported file, number of rows)
        """
        os.makedirs(output_dir, exist_ok=True)
        output_path = os.path.join(output_dir, file_name or self.FILE_NAME)
        count = self.store.copy_rows_to_csv(row_filter, output_path)
        return output_path, count
