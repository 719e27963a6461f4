import io

import pandas as pd
import pytest

from record_store import ReconStore
from sheet_extractors import SheetSource
from web_app import create_app


COMBINED_CSV = (
    "Tinash Homecare Hours Report,,,\n"
    "Period: January 2024,,,\n"
    "Client,HHAex Hours,CareCenta Hours,# of Appts\n"
    "Acme,5.0,4.5,2\n"
    ",3.0,2.5,\n"
)


def csv_source(text: str, filename: str = "export.csv") -> SheetSource:
    return SheetSource(data=text.encode("utf-8"), filename=filename)


def xlsx_bytes(grid, header=False) -> bytes:
    buf = io.BytesIO()
    frame = pd.DataFrame(grid[1:], columns=grid[0]) if header else pd.DataFrame(grid)
    frame.to_excel(buf, header=header, index=False)
    return buf.getvalue()


@pytest.fixture
def store():
    recon_store = ReconStore(":memory:")
    yield recon_store
    recon_store.close()


@pytest.fixture
def app(store, tmp_path):
    return create_app(
        config={"TESTING": True, "EXPORT_FOLDER": str(tmp_path / "exports")},
        store=store,
    )


@pytest.fixture
def client(app):
    return app.test_client()
