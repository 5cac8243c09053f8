"""Shared fixtures: a deterministic clock, an in-memory DuckDB store and payload builders."""

from datetime import datetime, timedelta
from typing import Callable, List, Sequence

import pandas as pd
import pytest

from feedsync.adapters.storage import DuckDBAdapter
from feedsync.infrastructure.config_manager import ImportConfig
from feedsync.main import create_pipeline


class TickingClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 8, 0, 0), step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step
        self.calls = 0

    def __call__(self) -> datetime:
        self.calls += 1
        self.now = self.now + self.step
        return self.now


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def storage(clock):
    adapter = DuckDBAdapter(db_path=":memory:", clock=clock)
    result = adapter.initialize_schema()
    assert result.is_success()
    yield adapter
    adapter.close()


@pytest.fixture
def pipeline(storage):
    return create_pipeline(storage, ImportConfig(reference_chunk_size=2, stream_chunk_rows=2))


@pytest.fixture
def seed(storage) -> Callable[[str, List[dict]], None]:
    """Load rows into a reference table."""
    def _seed(table_name: str, rows: List[dict]) -> None:
        result = storage.persist_dataframe(pd.DataFrame(rows), table_name)
        assert result.is_success(), result.error
    return _seed


def html_export(header: Sequence[str], rows: Sequence[Sequence[str]], title: str = "REPORTE") -> bytes:
    """An HTML table saved as .xls, with a banner table and a title row above the header."""
    def cells(tag: str, values: Sequence[str]) -> str:
        return "".join(f"<{tag}>{v}</{tag}>" for v in values)

    body = [f"<tr>{cells('th', header)}</tr>"] + [f"<tr>{cells('td', r)}</tr>" for r in rows]
    return (
        "<html><body>"
        f"<table><tr><td>{title}</td></tr></table>"
        f"<table><tr><td>Generado por el sistema</td></tr>{''.join(body)}</table>"
        "</body></html>"
    ).encode("utf-8")


@pytest.fixture
def make_html():
    return html_export
