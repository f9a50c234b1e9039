"""Tabular views of table state for display and export.

All functions are read-only: they take a Table and build pyarrow tables
or pandas DataFrames from its file group and instant snapshots.
"""

from __future__ import annotations

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

from hudisim.clock import instant_to_datetime
from hudisim.table import Table

# Arrow schemas (shared between DataFrame and parquet paths)
_SLICE_SCHEMA = pa.schema([
    ("group_id", pa.string()),
    ("partition", pa.string()),
    ("kind", pa.string()),
    ("slice_id", pa.string()),
    ("version", pa.int32()),
    ("row_count", pa.int64()),
    ("instant_time", pa.string()),
    ("created_at", pa.timestamp("ms", tz="UTC")),
])

_TIMELINE_SCHEMA = pa.schema([
    ("instant_time", pa.string()),
    ("type", pa.string()),
    ("state", pa.string()),
    ("record_count", pa.int64()),
    ("notes", pa.string()),
    ("completion_time", pa.string()),
    ("timestamp", pa.timestamp("ms", tz="UTC")),
])


def _rows_to_arrow_table(rows: list[dict], schema: pa.Schema) -> pa.Table:
    arrays = {}
    for field in schema:
        arrays[field.name] = pa.array(
            [row[field.name] for row in rows],
            type=field.type,
        )
    return pa.table(arrays, schema=schema)


def file_group_table(table: Table) -> pa.Table:
    """One row per base/delta slice, groups in insertion order.

    Empty file groups appear once with a null kind so that every
    partition is listed.
    """
    rows = []
    for group in table.list_file_groups():
        entries = (
            [("base", s) for s in group.base_files]
            + [("delta", s) for s in group.delta_files]
        )
        if not entries:
            rows.append({
                "group_id": group.id, "partition": group.partition, "kind": None,
                "slice_id": None, "version": None, "row_count": None,
                "instant_time": None, "created_at": None,
            })
        for kind, s in entries:
            rows.append({
                "group_id": group.id,
                "partition": group.partition,
                "kind": kind,
                "slice_id": s.id,
                "version": s.version,
                "row_count": s.row_count,
                "instant_time": s.instant_time,
                "created_at": s.created_at,
            })
    return _rows_to_arrow_table(rows, _SLICE_SCHEMA)


def timeline_table(table: Table, limit: int | None = None) -> pa.Table:
    """Newest-first instants with their parsed timestamps."""
    rows = [
        {
            "instant_time": i.instant_time,
            "type": i.type.value,
            "state": i.state.value,
            "record_count": i.record_count,
            "notes": i.notes,
            "completion_time": i.completion_time,
            "timestamp": instant_to_datetime(i.instant_time),
        }
        for i in table.list_timeline(limit)
    ]
    return _rows_to_arrow_table(rows, _TIMELINE_SCHEMA)


def file_group_frame(table: Table) -> pd.DataFrame:
    return file_group_table(table).to_pandas()


def timeline_frame(table: Table, limit: int | None = None) -> pd.DataFrame:
    return timeline_table(table, limit).to_pandas()


def timeline_chart_frame(table: Table) -> pd.DataFrame:
    """Oldest-first instants numbered from 1, for bar charts of records per instant."""
    instants = list(reversed(table.list_timeline()))
    return pd.DataFrame({
        "idx": pd.Series(range(1, len(instants) + 1), dtype="int64"),
        "records": pd.Series([i.record_count for i in instants], dtype="int64"),
        "type": pd.Series([i.type.value for i in instants], dtype="object"),
        "state": pd.Series([i.state.value for i in instants], dtype="object"),
        "instant_time": pd.Series([i.instant_time for i in instants], dtype="object"),
    })


def export_parquet(table: Table, slices_path: str, timeline_path: str) -> None:
    """Write file group slices and the full timeline to parquet files."""
    pq.write_table(file_group_table(table), slices_path, compression="snappy")
    pq.write_table(timeline_table(table), timeline_path, compression="snappy")
