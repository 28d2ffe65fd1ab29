from __future__ import annotations

import os
from contextlib import ExitStack
from pathlib import Path
from typing import Any, Iterable, Sequence

import pandas as pd
import pyarrow as pa

from ingestion.contracts.tick import UnifiedEvent
from tickdump.exceptions.core import OutputWriteFailure
from tickdump.utils.paths import ARCHIVE_SUFFIX

"""Symbol archive format.

    file := lz4-frame( arrow-ipc-stream( schema, batch* ) )

The Arrow schema travels inside the stream, so an archive can be read back
with nothing but pyarrow. Integers are int64 and prices float64; nothing is
rounded on the way in or out.
"""

COMPRESSION = "lz4"
BATCH_ROWS = 65_536
FORMAT_NAME = b"tickdump.unified_event"
FORMAT_VERSION = b"1"

_INT_LIST = pa.list_(pa.int64())

ARCHIVE_SCHEMA = pa.schema(
    [
        pa.field("kind", pa.string(), nullable=False),
        pa.field("symbol", pa.string(), nullable=False),
        pa.field("sip_ts", pa.int64(), nullable=False),
        # trade
        pa.field("trade_participant_ts", pa.int64()),
        pa.field("trade_sequence", pa.int64()),
        pa.field("trade_id", pa.string()),
        pa.field("price", pa.float64()),
        pa.field("size", pa.int64()),
        pa.field("trade_exchange", pa.int64()),
        pa.field("trade_tape", pa.int64()),
        pa.field("trade_conditions", _INT_LIST),
        pa.field("correction", pa.int64()),
        pa.field("trf_id", pa.int64()),
        pa.field("trf_ts", pa.int64()),
        # quote
        pa.field("quote_participant_ts", pa.int64()),
        pa.field("quote_sequence", pa.int64()),
        pa.field("bid_price", pa.float64()),
        pa.field("bid_size", pa.int64()),
        pa.field("bid_exchange", pa.int64()),
        pa.field("ask_price", pa.float64()),
        pa.field("ask_size", pa.int64()),
        pa.field("ask_exchange", pa.int64()),
        pa.field("quote_conditions", _INT_LIST),
        pa.field("indicators", _INT_LIST),
        pa.field("quote_tape", pa.int64()),
    ],
    metadata={b"format": FORMAT_NAME, b"version": FORMAT_VERSION},
)

_LIST_COLUMNS = frozenset(f.name for f in ARCHIVE_SCHEMA if pa.types.is_list(f.type))


def events_to_batch(events: Sequence[UnifiedEvent]) -> pa.RecordBatch:
    columns: dict[str, list[Any]] = {name: [] for name in ARCHIVE_SCHEMA.names}
    for ev in events:
        for name, values in columns.items():
            v = getattr(ev, name)
            values.append(list(v) if name in _LIST_COLUMNS else v)
    arrays = [pa.array(columns[f.name], type=f.type) for f in ARCHIVE_SCHEMA]
    return pa.RecordBatch.from_arrays(arrays, schema=ARCHIVE_SCHEMA)


class ArchiveWriter:
    """Scoped archive writer: OSFile -> lz4 frame -> Arrow IPC stream.

    Bytes go to `<path>.tmp`; on clean exit all three layers are closed and the
    tmp file is renamed over `path`. On any exception the layers are still
    closed, the tmp file is removed and no file appears at `path`.

    Usage:
        with ArchiveWriter(path) as w:
            w.write(events)
    """

    def __init__(self, path: str | Path, *, batch_rows: int = BATCH_ROWS):
        if batch_rows <= 0:
            raise ValueError("batch_rows must be > 0")
        self.path = Path(path)
        self.tmp_path = self.path.with_name(self.path.name + ".tmp")
        self._batch_rows = int(batch_rows)
        self._stack: ExitStack | None = None
        self._writer: pa.ipc.RecordBatchStreamWriter | None = None
        self.rows_written = 0

    def __enter__(self) -> "ArchiveWriter":
        stack = ExitStack()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            sink = stack.enter_context(pa.OSFile(str(self.tmp_path), "wb"))
            out = stack.enter_context(pa.CompressedOutputStream(sink, COMPRESSION))
            self._writer = stack.enter_context(pa.ipc.new_stream(out, ARCHIVE_SCHEMA))
        except (OSError, pa.ArrowException) as exc:
            stack.close()
            self._discard_tmp()
            raise OutputWriteFailure(f"cannot open archive {self.path}: {exc}", path=str(self.path)) from exc
        self._stack = stack
        return self

    def write(self, events: Sequence[UnifiedEvent]) -> int:
        if self._writer is None:
            raise RuntimeError("ArchiveWriter.write() outside of `with` block")
        n = len(events)
        try:
            for lo in range(0, n, self._batch_rows):
                self._writer.write_batch(events_to_batch(events[lo:lo + self._batch_rows]))
        except (OSError, OverflowError, pa.ArrowException) as exc:
            raise OutputWriteFailure(f"cannot write archive {self.path}: {exc}", path=str(self.path)) from exc
        self.rows_written += n
        return n

    def __exit__(self, exc_type, exc, tb) -> None:
        stack, self._stack, self._writer = self._stack, None, None
        try:
            if stack is not None:
                stack.close()
        except (OSError, pa.ArrowException) as close_exc:
            self._discard_tmp()
            if exc_type is None:
                raise OutputWriteFailure(
                    f"cannot close archive {self.path}: {close_exc}", path=str(self.path)
                ) from close_exc
            return
        if exc_type is not None:
            self._discard_tmp()
            return
        try:
            os.replace(self.tmp_path, self.path)
        except OSError as rename_exc:
            self._discard_tmp()
            raise OutputWriteFailure(
                f"cannot finalize archive {self.path}: {rename_exc}", path=str(self.path)
            ) from rename_exc

    def _discard_tmp(self) -> None:
        try:
            self.tmp_path.unlink(missing_ok=True)
        except OSError:
            # leftover tmp never shadows a finished archive
            pass


def write_archive(path: str | Path, events: Sequence[UnifiedEvent]) -> Path:
    with ArchiveWriter(path) as w:
        w.write(events)
    return Path(path)


# ---------------------------------------------------------------------------
# readers
# ---------------------------------------------------------------------------


def read_archive_table(path: str | Path) -> pa.Table:
    with pa.OSFile(str(path), "rb") as src, pa.CompressedInputStream(src, COMPRESSION) as inp:
        return pa.ipc.open_stream(inp).read_all()


def read_archive(path: str | Path) -> list[UnifiedEvent]:
    table = read_archive_table(path)
    return [UnifiedEvent.from_row(row) for row in table.to_pylist()]


def read_archive_frame(path: str | Path) -> pd.DataFrame:
    """Archive as a DataFrame; int64 columns stay int64 (no nulls are written)."""
    return read_archive_table(path).to_pandas()


def iter_archive_paths(root: str | Path, day: str) -> Iterable[Path]:
    return sorted((Path(root) / day).glob(f"*-{day}{ARCHIVE_SUFFIX}"))
