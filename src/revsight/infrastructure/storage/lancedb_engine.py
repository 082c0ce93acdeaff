import threading
from collections.abc import Iterator
from typing import Any

import lancedb
import polars as pl
from loguru import logger

from revsight.core.models import (
    Analysis,
    ChangeSet,
    Resolution,
    StoredVector,
)
from revsight.infrastructure.storage.mappers import RecordMapper

CHANGE_SETS = "change_sets"
ANALYSES = "analyses"
FILE_VECTORS = "file_vectors"
RESOLUTIONS = "resolutions"


def _quote(value: str) -> str:
    """Escapes a string literal for a LanceDB SQL filter."""
    return "'" + value.replace("'", "''") + "'"


class LanceDBStore:
    """Concrete implementation of IDocumentStore backed by LanceDB tables.

    Reads scan whole tables through Arrow and filter with Polars; there is no
    vector index.
    """

    def __init__(self, db_path: str, mapper: RecordMapper) -> None:
        self.db_path = db_path
        self.mapper = mapper
        self._write_lock = threading.Lock()

        self.db = lancedb.connect(db_path)
        self._schemas = {
            CHANGE_SETS: mapper.change_set_schema,
            ANALYSES: mapper.analysis_schema,
            FILE_VECTORS: mapper.vector_schema,
            RESOLUTIONS: mapper.resolution_schema,
        }
        self._tables: dict[str, Any] = {
            name: self.db.create_table(name, schema=schema, exist_ok=True)
            for name, schema in self._schemas.items()
        }

    def clear(self) -> None:
        with self._write_lock:
            for name, schema in self._schemas.items():
                self.db.drop_table(name, ignore_missing=True)
                self._tables[name] = self.db.create_table(name, schema=schema)
        logger.info("Cleared store at {}", self.db_path)

    def _frame(self, name: str) -> pl.DataFrame:
        return pl.DataFrame(self._tables[name].to_arrow())

    def _rows(self, name: str, **equals: Any) -> list[dict[str, Any]]:
        frame = self._frame(name)
        for column, value in equals.items():
            frame = frame.filter(pl.col(column) == value)
        return frame.to_dicts()

    def get_change_set(self, change_set_id: str) -> ChangeSet | None:
        rows = self._rows(CHANGE_SETS, id=change_set_id)
        return self.mapper.change_set_from_row(rows[0]) if rows else None

    def upsert_change_set(self, change_set: ChangeSet) -> None:
        with self._write_lock:
            self._write_change_set(change_set)

    def _write_change_set(self, change_set: ChangeSet) -> None:
        table = self._tables[CHANGE_SETS]
        table.delete(f"id = {_quote(change_set.id)}")
        table.add(self.mapper.change_set_batch(change_set))

    def get_analysis(self, analysis_id: str) -> Analysis | None:
        rows = self._rows(ANALYSES, id=analysis_id)
        if not rows:
            return None
        return self._with_vectors(self.mapper.analysis_from_row(rows[0]))

    def get_analysis_for_change_set(self, change_set_id: str) -> Analysis | None:
        rows = self._rows(ANALYSES, change_set_id=change_set_id)
        if not rows:
            return None
        return self._with_vectors(self.mapper.analysis_from_row(rows[0]))

    def _with_vectors(self, analysis: Analysis) -> Analysis:
        # Matched by position: one filename can be analysed twice
        vectors = {
            row["file_index"]: self.mapper.vector_from_row(row).vector
            for row in self._rows(FILE_VECTORS, analysis_id=analysis.id)
        }
        for index, result in enumerate(analysis.file_results):
            result.embedding = vectors.get(index)
        return analysis

    def replace_analysis(self, change_set: ChangeSet, analysis: Analysis) -> None:
        with self._write_lock:
            where = f"change_set_id = {_quote(change_set.id)}"
            removed = len(self._rows(ANALYSES, change_set_id=change_set.id))

            # Delete first: two analyses never coexist for one change-set
            self._tables[FILE_VECTORS].delete(where)
            self._tables[ANALYSES].delete(where)

            self._tables[ANALYSES].add(self.mapper.analysis_batch(analysis))
            vectors = self.mapper.vector_batch(change_set, analysis)
            if vectors is not None:
                self._tables[FILE_VECTORS].add(vectors)

            self._write_change_set(change_set)

        logger.debug(
            "Stored analysis {} for {} (replaced {})", analysis.id, change_set.label, removed
        )

    def get_file_vector(self, analysis_id: str, filename: str) -> list[float] | None:
        rows = self._rows(FILE_VECTORS, analysis_id=analysis_id, filename=filename)
        if not rows:
            return None
        first = min(rows, key=lambda row: row["file_index"])
        return self.mapper.vector_from_row(first).vector

    def iter_vectors(self) -> Iterator[StoredVector]:
        for row in self._frame(FILE_VECTORS).iter_rows(named=True):
            yield self.mapper.vector_from_row(row)

    def get_resolutions(self, change_set_id: str) -> list[Resolution]:
        return [
            self.mapper.resolution_from_row(row)
            for row in self._rows(RESOLUTIONS, change_set_id=change_set_id)
        ]

    def set_resolution(self, resolution: Resolution) -> None:
        with self._write_lock:
            table = self._tables[RESOLUTIONS]
            table.delete(
                f"change_set_id = {_quote(resolution.change_set_id)} "
                f"AND item_type = {_quote(resolution.item_type.value)} "
                f"AND content_key = {_quote(resolution.content_key)}"
            )
            table.add(self.mapper.resolution_batch(resolution))
