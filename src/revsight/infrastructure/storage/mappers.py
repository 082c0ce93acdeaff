from typing import Any

import numpy as np
import pyarrow as pa

from revsight.core.models import (
    Analysis,
    ChangeSet,
    ChangeSetKind,
    ItemType,
    Resolution,
    StoredVector,
)


class RecordMapper:
    """Maps domain records to PyArrow structures and back.

    Change-sets and analyses are kept as a JSON ``payload`` next to the columns
    used for filtering. Embeddings live in their own table as fixed-size float32
    lists so the similarity scan reads them without decoding analyses.
    """

    def __init__(self, vector_dimension: int) -> None:
        self.vector_dimension = vector_dimension

        self.change_set_schema = pa.schema(
            [
                pa.field("id", pa.string()),
                pa.field("kind", pa.string()),
                pa.field("status", pa.string()),
                pa.field("analysis_id", pa.string(), nullable=True),
                pa.field("payload", pa.string()),
            ]
        )
        self.analysis_schema = pa.schema(
            [
                pa.field("id", pa.string()),
                pa.field("change_set_id", pa.string()),
                pa.field("payload", pa.string()),
            ]
        )
        self.vector_schema = pa.schema(
            [
                pa.field("analysis_id", pa.string()),
                pa.field("change_set_id", pa.string()),
                pa.field("kind", pa.string()),
                pa.field("owner", pa.string()),
                pa.field("repo", pa.string()),
                pa.field("number", pa.int64(), nullable=True),
                pa.field("ref", pa.string(), nullable=True),
                pa.field("file_index", pa.int32()),
                pa.field("filename", pa.string()),
                pa.field("insight", pa.string()),
                pa.field("vector", pa.list_(pa.float32(), self.vector_dimension)),
            ]
        )
        self.resolution_schema = pa.schema(
            [
                pa.field("change_set_id", pa.string()),
                pa.field("item_type", pa.string()),
                pa.field("content_key", pa.string()),
                pa.field("resolved", pa.bool_()),
                pa.field("updated_at", pa.string()),
            ]
        )

    def change_set_batch(self, change_set: ChangeSet) -> pa.Table:
        return pa.Table.from_pylist(
            [
                {
                    "id": change_set.id,
                    "kind": change_set.kind.value,
                    "status": change_set.status.value,
                    "analysis_id": change_set.analysis_id,
                    "payload": change_set.model_dump_json(),
                }
            ],
            schema=self.change_set_schema,
        )

    def analysis_batch(self, analysis: Analysis) -> pa.Table:
        # Vectors are persisted in the vector table only
        payload = analysis.model_dump_json(exclude={"file_results": {"__all__": {"embedding"}}})
        return pa.Table.from_pylist(
            [{"id": analysis.id, "change_set_id": analysis.change_set_id, "payload": payload}],
            schema=self.analysis_schema,
        )

    def vector_batch(self, change_set: ChangeSet, analysis: Analysis) -> pa.Table | None:
        """Returns one row per file result with a vector, or None if there are none.

        ``file_index`` is the position of the result in the analysis, since a
        filename may appear more than once.
        """
        indexed = [(i, r) for i, r in enumerate(analysis.file_results) if r.embedding is not None]
        if not indexed:
            return None

        rows = [r for _, r in indexed]
        vectors = np.asarray([r.embedding for r in rows], dtype=np.float32)
        count = len(rows)
        return pa.Table.from_arrays(
            [
                pa.array([analysis.id] * count),
                pa.array([change_set.id] * count),
                pa.array([change_set.kind.value] * count),
                pa.array([change_set.owner] * count),
                pa.array([change_set.repo] * count),
                pa.array([change_set.number] * count, type=pa.int64()),
                pa.array([change_set.ref] * count, type=pa.string()),
                pa.array([i for i, _ in indexed], type=pa.int32()),
                pa.array([r.filename for r in rows]),
                pa.array([r.insight for r in rows]),
                pa.FixedSizeListArray.from_arrays(vectors.ravel(), list_size=self.vector_dimension),
            ],
            schema=self.vector_schema,
        )

    def resolution_batch(self, resolution: Resolution) -> pa.Table:
        return pa.Table.from_pylist(
            [
                {
                    "change_set_id": resolution.change_set_id,
                    "item_type": resolution.item_type.value,
                    "content_key": resolution.content_key,
                    "resolved": resolution.resolved,
                    "updated_at": resolution.updated_at.isoformat(),
                }
            ],
            schema=self.resolution_schema,
        )

    def change_set_from_row(self, row: dict[str, Any]) -> ChangeSet:
        return ChangeSet.model_validate_json(row["payload"])

    def analysis_from_row(self, row: dict[str, Any]) -> Analysis:
        return Analysis.model_validate_json(row["payload"])

    def vector_from_row(self, row: dict[str, Any]) -> StoredVector:
        vector = row.get("vector")
        return StoredVector(
            analysis_id=row["analysis_id"],
            change_set_id=row["change_set_id"],
            kind=ChangeSetKind(row["kind"]),
            owner=row["owner"],
            repo=row["repo"],
            number=row.get("number"),
            ref=row.get("ref"),
            filename=row["filename"],
            insight=row.get("insight") or "",
            vector=[float(v) for v in vector] if vector is not None else None,
        )

    def resolution_from_row(self, row: dict[str, Any]) -> Resolution:
        return Resolution(
            change_set_id=row["change_set_id"],
            item_type=ItemType(row["item_type"]),
            content_key=row["content_key"],
            resolved=row["resolved"],
            updated_at=row["updated_at"],
        )
