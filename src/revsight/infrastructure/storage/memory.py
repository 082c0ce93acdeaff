import threading
from collections.abc import Iterator

from revsight.core.models import (
    Analysis,
    ChangeSet,
    ItemType,
    Resolution,
    StoredVector,
)


class InMemoryStore:
    """Concrete implementation of IDocumentStore holding everything in process memory.

    Records are copied on the way in and out so callers never share state with
    the store.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._change_sets: dict[str, ChangeSet] = {}
        self._analyses: dict[str, Analysis] = {}
        self._resolutions: dict[tuple[str, ItemType, str], Resolution] = {}

    def clear(self) -> None:
        with self._lock:
            self._change_sets.clear()
            self._analyses.clear()
            self._resolutions.clear()

    def get_change_set(self, change_set_id: str) -> ChangeSet | None:
        change_set = self._change_sets.get(change_set_id)
        return change_set.model_copy(deep=True) if change_set else None

    def upsert_change_set(self, change_set: ChangeSet) -> None:
        with self._lock:
            self._change_sets[change_set.id] = change_set.model_copy(deep=True)

    def get_analysis(self, analysis_id: str) -> Analysis | None:
        analysis = self._analyses.get(analysis_id)
        return analysis.model_copy(deep=True) if analysis else None

    def get_analysis_for_change_set(self, change_set_id: str) -> Analysis | None:
        for analysis in self._analyses.values():
            if analysis.change_set_id == change_set_id:
                return analysis.model_copy(deep=True)
        return None

    def analyses_for(self, change_set_id: str) -> list[Analysis]:
        """Returns every stored analysis that references ``change_set_id``."""
        return [a for a in self._analyses.values() if a.change_set_id == change_set_id]

    def replace_analysis(self, change_set: ChangeSet, analysis: Analysis) -> None:
        with self._lock:
            for stale in self.analyses_for(change_set.id):
                del self._analyses[stale.id]
            self._analyses[analysis.id] = analysis.model_copy(deep=True)
            self._change_sets[change_set.id] = change_set.model_copy(deep=True)

    def get_file_vector(self, analysis_id: str, filename: str) -> list[float] | None:
        analysis = self._analyses.get(analysis_id)
        if analysis is None:
            return None
        for result in analysis.file_results:
            if result.filename == filename and result.embedding is not None:
                return list(result.embedding)
        return None

    def iter_vectors(self) -> Iterator[StoredVector]:
        for analysis in list(self._analyses.values()):
            change_set = self._change_sets.get(analysis.change_set_id)
            if change_set is None:
                continue
            for result in analysis.file_results:
                if result.embedding is None:
                    continue
                yield StoredVector(
                    analysis_id=analysis.id,
                    change_set_id=change_set.id,
                    kind=change_set.kind,
                    owner=change_set.owner,
                    repo=change_set.repo,
                    number=change_set.number,
                    ref=change_set.ref,
                    filename=result.filename,
                    insight=result.insight,
                    vector=list(result.embedding),
                )

    def get_resolutions(self, change_set_id: str) -> list[Resolution]:
        return [r for key, r in self._resolutions.items() if key[0] == change_set_id]

    def set_resolution(self, resolution: Resolution) -> None:
        with self._lock:
            key = (resolution.change_set_id, resolution.item_type, resolution.content_key)
            self._resolutions[key] = resolution.model_copy()
