"""Unit tests for InMemoryStore."""
import pytest

from revsight.core.models import (
    Analysis,
    AnalysisStatus,
    ChangeSet,
    ChangeSetKind,
    FileAnalysisResult,
    ItemType,
    Resolution,
)
from revsight.infrastructure.storage.memory import InMemoryStore


def _change_set(change_set_id: str = "cs1") -> ChangeSet:
    return ChangeSet(id=change_set_id, kind=ChangeSetKind.PULL_REQUEST, owner="acme", repo="api", number=1)


def _analysis(change_set_id: str = "cs1", embedding=None) -> Analysis:
    return Analysis(
        change_set_id=change_set_id,
        file_results=[
            FileAnalysisResult(
                filename="a.py", quality_score=5, complexity=5, maintainability=5, embedding=embedding
            )
        ],
    )


@pytest.fixture
def store():
    return InMemoryStore()


class TestChangeSets:
    """Tests for change-set records."""

    def test_upsert_replaces(self, store):
        """Test that an upsert fully replaces the stored record."""
        store.upsert_change_set(_change_set())
        store.upsert_change_set(_change_set().model_copy(update={"status": AnalysisStatus.FAILED}))

        assert store.get_change_set("cs1").status == AnalysisStatus.FAILED

    def test_records_are_copied(self, store):
        """Test that mutating a returned record does not change the store."""
        store.upsert_change_set(_change_set())

        fetched = store.get_change_set("cs1")
        fetched.status = AnalysisStatus.ANALYZED

        assert store.get_change_set("cs1").status == AnalysisStatus.NOT_STARTED


class TestReplaceAnalysis:
    """Tests for replace_analysis."""

    def test_only_one_analysis_per_change_set(self, store):
        """Test that the prior analysis and its vectors are removed."""
        first = _analysis(embedding=[1.0, 0.0])
        second = _analysis(embedding=[0.0, 1.0])

        store.replace_analysis(_change_set(), first)
        store.replace_analysis(_change_set(), second)

        assert store.get_analysis(first.id) is None
        assert store.get_analysis_for_change_set("cs1").id == second.id
        assert [v.analysis_id for v in store.iter_vectors()] == [second.id]

    def test_other_change_sets_untouched(self, store):
        """Test that replacing one change-set keeps the others."""
        other = _analysis("cs2")
        store.replace_analysis(_change_set("cs2"), other)
        store.replace_analysis(_change_set("cs1"), _analysis("cs1"))

        assert store.get_analysis(other.id) is not None


class TestVectors:
    """Tests for vector reads."""

    def test_get_file_vector(self, store):
        """Test that the embedding of one file can be read back."""
        analysis = _analysis(embedding=[0.5, 0.5])
        store.replace_analysis(_change_set(), analysis)

        assert store.get_file_vector(analysis.id, "a.py") == [0.5, 0.5]
        assert store.get_file_vector(analysis.id, "b.py") is None
        assert store.get_file_vector("missing", "a.py") is None

    def test_iter_vectors_skips_missing_embeddings(self, store):
        """Test that files without embedding are not part of the corpus."""
        store.replace_analysis(_change_set(), _analysis(embedding=None))

        assert list(store.iter_vectors()) == []

    def test_iter_vectors_carries_provenance(self, store):
        """Test that corpus rows link back to their change-set."""
        analysis = _analysis(embedding=[1.0, 0.0])
        store.replace_analysis(_change_set(), analysis)

        (row,) = store.iter_vectors()
        assert (row.owner, row.repo, row.number, row.filename) == ("acme", "api", 1, "a.py")


class TestResolutions:
    """Tests for the resolution side table."""

    def test_set_resolution_upserts(self, store):
        """Test that one key holds one flag."""
        store.set_resolution(Resolution(change_set_id="cs1", item_type=ItemType.SECURITY, content_key="k", resolved=True))
        store.set_resolution(Resolution(change_set_id="cs1", item_type=ItemType.SECURITY, content_key="k", resolved=False))

        (resolution,) = store.get_resolutions("cs1")
        assert resolution.resolved is False
        assert store.get_resolutions("cs2") == []

    def test_clear(self, store):
        """Test that clear drops every record."""
        store.upsert_change_set(_change_set())
        store.set_resolution(Resolution(change_set_id="cs1", item_type=ItemType.SECURITY, content_key="k", resolved=True))

        store.clear()

        assert store.get_change_set("cs1") is None
        assert store.get_resolutions("cs1") == []
