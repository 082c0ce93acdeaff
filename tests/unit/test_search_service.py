"""Unit tests for the SimilaritySearchService."""
import math
from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from revsight.config import SearchConfig
from revsight.core.errors import InvalidQueryError, OracleError
from revsight.core.models import ChangeSetKind, StoredVector
from revsight.services.search import MAX_QUERY_TEXT_CHARS, SimilaritySearchService


def _vector(analysis_id: str, filename: str, vector, owner: str = "acme") -> StoredVector:
    return StoredVector(
        analysis_id=analysis_id,
        change_set_id=f"cs-{analysis_id}",
        kind=ChangeSetKind.PULL_REQUEST,
        owner=owner,
        repo="api",
        number=1,
        filename=filename,
        insight=f"about {filename}",
        vector=vector,
    )


@pytest.fixture
def corpus():
    return [
        _vector("a1", "query.py", [1.0, 0.0, 0.0]),
        _vector("a1", "same.py", [1.0, 0.0, 0.0]),
        _vector("a2", "close.py", [0.9, 0.1, 0.0]),
        _vector("a2", "orthogonal.py", [0.0, 1.0, 0.0]),
        _vector("a3", "opposite.py", [-1.0, 0.0, 0.0]),
        _vector("a3", "short.py", [1.0, 0.0]),
        _vector("a3", "zero.py", [0.0, 0.0, 0.0]),
        _vector("a3", "missing.py", None),
    ]


@pytest.fixture
def store(corpus):
    store = MagicMock()
    store.iter_vectors.side_effect = lambda: iter(corpus)
    store.get_file_vector.return_value = [1.0, 0.0, 0.0]
    return store


@pytest.fixture
def oracle():
    oracle = MagicMock()
    oracle.embed = AsyncMock(return_value={"embeddings": [{"values": [0.0, 1.0, 0.0]}]})
    return oracle


@pytest.fixture
def config():
    return SearchConfig(vector_dimension=3, limit=5, min_score=0.0, text_limit=10, text_min_score=0.4)


@pytest.fixture
def service(store, oracle, config):
    return SimilaritySearchService(store, oracle, config)


class TestRank:
    """Tests for the rank method."""

    def test_sorted_non_increasing(self, service, corpus):
        """Test that scores never increase down the list."""
        results = service.rank(np.array([1.0, 0.2, 0.0]), corpus, limit=10, min_score=-1.0)

        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)

    def test_invalid_candidates_are_skipped(self, service, corpus):
        """Test that wrong-dimension, zero and missing vectors are never returned."""
        results = service.rank(np.array([1.0, 0.0, 0.0]), corpus, limit=10, min_score=-2.0)

        names = {r.filename for r in results}
        assert names.isdisjoint({"short.py", "zero.py", "missing.py"})
        assert "opposite.py" in names

    def test_threshold_is_strict(self, service, corpus):
        """Test that a score equal to min_score is excluded."""
        results = service.rank(np.array([0.0, 1.0, 0.0]), corpus, limit=10, min_score=0.0)

        names = [r.filename for r in results]
        assert names[0] == "orthogonal.py"
        assert "query.py" not in names

    def test_limit(self, service, corpus):
        """Test that at most `limit` results are returned."""
        results = service.rank(np.array([1.0, 0.0, 0.0]), corpus, limit=2, min_score=0.0)

        assert len(results) == 2

    def test_ties_keep_corpus_order(self, service, corpus):
        """Test that equal scores are ordered as the store yielded them."""
        results = service.rank(np.array([1.0, 0.0, 0.0]), corpus, limit=2, min_score=0.0)

        assert [r.filename for r in results] == ["query.py", "same.py"]

    def test_zero_query_returns_nothing(self, service, corpus):
        """Test that a zero query vector has no defined similarity."""
        assert service.rank(np.zeros(3), corpus, limit=5, min_score=-1.0) == []

    def test_non_finite_query_returns_nothing(self, service, corpus):
        """Test that a query vector with an infinite component is never scored."""
        assert service.rank(np.array([np.inf, 0.1, 0.1]), corpus, limit=5, min_score=-1.0) == []

    def test_non_finite_candidates_never_rank(self, service, corpus):
        """Test that NaN or infinite candidates are skipped and every score is finite."""
        corpus.append(_vector("a4", "overflow.py", [math.inf, 0.1, 0.1]))
        corpus.append(_vector("a4", "nan.py", [math.nan, 0.1, 0.1]))

        results = service.rank(np.array([1.0, 0.1, 0.1]), corpus, limit=20, min_score=-2.0)

        names = {r.filename for r in results}
        assert names.isdisjoint({"overflow.py", "nan.py"})
        assert all(math.isfinite(r.score) for r in results)

    def test_zero_limit_returns_nothing(self, service, corpus):
        """Test that limit 0 yields an empty list."""
        assert service.rank(np.array([1.0, 0.0, 0.0]), corpus, limit=0, min_score=-1.0) == []


class TestFindSimilar:
    """Tests for find_similar."""

    async def test_excludes_query_pair(self, service):
        """Test that the source file is never its own match."""
        results = await service.find_similar("a1", "query.py")

        assert ("a1", "query.py") not in {(r.analysis_id, r.filename) for r in results}

    async def test_identical_content_scores_one(self, service):
        """Test that an identical vector elsewhere scores about 1.0 and ranks first."""
        results = await service.find_similar("a1", "query.py")

        assert results[0].filename == "same.py"
        assert math.isclose(results[0].score, 1.0, abs_tol=1e-9)
        assert results[0].insight == "about same.py"

    async def test_missing_source_vector_returns_empty(self, service, store):
        """Test that an unknown file or a file without embedding yields no results."""
        store.get_file_vector.return_value = None

        assert await service.find_similar("a1", "nothing.py") == []
        store.iter_vectors.assert_not_called()

    async def test_uses_configured_defaults(self, service, store):
        """Test that min_score 0 drops orthogonal and opposite files."""
        results = await service.find_similar("a1", "query.py")

        names = [r.filename for r in results]
        assert names == ["same.py", "close.py"]
        store.get_file_vector.assert_called_once_with("a1", "query.py")

    async def test_explicit_zero_limit_is_kept(self, service):
        """Test that limit=0 is not replaced by the configured default."""
        assert await service.find_similar("a1", "query.py", limit=0) == []


class TestSearchText:
    """Tests for search_text."""

    async def test_embeds_and_ranks(self, service, oracle):
        """Test that free text is embedded and ranked with the text threshold."""
        results = await service.search_text("where do we parse headers?")

        oracle.embed.assert_awaited_once_with("where do we parse headers?")
        assert [r.filename for r in results] == ["orthogonal.py"]

    @pytest.mark.parametrize("text", ["", "   ", "x" * (MAX_QUERY_TEXT_CHARS + 1)])
    async def test_invalid_text_is_rejected(self, service, text):
        """Test the empty and length bounds of the query."""
        with pytest.raises(InvalidQueryError):
            await service.search_text(text)

    async def test_invalid_embedding_raises(self, service, oracle):
        """Test that a query embedding of the wrong shape is an oracle error."""
        oracle.embed.return_value = {"values": [0.1, 0.2]}

        with pytest.raises(OracleError):
            await service.search_text("query")


class TestPrintResults:
    """Tests for print_results."""

    def test_no_results(self, service, caplog):
        """Test the message for an empty result list."""
        service.print_results([])
        assert "No similar code found" in caplog.text

    def test_results_are_logged(self, service, corpus, caplog):
        """Test that each result's score and provenance are printed."""
        results = service.rank(np.array([1.0, 0.0, 0.0]), corpus, limit=1, min_score=0.0)

        service.print_results(results)

        assert "acme/api#1" in caplog.text
        assert "query.py" in caplog.text
