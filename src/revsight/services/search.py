import asyncio
from collections.abc import Iterable

import numpy as np
from loguru import logger
from numpy.typing import NDArray

from revsight.config import SearchConfig
from revsight.core.errors import InvalidQueryError, OracleError
from revsight.core.models import SimilarityResult, StoredVector
from revsight.core.ports import IAnalysisOracle, IDocumentStore
from revsight.infrastructure.oracle.envelopes import validate_embedding

MAX_QUERY_TEXT_CHARS = 5000


class SimilaritySearchService:
    """Brute-force cosine ranking of stored file embeddings.

    There is no index: every query scans the whole corpus held by the store.
    """

    def __init__(
        self,
        store: IDocumentStore,
        oracle: IAnalysisOracle,
        config: SearchConfig,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.config = config

    def rank(
        self,
        query_vector: NDArray[np.float64],
        candidates: Iterable[StoredVector],
        limit: int,
        min_score: float,
        exclude: tuple[str, str] | None = None,
    ) -> list[SimilarityResult]:
        """Scores ``candidates`` against ``query_vector`` and returns the top ``limit``
        with a score strictly above ``min_score``, best first."""
        dimension = self.config.vector_dimension
        if limit <= 0 or query_vector.shape != (dimension,):
            return []
        if not np.isfinite(query_vector).all():
            return []
        query_norm = float(np.linalg.norm(query_vector))
        if not np.isfinite(query_norm) or query_norm == 0.0:
            return []

        rows: list[StoredVector] = []
        for item in candidates:
            if exclude is not None and (item.analysis_id, item.filename) == exclude:
                continue
            if item.vector is None or len(item.vector) != dimension:
                continue
            rows.append(item)

        if not rows:
            return []

        matrix = np.asarray([row.vector for row in rows], dtype=np.float64)
        with np.errstate(over="ignore", invalid="ignore"):
            norms = np.linalg.norm(matrix, axis=1)
            usable = np.isfinite(norms) & (norms > 0)

            scores = np.full(len(rows), -np.inf)
            scores[usable] = (matrix[usable] @ query_vector) / (norms[usable] * query_norm)
        # NaN or infinite scores never rank
        finite = np.isfinite(scores)
        scores[~finite] = -np.inf
        scores[finite] = np.clip(scores[finite], -1.0, 1.0)

        results: list[SimilarityResult] = []
        for index in np.argsort(-scores, kind="stable"):
            score = float(scores[index])
            if score == -np.inf or score <= min_score:
                break
            row = rows[index]
            results.append(
                SimilarityResult(
                    owner=row.owner,
                    repo=row.repo,
                    filename=row.filename,
                    analysis_id=row.analysis_id,
                    change_set_id=row.change_set_id,
                    kind=row.kind,
                    number=row.number,
                    ref=row.ref,
                    score=score,
                    insight=row.insight,
                )
            )
            if len(results) >= limit:
                break
        return results

    async def find_similar(
        self, analysis_id: str, filename: str, limit: int | None = None
    ) -> list[SimilarityResult]:
        """Returns stored files most similar to ``filename`` of ``analysis_id``.

        An empty list means the source file has no usable stored vector or
        nothing scored above the threshold.
        """
        source = await asyncio.to_thread(self.store.get_file_vector, analysis_id, filename)
        if source is None:
            logger.info("No stored embedding for {} in {}", filename, analysis_id)
            return []

        corpus = await asyncio.to_thread(lambda: list(self.store.iter_vectors()))
        results = self.rank(
            np.asarray(source, dtype=np.float64),
            corpus,
            limit=self.config.limit if limit is None else limit,
            min_score=self.config.min_score,
            exclude=(analysis_id, filename),
        )
        logger.info(
            "Similarity scan for {} over {} vectors: {} matches", filename, len(corpus), len(results)
        )
        return results

    async def search_text(self, query_text: str, limit: int | None = None) -> list[SimilarityResult]:
        """Embeds free text and ranks the corpus against it."""
        if not query_text.strip():
            raise InvalidQueryError("Query text cannot be empty.")
        if len(query_text) > MAX_QUERY_TEXT_CHARS:
            raise InvalidQueryError(f"Query text is too long (max {MAX_QUERY_TEXT_CHARS} chars).")

        logger.info("Executing text query: {}", query_text[:100])
        raw = await self.oracle.embed(query_text)
        vector = validate_embedding(raw, self.config.vector_dimension, label="text query")
        if vector is None:
            raise OracleError("Could not generate a valid embedding for the query text.")

        corpus = await asyncio.to_thread(lambda: list(self.store.iter_vectors()))
        return self.rank(
            np.asarray(vector, dtype=np.float64),
            corpus,
            limit=self.config.text_limit if limit is None else limit,
            min_score=self.config.text_min_score,
        )

    def print_results(self, results: list[SimilarityResult]) -> None:
        """Formats and prints the ranked results."""
        if not results:
            logger.info("No similar code found")
            return

        logger.info("Top Results:")
        for res in results:
            origin = f"#{res.number}" if res.number is not None else f"@{res.ref or 'HEAD'}"
            logger.info(
                "[Score: {:.4f} | {}/{}{} | File: {} | Analysis: {}]",
                res.score,
                res.owner,
                res.repo,
                origin,
                res.filename,
                res.analysis_id,
            )
            snippet = res.insight[:100].replace("\n", " ")
            logger.info('  --> "{}..."', snippet)
