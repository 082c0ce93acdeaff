from loguru import logger

from revsight.core.models import ContentSample, FileAnalysisResult
from revsight.core.ports import IAnalysisOracle
from revsight.infrastructure.oracle.envelopes import validate_embedding


class FileAnalyzer:
    """Wraps the oracle calls for a single file and keeps their failures local."""

    def __init__(self, oracle: IAnalysisOracle, vector_dimension: int) -> None:
        self.oracle = oracle
        self.vector_dimension = vector_dimension

    async def analyze(self, sample: ContentSample) -> FileAnalysisResult | None:
        """Returns the file's result, or None when the analysis call failed.

        An embedding failure only leaves ``embedding`` unset.
        """
        try:
            output = await self.oracle.analyze_code(sample.text, sample.filename)
        except Exception as e:
            logger.error("Analysis failed for {}: {}", sample.filename, e)
            return None

        logger.debug("Analysis done for {} (quality {})", sample.filename, output.quality_score)

        return FileAnalysisResult(
            filename=sample.filename,
            quality_score=output.quality_score,
            complexity=output.complexity,
            maintainability=output.maintainability,
            security_issues=output.security_issues,
            suggestions=output.suggestions,
            metrics=output.metrics,
            insight=output.insight,
            embedding=await self._embed(sample),
        )

    async def _embed(self, sample: ContentSample) -> list[float] | None:
        if not sample.text.strip():
            return None

        try:
            raw = await self.oracle.embed(sample.text, filename=sample.filename)
        except Exception as e:
            logger.error("Embedding failed for {} ({} chars): {}", sample.filename, len(sample.text), e)
            return None

        return validate_embedding(raw, self.vector_dimension, label=sample.filename)
