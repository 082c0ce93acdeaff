import asyncio

from loguru import logger

from revsight.core.models import ChangeSet, FileAnalysisResult, FileChange
from revsight.services.file_analyzer import FileAnalyzer
from revsight.services.selection import ContentSelector


class FanOutOrchestrator:
    """Runs selection and analysis for every eligible file of a change-set concurrently."""

    def __init__(
        self,
        selector: ContentSelector,
        analyzer: FileAnalyzer,
        concurrency: int = 5,
    ) -> None:
        self.selector = selector
        self.analyzer = analyzer
        self.concurrency = max(1, concurrency)

    def eligible_files(self, files: list[FileChange], max_files: int) -> list[FileChange]:
        """Filters ``files`` and keeps the first ``max_files`` in host order."""
        eligible = [f for f in files if self.selector.is_eligible(f)]
        if len(eligible) > max_files:
            logger.info("Capping {} eligible files at {}", len(eligible), max_files)
        return eligible[:max_files]

    async def run(
        self,
        change_set: ChangeSet,
        files: list[FileChange],
        head_ref: str,
        max_files: int,
    ) -> list[FileAnalysisResult]:
        """Returns the successful per-file results, in eligible-file order.

        Files whose selection or analysis fails are dropped without affecting
        the others. Returns only after every file pipeline has settled.
        """
        selected = self.eligible_files(files, max_files)
        logger.info(
            "Analysing {} of {} files for {}", len(selected), len(files), change_set.label
        )

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _pipeline(file: FileChange) -> FileAnalysisResult | None:
            async with semaphore:
                try:
                    sample = await self.selector.select(change_set, file, head_ref)
                    if sample is None:
                        return None
                    return await self.analyzer.analyze(sample)
                except Exception as e:
                    logger.error("Pipeline for {} failed: {}", file.filename, e)
                    return None

        outcomes = await asyncio.gather(*(_pipeline(f) for f in selected))
        results = [r for r in outcomes if r is not None]

        logger.info(
            "Analysed {} of {} selected files for {}", len(results), len(selected), change_set.label
        )
        return results
