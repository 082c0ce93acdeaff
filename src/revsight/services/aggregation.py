from statistics import fmean

from loguru import logger

from revsight.core.models import (
    Analysis,
    ChangeSet,
    FileAnalysisResult,
    Metrics,
    SecurityIssue,
    SummaryContext,
)
from revsight.core.ports import IAnalysisOracle

FALLBACK_SUMMARY = "Overall analysis summary could not be generated."


def _mean(values: list[float]) -> float:
    return fmean(values) if values else 0.0


def aggregate_metrics(results: list[FileAnalysisResult]) -> Metrics:
    """Sums sizes and duplicate counts; averages complexities to one decimal."""
    return Metrics(
        lines_of_code=sum(r.metrics.lines_of_code for r in results),
        cyclomatic_complexity=round(_mean([r.metrics.cyclomatic_complexity for r in results]), 1),
        cognitive_complexity=round(_mean([r.metrics.cognitive_complexity for r in results]), 1),
        duplicate_blocks=sum(r.metrics.duplicate_blocks for r in results),
    )


def summary_context(
    title: str,
    quality_score: float,
    security_issues: list[SecurityIssue],
    suggestion_count: int,
    results: list[FileAnalysisResult],
) -> SummaryContext:
    return SummaryContext(
        title=title,
        quality_score=quality_score,
        critical_issues=sum(1 for i in security_issues if i.severity == "critical"),
        high_issues=sum(1 for i in security_issues if i.severity == "high"),
        suggestion_count=suggestion_count,
        file_count=len(results),
        file_insights=[(r.filename, r.insight) for r in results],
    )


class Aggregator:
    """Reduces per-file results into the Analysis record of a change-set."""

    def __init__(self, oracle: IAnalysisOracle) -> None:
        self.oracle = oracle

    async def aggregate(
        self, results: list[FileAnalysisResult], change_set: ChangeSet, title: str
    ) -> Analysis:
        security_issues = [issue for r in results for issue in r.security_issues]
        suggestions = [suggestion for r in results for suggestion in r.suggestions]
        quality = _mean([r.quality_score for r in results])

        context = summary_context(title, quality, security_issues, len(suggestions), results)

        return Analysis(
            change_set_id=change_set.id,
            quality_score=quality,
            complexity=_mean([r.complexity for r in results]),
            maintainability=_mean([r.maintainability for r in results]),
            security_issues=security_issues,
            suggestions=suggestions,
            metrics=aggregate_metrics(results),
            insight=await self._narrative(context),
            file_results=list(results),
        )

    async def resummarize(self, analysis: Analysis, title: str) -> str:
        """Regenerates the narrative of a stored analysis from its recorded findings.

        Unlike aggregation, an oracle failure is raised to the caller; only a
        blank answer falls back to the fixed sentence.
        """
        context = summary_context(
            title,
            analysis.quality_score,
            analysis.security_issues,
            len(analysis.suggestions),
            analysis.file_results,
        )
        if context.file_count == 0:
            return FALLBACK_SUMMARY

        summary = await self.oracle.summarize(context)
        return summary.strip() or FALLBACK_SUMMARY

    async def _narrative(self, context: SummaryContext) -> str:
        if context.file_count == 0:
            logger.info("No analysed files for {}, using fallback summary", context.title)
            return FALLBACK_SUMMARY

        try:
            summary = await self.oracle.summarize(context)
        except Exception as e:
            logger.error("Summary generation failed for {}: {}", context.title, e)
            return FALLBACK_SUMMARY

        return summary.strip() or FALLBACK_SUMMARY
