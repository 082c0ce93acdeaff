import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from revsight.core.errors import (
    CompensationError,
    PersistenceError,
    RecordNotFoundError,
    RevsightError,
)
from revsight.core.models import (
    Analysis,
    AnalysisStatus,
    AnalysisSummary,
    ChangeSet,
    ChangeSetKind,
    ChangeSetMetadata,
    FileChange,
    FileSummary,
    make_change_set_id,
)
from revsight.core.ports import IDocumentStore, IHostClient
from revsight.services.aggregation import Aggregator
from revsight.services.fanout import FanOutOrchestrator

Fetcher = Callable[[], Awaitable[tuple[ChangeSetMetadata, list[FileChange]]]]


class AnalysisCoordinator:
    """Drives one analysis run of a change-set through its status lifecycle.

    ``pending`` is written before any host or oracle call, and the move out of
    ``pending`` is the last write of the run whatever the outcome. A prior
    Analysis of the same change-set is deleted before the new one is stored;
    analyses are never merged. Concurrent runs for one change-set are not
    serialised: the last writer wins.
    """

    def __init__(
        self,
        host: IHostClient,
        store: IDocumentStore,
        orchestrator: FanOutOrchestrator,
        aggregator: Aggregator,
        max_files: int = 10,
        max_scan_files: int = 5,
    ) -> None:
        self.host = host
        self.store = store
        self.orchestrator = orchestrator
        self.aggregator = aggregator
        self.max_files = max_files
        self.max_scan_files = max_scan_files

    async def request_analysis(self, owner: str, repo: str, number: int) -> Analysis:
        """Analyses pull request ``number``, replacing any earlier analysis of it."""
        change_set = await self._begin(ChangeSetKind.PULL_REQUEST, owner, repo, number=number)

        async def _fetch() -> tuple[ChangeSetMetadata, list[FileChange]]:
            metadata = await self.host.get_change_set_metadata(owner, repo, number)
            files = await self.host.get_changed_files(owner, repo, number)
            return metadata, files

        return await self._run(change_set, _fetch, self.max_files)

    async def request_scan(self, owner: str, repo: str, ref: str | None = None) -> Analysis:
        """Analyses the repository snapshot at ``ref`` (default branch when None)."""
        change_set = await self._begin(ChangeSetKind.SNAPSHOT, owner, repo, ref=ref)

        async def _fetch() -> tuple[ChangeSetMetadata, list[FileChange]]:
            metadata = await self.host.get_snapshot_metadata(owner, repo, ref)
            files = await self.host.list_snapshot_files(owner, repo, metadata.head_sha)
            return metadata, files

        return await self._run(change_set, _fetch, self.max_scan_files)

    async def get_change_set(self, change_set_id: str) -> ChangeSet:
        change_set = await self._store(self.store.get_change_set, change_set_id)
        if change_set is None:
            raise RecordNotFoundError("Change-set", change_set_id)
        return change_set

    async def summarize_analysis(self, analysis_id: str) -> AnalysisSummary:
        """Regenerates the narrative summary of a stored analysis without storing it."""
        analysis = await self._store(self.store.get_analysis, analysis_id)
        if analysis is None:
            raise RecordNotFoundError("Analysis", analysis_id)

        change_set = await self._store(self.store.get_change_set, analysis.change_set_id)
        if change_set is None:
            raise RecordNotFoundError("Change-set", analysis.change_set_id)

        title = change_set.title or change_set.label
        summary = await self.aggregator.resummarize(analysis, title)
        logger.info("Regenerated summary of analysis {} for {}", analysis_id, change_set.label)
        return AnalysisSummary(
            analysis_id=analysis.id,
            change_set_id=change_set.id,
            title=title,
            summary=summary,
        )

    async def _store(self, operation: Callable[..., Any], *args: Any) -> Any:
        """Runs a blocking store call off the event loop, normalising its failures."""
        try:
            return await asyncio.to_thread(operation, *args)
        except RevsightError:
            raise
        except Exception as e:
            name = getattr(operation, "__name__", "store operation")
            raise PersistenceError(f"{name} failed: {e}") from e

    async def _begin(
        self,
        kind: ChangeSetKind,
        owner: str,
        repo: str,
        number: int | None = None,
        ref: str | None = None,
    ) -> ChangeSet:
        change_set_id = make_change_set_id(kind, owner, repo, number=number, ref=ref)
        existing = await self._store(self.store.get_change_set, change_set_id)

        if existing is None:
            change_set = ChangeSet(
                id=change_set_id,
                kind=kind,
                owner=owner,
                repo=repo,
                number=number,
                ref=ref,
                status=AnalysisStatus.PENDING,
            )
        else:
            change_set = existing.model_copy(
                update={
                    "status": AnalysisStatus.PENDING,
                    "error": None,
                    "updated_at": datetime.now(UTC),
                }
            )

        await self._store(self.store.upsert_change_set, change_set)
        logger.info("{} -> {}", change_set.label, AnalysisStatus.PENDING)
        return change_set

    async def _run(self, change_set: ChangeSet, fetch: Fetcher, max_files: int) -> Analysis:
        try:
            metadata, files = await fetch()
            results = await self.orchestrator.run(change_set, files, metadata.head_sha, max_files)
            analysis = await self.aggregator.aggregate(results, change_set, metadata.title)

            analyzed = change_set.model_copy(
                update={
                    "status": AnalysisStatus.ANALYZED,
                    "analysis_id": analysis.id,
                    "error": None,
                    "title": metadata.title,
                    "state": metadata.state,
                    "author": metadata.author,
                    "head_sha": metadata.head_sha,
                    "files": [FileSummary(**f.model_dump(exclude={"patch"})) for f in files],
                    "updated_at": datetime.now(UTC),
                }
            )
            if change_set.analysis_id:
                logger.info(
                    "Replacing analysis {} of {}", change_set.analysis_id, change_set.label
                )
            await self._store(self.store.replace_analysis, analyzed, analysis)
        except Exception as e:
            await self._compensate(change_set, e)
            raise

        logger.info(
            "{} -> {} (analysis {}, {} files, quality {:.1f})",
            change_set.label,
            AnalysisStatus.ANALYZED,
            analysis.id,
            len(analysis.file_results),
            analysis.quality_score,
        )
        return analysis

    async def _compensate(self, change_set: ChangeSet, error: Exception) -> None:
        """Best-effort move to ``failed``; not transactional with the run."""
        failed = change_set.model_copy(
            update={
                "status": AnalysisStatus.FAILED,
                "error": str(error)[:500],
                "updated_at": datetime.now(UTC),
            }
        )
        try:
            await self._store(self.store.upsert_change_set, failed)
        except Exception as compensation_error:
            logger.error(
                "Could not mark {} as failed ({}) after: {}",
                change_set.label,
                compensation_error,
                error,
            )
            raise CompensationError(error, compensation_error) from error

        logger.warning("{} -> {}: {}", change_set.label, AnalysisStatus.FAILED, error)
