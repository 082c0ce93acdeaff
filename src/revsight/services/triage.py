import asyncio

from loguru import logger

from revsight.core.errors import ItemNotFoundError, RecordNotFoundError
from revsight.core.models import (
    Analysis,
    ItemIdentifier,
    ItemType,
    Resolution,
    SecurityIssue,
    Suggestion,
)
from revsight.core.ports import IDocumentStore


class TriageService:
    """Keeps user-driven ``resolved`` flags apart from regenerated analyses.

    Flags are stored per change-set under the content key of the item
    (title, file, line, description), so they survive re-analysis of the same
    change-set and never leak into another one.
    """

    def __init__(self, store: IDocumentStore) -> None:
        self.store = store

    async def _load(self, analysis_id: str) -> Analysis:
        analysis = await asyncio.to_thread(self.store.get_analysis, analysis_id)
        if analysis is None:
            raise RecordNotFoundError("Analysis", analysis_id)
        return analysis

    async def view(self, analysis_id: str) -> Analysis:
        """Returns the analysis with its stored resolved flags applied."""
        analysis = await self._load(analysis_id)
        resolutions = await asyncio.to_thread(self.store.get_resolutions, analysis.change_set_id)
        flags = {(r.item_type, r.content_key): r.resolved for r in resolutions}

        def _apply(items: list, item_type: ItemType) -> list:
            return [
                item.model_copy(
                    update={
                        "resolved": flags.get(
                            (item_type, ItemIdentifier.of(item).content_key()), False
                        )
                    }
                )
                for item in items
            ]

        file_results = [
            result.model_copy(
                update={
                    "security_issues": _apply(result.security_issues, ItemType.SECURITY),
                    "suggestions": _apply(result.suggestions, ItemType.SUGGESTION),
                }
            )
            for result in analysis.file_results
        ]
        return analysis.model_copy(
            update={
                "security_issues": _apply(analysis.security_issues, ItemType.SECURITY),
                "suggestions": _apply(analysis.suggestions, ItemType.SUGGESTION),
                "file_results": file_results,
            }
        )

    async def set_resolved(
        self,
        analysis_id: str,
        item_type: ItemType,
        identifier: ItemIdentifier,
        resolved: bool,
    ) -> Resolution:
        """Records the flag for the item of ``analysis_id`` matching ``identifier``."""
        analysis = await self._load(analysis_id)
        items: list[SecurityIssue] | list[Suggestion] = (
            analysis.security_issues if item_type == ItemType.SECURITY else analysis.suggestions
        )

        key = identifier.content_key()
        if not any(ItemIdentifier.of(item).content_key() == key for item in items):
            raise ItemNotFoundError(
                "Item not found with the provided identifiers.",
                details={"analysis": analysis_id, "title": identifier.title},
            )

        resolution = Resolution(
            change_set_id=analysis.change_set_id,
            item_type=item_type,
            content_key=key,
            resolved=resolved,
        )
        await asyncio.to_thread(self.store.set_resolution, resolution)
        logger.info(
            "Marked {} '{}' in {} as {}",
            item_type,
            identifier.title,
            analysis.change_set_id,
            "resolved" if resolved else "open",
        )
        return resolution
