import re
from pathlib import PurePosixPath

from loguru import logger

from revsight.config import AnalysisConfig
from revsight.core.models import ChangeSet, ContentSample, FileChange
from revsight.core.ports import IHostClient


def extract_added_lines(patch: str | None) -> str:
    """Returns the lines a unified diff adds, without their ``+`` marker.

    ``+++`` file headers are skipped. Returns an empty string for deletion-only
    or rename-only diffs.
    """
    if not patch:
        return ""

    added = [
        line[1:]
        for line in patch.splitlines()
        if line.startswith("+") and not line.startswith("+++")
    ]
    return "\n".join(added)


class ContentSelector:
    """Decides which files of a change-set are analysed and what text is sent for each."""

    def __init__(self, host: IHostClient, config: AnalysisConfig) -> None:
        self.host = host
        self.max_content_chars = config.max_content_chars
        self.max_changed_lines = config.max_changed_lines
        self._extensions = {ext.lower() for ext in config.allowed_extensions}
        self._excluded = [re.compile(pattern, re.IGNORECASE) for pattern in config.excluded_patterns]

    def is_eligible(self, file: FileChange) -> bool:
        if file.status == "removed":
            return False
        if PurePosixPath(file.filename).suffix.lower() not in self._extensions:
            return False
        if file.changes >= self.max_changed_lines:
            logger.debug("Skipping {}: {} changed lines", file.filename, file.changes)
            return False
        return not any(pattern.search(file.filename) for pattern in self._excluded)

    async def select(
        self, change_set: ChangeSet, file: FileChange, head_ref: str
    ) -> ContentSample | None:
        """Returns the sample to analyse for ``file`` or None when there is nothing usable."""
        text: str | None = None
        source = "full_content"

        if file.status == "modified":
            added = extract_added_lines(file.patch)
            if added.strip():
                text, source = added, "diff_additions"
            else:
                logger.debug("No added lines in diff of {}, using full content", file.filename)

        if text is None:
            text = await self._fetch_full_content(change_set, file.filename, head_ref)

        if text is None or not text.strip():
            logger.warning("No content for {} in {}, skipping", file.filename, change_set.label)
            return None

        original_length = len(text)
        truncated = original_length > self.max_content_chars
        if truncated:
            logger.warning(
                "Content for {} too long ({} chars), truncating to {}",
                file.filename,
                original_length,
                self.max_content_chars,
            )
            text = text[: self.max_content_chars]

        return ContentSample(
            filename=file.filename,
            text=text,
            source=source,
            original_length=original_length,
            truncated=truncated,
        )

    async def _fetch_full_content(
        self, change_set: ChangeSet, path: str, head_ref: str
    ) -> str | None:
        try:
            return await self.host.get_file_content(change_set.owner, change_set.repo, path, head_ref)
        except Exception as e:
            logger.warning("Fetching {} at {} failed: {}", path, head_ref, e)
            return None
