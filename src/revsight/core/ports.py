from collections.abc import Iterator
from typing import Any, Protocol

import numpy as np
from numpy.typing import NDArray

from revsight.core.models import (
    Analysis,
    ChangeSet,
    ChangeSetMetadata,
    CodeAnalysisOutput,
    FileChange,
    Resolution,
    StoredVector,
    SummaryContext,
)


class IHostClient(Protocol):
    """Protocol defining how the version-control host is queried."""

    async def get_change_set_metadata(
        self, owner: str, repo: str, number: int
    ) -> ChangeSetMetadata:
        """Returns pull request metadata; raises HostNotFoundError when absent."""
        ...

    async def get_changed_files(self, owner: str, repo: str, number: int) -> list[FileChange]:
        """Returns every file of the pull request in host order."""
        ...

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> str | None:
        """Returns the decoded file body at ``ref``, or None when unavailable."""
        ...

    async def get_snapshot_metadata(
        self, owner: str, repo: str, ref: str | None = None
    ) -> ChangeSetMetadata:
        """Resolves a branch (default branch when None) to its head commit."""
        ...

    async def list_snapshot_files(self, owner: str, repo: str, sha: str) -> list[FileChange]:
        """Lists every blob of the tree at ``sha`` as an added FileChange."""
        ...


class IAnalysisOracle(Protocol):
    """Protocol defining the three capabilities of the AI oracle."""

    async def analyze_code(self, content: str, filename: str) -> CodeAnalysisOutput:
        """Returns structured quality and security findings for one file."""
        ...

    async def embed(self, content: str, filename: str | None = None) -> Any:
        """Returns the raw embedding envelope; callers must validate it.

        With ``filename`` the content is embedded as a stored file, without it
        as a search query.
        """
        ...

    async def summarize(self, context: SummaryContext) -> str:
        """Returns a short narrative for a whole change-set."""
        ...


class IEmbedder(Protocol):
    """Protocol defining how a local embedder should behave."""

    @property
    def dimension(self) -> int:
        """Returns the embedding vector dimension size."""
        ...

    def embed_files(self, files: list[tuple[str, str]]) -> NDArray[np.float32]:
        """Converts ``(filename, text)`` pairs into a contiguous float32 NumPy array."""
        ...

    def embed_query(self, text: str) -> NDArray[np.float32]:
        """Converts a search query into a flat float32 NumPy array."""
        ...


class IDocumentStore(Protocol):
    """Protocol defining the durable store for change-sets, analyses and vectors."""

    def clear(self) -> None:
        """Drops every table and starts fresh."""
        ...

    def get_change_set(self, change_set_id: str) -> ChangeSet | None: ...

    def upsert_change_set(self, change_set: ChangeSet) -> None:
        """Inserts or fully replaces the change-set record with the same id."""
        ...

    def get_analysis(self, analysis_id: str) -> Analysis | None: ...

    def get_analysis_for_change_set(self, change_set_id: str) -> Analysis | None: ...

    def replace_analysis(self, change_set: ChangeSet, analysis: Analysis) -> None:
        """Deletes any prior analysis (and its vectors) of the change-set, then
        inserts ``analysis`` and its vectors and writes ``change_set``."""
        ...

    def get_file_vector(self, analysis_id: str, filename: str) -> list[float] | None:
        """Returns the stored embedding of one analysed file, if any."""
        ...

    def iter_vectors(self) -> Iterator[StoredVector]:
        """Yields every stored per-file vector across all analyses."""
        ...

    def get_resolutions(self, change_set_id: str) -> list[Resolution]: ...

    def set_resolution(self, resolution: Resolution) -> None:
        """Inserts or replaces the flag for (change_set_id, item_type, content_key)."""
        ...
