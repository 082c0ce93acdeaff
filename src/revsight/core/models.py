import hashlib
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _now() -> datetime:
    return datetime.now(UTC)


class AnalysisStatus(StrEnum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    ANALYZED = "analyzed"
    FAILED = "failed"


class ChangeSetKind(StrEnum):
    PULL_REQUEST = "pull_request"
    SNAPSHOT = "snapshot"


class ItemType(StrEnum):
    SECURITY = "security"
    SUGGESTION = "suggestion"


class OracleModel(BaseModel):
    """Base for models that the AI oracle produces with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SecurityIssue(OracleModel):
    """A security finding reported for one file."""

    title: str
    description: str
    file: str
    line: int | None = None
    severity: Literal["low", "medium", "high", "critical"]
    suggestion: str = ""
    cwe: str | None = None
    type: Literal["vulnerability", "warning", "info"] = "warning"
    resolved: bool = False


class Suggestion(OracleModel):
    """An improvement suggestion reported for one file."""

    title: str
    description: str
    file: str
    line: int | None = None
    type: str = "code_smell"
    priority: Literal["low", "medium", "high"]
    code_example: str | None = None
    resolved: bool = False


class Metrics(OracleModel):
    lines_of_code: int = 0
    cyclomatic_complexity: float = 0.0
    cognitive_complexity: float = 0.0
    duplicate_blocks: int = 0


class CodeAnalysisOutput(OracleModel):
    """The structured answer of the oracle's code-analysis capability."""

    quality_score: float = Field(ge=0, le=10)
    complexity: float = Field(ge=0, le=10)
    maintainability: float = Field(ge=0, le=10)
    security_issues: list[SecurityIssue] = []
    suggestions: list[Suggestion] = []
    metrics: Metrics = Metrics()
    insight: str = Field("", alias="aiInsights")


class FileChange(BaseModel):
    """One file of a change-set as reported by the host."""

    filename: str
    status: str
    patch: str | None = None
    additions: int = 0
    deletions: int = 0
    changes: int = 0


class FileSummary(BaseModel):
    """The persisted, diff-free view of a FileChange."""

    filename: str
    status: str
    additions: int = 0
    deletions: int = 0
    changes: int = 0


class ChangeSetMetadata(BaseModel):
    """Descriptive fields of a pull request or snapshot fetched from the host."""

    title: str
    state: str
    author: str = "unknown"
    head_sha: str
    head_ref: str | None = None
    base_ref: str | None = None
    body: str | None = None


class ContentSample(BaseModel):
    """The text submitted to the oracle for one file."""

    filename: str
    text: str
    source: Literal["diff_additions", "full_content"]
    original_length: int
    truncated: bool = False


class FileAnalysisResult(BaseModel):
    """Per-file analysis output, optionally carrying a validated embedding."""

    filename: str
    quality_score: float
    complexity: float
    maintainability: float
    security_issues: list[SecurityIssue] = []
    suggestions: list[Suggestion] = []
    metrics: Metrics = Metrics()
    insight: str = ""
    embedding: list[float] | None = None


def make_change_set_id(
    kind: ChangeSetKind,
    owner: str,
    repo: str,
    number: int | None = None,
    ref: str | None = None,
) -> str:
    """Derives the stable identity of a change-set from what it points at."""
    target = str(number) if kind == ChangeSetKind.PULL_REQUEST else (ref or "HEAD")
    identity = f"{kind.value}:{owner}/{repo}:{target}".lower()
    return hashlib.sha256(identity.encode("utf-8")).hexdigest()[:16]


class ChangeSet(BaseModel):
    """A pull request or repository snapshot under analysis."""

    id: str
    kind: ChangeSetKind
    owner: str
    repo: str
    number: int | None = None
    ref: str | None = None
    status: AnalysisStatus = AnalysisStatus.NOT_STARTED
    analysis_id: str | None = None
    error: str | None = None

    # Denormalized from the latest host metadata
    title: str | None = None
    state: str | None = None
    author: str | None = None
    head_sha: str | None = None
    files: list[FileSummary] = []
    updated_at: datetime = Field(default_factory=_now)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def label(self) -> str:
        if self.kind == ChangeSetKind.PULL_REQUEST:
            return f"{self.full_name}#{self.number}"
        return f"{self.full_name}@{self.ref or 'HEAD'}"


class Analysis(BaseModel):
    """The aggregate record for a change-set, replaced wholesale on re-analysis."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    change_set_id: str
    quality_score: float = 0.0
    complexity: float = 0.0
    maintainability: float = 0.0
    security_issues: list[SecurityIssue] = []
    suggestions: list[Suggestion] = []
    metrics: Metrics = Metrics()
    insight: str = ""
    file_results: list[FileAnalysisResult] = []
    created_at: datetime = Field(default_factory=_now)


class SummaryContext(BaseModel):
    """Aggregate counts and per-file insights handed to the summarizer."""

    title: str
    quality_score: float
    critical_issues: int
    high_issues: int
    suggestion_count: int
    file_count: int
    file_insights: list[tuple[str, str]] = []


class AnalysisSummary(BaseModel):
    """A narrative regenerated on demand for a stored analysis; not persisted."""

    analysis_id: str
    change_set_id: str
    title: str
    summary: str


class ItemIdentifier(BaseModel):
    """Content-based identity of an issue or suggestion across re-analyses."""

    title: str
    file: str
    line: int | None = None
    description: str

    def content_key(self) -> str:
        line = "" if self.line is None else str(self.line)
        material = "\x1f".join([self.title, self.file, line, self.description])
        return hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]

    @classmethod
    def of(cls, item: SecurityIssue | Suggestion) -> "ItemIdentifier":
        return cls(title=item.title, file=item.file, line=item.line, description=item.description)


class Resolution(BaseModel):
    """A user-driven triage flag kept apart from the regenerated item lists."""

    change_set_id: str
    item_type: ItemType
    content_key: str
    resolved: bool
    updated_at: datetime = Field(default_factory=_now)


class StoredVector(BaseModel):
    """One row of the embedding corpus, with the provenance needed to link back."""

    analysis_id: str
    change_set_id: str
    kind: ChangeSetKind
    owner: str
    repo: str
    number: int | None = None
    ref: str | None = None
    filename: str
    insight: str = ""
    vector: list[float] | None = None


class SimilarityResult(BaseModel):
    """A stored file whose embedding is close to the query vector."""

    owner: str
    repo: str
    filename: str
    analysis_id: str
    change_set_id: str
    kind: ChangeSetKind
    number: int | None = None
    ref: str | None = None
    score: float
    insight: str = ""
