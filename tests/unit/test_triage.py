"""Unit tests for the TriageService."""
import pytest

from revsight.core.errors import ItemNotFoundError, RecordNotFoundError
from revsight.core.models import (
    Analysis,
    ChangeSet,
    ChangeSetKind,
    FileAnalysisResult,
    ItemIdentifier,
    ItemType,
)
from revsight.infrastructure.storage.memory import InMemoryStore
from revsight.services.triage import TriageService


def _change_set(change_set_id: str, number: int) -> ChangeSet:
    return ChangeSet(
        id=change_set_id, kind=ChangeSetKind.PULL_REQUEST, owner="acme", repo="api", number=number
    )


def _analysis(change_set_id: str, output) -> Analysis:
    return Analysis(
        change_set_id=change_set_id,
        security_issues=output.security_issues,
        suggestions=output.suggestions,
        file_results=[FileAnalysisResult(filename="app.py", **output.model_dump())],
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def service(store):
    return TriageService(store)


@pytest.fixture
def stored(store, make_output):
    """Stores one analysis for cs1 and returns it."""
    analysis = _analysis("cs1", make_output())
    store.replace_analysis(_change_set("cs1", 1), analysis)
    return analysis


class TestSetResolved:
    """Tests for set_resolved."""

    async def test_resolve_issue(self, service, stored):
        """Test that a resolved issue shows as resolved in the view."""
        identifier = ItemIdentifier.of(stored.security_issues[0])

        resolution = await service.set_resolved(stored.id, ItemType.SECURITY, identifier, True)
        view = await service.view(stored.id)

        assert resolution.change_set_id == "cs1"
        assert view.security_issues[0].resolved is True
        assert view.file_results[0].security_issues[0].resolved is True
        assert view.suggestions[0].resolved is False

    async def test_reopen_item(self, service, stored):
        """Test that a flag can be flipped back."""
        identifier = ItemIdentifier.of(stored.suggestions[0])

        await service.set_resolved(stored.id, ItemType.SUGGESTION, identifier, True)
        await service.set_resolved(stored.id, ItemType.SUGGESTION, identifier, False)
        view = await service.view(stored.id)

        assert view.suggestions[0].resolved is False

    async def test_unknown_item_raises(self, service, stored):
        """Test that an identifier matching no item is rejected."""
        identifier = ItemIdentifier(title="Nope", file="app.py", line=1, description="d")

        with pytest.raises(ItemNotFoundError):
            await service.set_resolved(stored.id, ItemType.SECURITY, identifier, True)

    async def test_type_must_match(self, service, stored):
        """Test that an issue identifier is not found among suggestions."""
        identifier = ItemIdentifier.of(stored.security_issues[0])

        with pytest.raises(ItemNotFoundError):
            await service.set_resolved(stored.id, ItemType.SUGGESTION, identifier, True)

    async def test_unknown_analysis_raises(self, service):
        """Test that an unknown analysis id is reported as not found."""
        identifier = ItemIdentifier(title="t", file="f", description="d")

        with pytest.raises(RecordNotFoundError):
            await service.set_resolved("missing", ItemType.SECURITY, identifier, True)


class TestResolutionLifetime:
    """Tests for how flags behave across analyses."""

    async def test_flag_survives_other_change_set_analysis(self, service, store, stored, make_output):
        """Test that analysing a different change-set keeps the flag."""
        identifier = ItemIdentifier.of(stored.security_issues[0])
        await service.set_resolved(stored.id, ItemType.SECURITY, identifier, True)

        other = _analysis("cs2", make_output())
        store.replace_analysis(_change_set("cs2", 2), other)

        assert (await service.view(stored.id)).security_issues[0].resolved is True
        assert (await service.view(other.id)).security_issues[0].resolved is False

    async def test_flag_survives_reanalysis_of_same_change_set(self, service, store, stored, make_output):
        """Test that a regenerated identical item is still resolved."""
        identifier = ItemIdentifier.of(stored.security_issues[0])
        await service.set_resolved(stored.id, ItemType.SECURITY, identifier, True)

        rerun = _analysis("cs1", make_output())
        store.replace_analysis(_change_set("cs1", 1), rerun)

        assert (await service.view(rerun.id)).security_issues[0].resolved is True
