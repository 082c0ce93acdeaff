"""Integration tests for CLI commands."""
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from revsight.cli import Services, app
from revsight.core.errors import HostNotFoundError, InvalidQueryError
from revsight.core.models import Analysis, AnalysisSummary, FileAnalysisResult, ItemType, Resolution

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_environ():
    """Keep the config path exported by the CLI callback out of other tests."""
    with patch.dict(os.environ):
        yield


@pytest.fixture
def services():
    """Mock the dependency factory so no client, model or database is created."""
    mock_services = Services(
        host=MagicMock(aclose=AsyncMock()),
        store=MagicMock(),
        coordinator=MagicMock(
            request_analysis=AsyncMock(), request_scan=AsyncMock(), summarize_analysis=AsyncMock()
        ),
        search=MagicMock(find_similar=AsyncMock(return_value=[]), search_text=AsyncMock(return_value=[])),
        triage=MagicMock(set_resolved=AsyncMock()),
    )
    with patch("revsight.cli._build_dependencies", return_value=mock_services):
        yield mock_services


def _analysis() -> Analysis:
    return Analysis(
        id="an1",
        change_set_id="cs1",
        quality_score=7.5,
        file_results=[
            FileAnalysisResult(filename="a.py", quality_score=7.5, complexity=3, maintainability=6)
        ],
        insight="Looks solid.",
    )


class TestMainCallback:
    """Tests for the main callback/config loading."""

    def test_default_config_file(self, services):
        """Test that default config file is exported."""
        runner.invoke(app, ["search", "test"])

        assert os.environ["REVSIGHT_CONFIG_FILE"] == "config.yaml"

    def test_custom_config_file(self, services):
        """Test that custom config file can be specified."""
        runner.invoke(app, ["-c", "custom.yaml", "search", "test"])

        assert os.environ["REVSIGHT_CONFIG_FILE"] == "custom.yaml"

    def test_version(self):
        """Test that --version prints and exits."""
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert "revsight version" in result.output


class TestAnalyzeCommand:
    """Tests for the analyze and scan commands."""

    def test_analyze(self, services):
        """Test that a pull request is analysed and summarised."""
        services.coordinator.request_analysis.return_value = _analysis()

        result = runner.invoke(app, ["analyze", "acme", "api", "12"])

        assert result.exit_code == 0
        services.coordinator.request_analysis.assert_awaited_once_with("acme", "api", 12)
        assert "Analysis an1 (1 files)" in result.output
        assert "Looks solid." in result.output
        services.host.aclose.assert_awaited_once()

    def test_analyze_error_exits_1(self, services):
        """Test that domain errors are printed and exit with code 1."""
        services.coordinator.request_analysis.side_effect = HostNotFoundError("acme/api#12")

        result = runner.invoke(app, ["analyze", "acme", "api", "12"])

        assert result.exit_code == 1
        assert "Not found on host: acme/api#12" in result.output
        services.host.aclose.assert_awaited_once()

    def test_scan_with_ref(self, services):
        """Test that the scan command passes the ref through."""
        services.coordinator.request_scan.return_value = _analysis()

        result = runner.invoke(app, ["scan", "acme", "api", "--ref", "develop"])

        assert result.exit_code == 0
        services.coordinator.request_scan.assert_awaited_once_with("acme", "api", "develop")

    def test_summary(self, services):
        """Test that the regenerated summary is printed with its title."""
        services.coordinator.summarize_analysis.return_value = AnalysisSummary(
            analysis_id="an1", change_set_id="cs1", title="Add parser", summary="Ship it."
        )

        result = runner.invoke(app, ["summary", "an1"])

        assert result.exit_code == 0
        assert "Add parser (an1)" in result.output
        assert "Ship it." in result.output
        services.coordinator.summarize_analysis.assert_awaited_once_with("an1")


class TestSearchCommands:
    """Tests for the similar and search commands."""

    def test_similar(self, services):
        """Test the similar command arguments."""
        result = runner.invoke(app, ["similar", "an1", "src/a.py", "--limit", "3"])

        assert result.exit_code == 0
        services.search.find_similar.assert_awaited_once_with("an1", "src/a.py", 3)
        services.search.print_results.assert_called_once_with([])

    def test_search_default_limit(self, services):
        """Test that the configured limit applies when none is given."""
        result = runner.invoke(app, ["search", "header parsing"])

        assert result.exit_code == 0
        services.search.search_text.assert_awaited_once_with("header parsing", None)

    def test_search_invalid_text(self, services):
        """Test that invalid query text exits with code 1."""
        services.search.search_text.side_effect = InvalidQueryError("Query text cannot be empty.")

        result = runner.invoke(app, ["search", " "])

        assert result.exit_code == 1
        assert "Error (400): Query text cannot be empty." in result.output


class TestResolveCommand:
    """Tests for the resolve command."""

    def test_resolve_and_reopen(self, services):
        """Test that --reopen clears the flag."""
        services.triage.set_resolved.return_value = Resolution(
            change_set_id="cs1", item_type=ItemType.SUGGESTION, content_key="k", resolved=False
        )

        result = runner.invoke(
            app,
            [
                "resolve", "an1",
                "--title", "Extract helper",
                "--file", "a.py",
                "--description", "Duplicated parsing logic.",
                "--type", "suggestion",
                "--reopen",
            ],
        )

        assert result.exit_code == 0
        args = services.triage.set_resolved.await_args.args
        assert args[1] == ItemType.SUGGESTION
        assert args[2].line is None
        assert args[3] is False
        assert "resolved=False" in result.output


class TestServeCommand:
    """Tests for the serve command."""

    def test_serve_runs_uvicorn(self):
        """Test that serve starts uvicorn with the API app."""
        with patch("uvicorn.run") as mock_run:
            result = runner.invoke(app, ["serve", "--port", "9000"])

        assert result.exit_code == 0
        mock_run.assert_called_once_with(
            "revsight.api.main:app", host="127.0.0.1", port=9000, reload=False
        )
