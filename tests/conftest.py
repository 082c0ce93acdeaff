"""Pytest configuration and fixtures."""

import pytest
from loguru import logger

from revsight.core.models import CodeAnalysisOutput, Metrics, SecurityIssue, Suggestion


@pytest.fixture
def caplog(caplog):
    """Enable Loguru logging to be captured by pytest's caplog fixture."""
    import logging

    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message}")
    yield caplog
    logger.remove(handler_id)


@pytest.fixture
def make_output():
    """Factory for oracle analysis outputs with one issue and one suggestion."""

    def _make(filename: str = "app.py", quality: float = 7.0, severity: str = "high"):
        return CodeAnalysisOutput(
            quality_score=quality,
            complexity=4.0,
            maintainability=6.0,
            security_issues=[
                SecurityIssue(
                    title="SQL injection",
                    description="User input reaches a raw query.",
                    file=filename,
                    line=12,
                    severity=severity,
                )
            ],
            suggestions=[
                Suggestion(
                    title="Extract helper",
                    description="Duplicated parsing logic.",
                    file=filename,
                    priority="low",
                )
            ],
            metrics=Metrics(lines_of_code=40, cyclomatic_complexity=3.0, duplicate_blocks=1),
            insight=f"Insight for {filename}",
        )

    return _make
