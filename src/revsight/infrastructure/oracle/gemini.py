import re
from typing import Any

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from loguru import logger
from pydantic import ValidationError

from revsight.core.errors import ContentTooLargeError, OracleError
from revsight.core.models import CodeAnalysisOutput, SummaryContext

ANALYSIS_PROMPT = """You are an expert Code Review AI. Analyze the following code from the file "{filename}" for overall quality, security, performance, complexity, maintainability, code smells and style.

Code to Analyze:
```
{code}
```

Respond with a single JSON object with these keys:
- "qualityScore": number 0-10, overall quality (readability, structure, best practices).
- "complexity": number 0-10, higher means more complex.
- "maintainability": number 0-10, higher means easier to maintain.
- "securityIssues": list of objects with "type" (vulnerability|warning|info), "severity" (critical|high|medium|low), "title", "description", "file", optional "line", "suggestion" (an actionable fix, ideally corrected code) and optional "cwe" (e.g. "CWE-79").
- "suggestions": list of objects with "type" (performance|style|bug|feature|optimization|code_smell), "priority" (high|medium|low), "title", "description", "file", optional "line" and optional "codeExample".
- "metrics": object with "linesOfCode", "cyclomaticComplexity", "cognitiveComplexity", "duplicateBlocks".
- "aiInsights": a file-level summary using exactly this template:
  ## AI Review Summary
  [qualityScore]/10 quality score
  [criticalHighCount] Critical/High Issues [criticalHighTitles]
  [suggestionCount] Optimizations/Suggestions Available

Use "{filename}" as the "file" of every finding.
"""

SUMMARY_PROMPT = """You are an expert Code Review AI Lead. You have received analysis results for "{title}".
Write a concise, high-level summary for the whole change.

Aggregated metrics:
- Overall Quality Score: {quality:.1f}/10 (across {file_count} files)
- Critical Security Issues: {critical}
- High-Severity Security Issues: {high}
- Total Improvement Suggestions: {suggestions}

Individual file insights:
{file_insights}

Cover overall code health, the most significant risks, notable improvements and a closing recommendation.
Answer with 2-4 plain sentences. Interpret the numbers instead of restating them.
"""


def render_insight(output: CodeAnalysisOutput) -> str:
    """Fills the insight template placeholders from the structured fields."""
    critical_high = [i for i in output.security_issues if i.severity in ("critical", "high")]
    titles = f"({', '.join(i.title for i in critical_high)})" if critical_high else ""

    text = output.insight.replace("[qualityScore]", f"{output.quality_score:.1f}")
    text = text.replace("[criticalHighCount]", str(len(critical_high)))
    text = text.replace("[suggestionCount]", str(len(output.suggestions)))
    text = re.sub(r"[ \t]*\[criticalHighTitles\]", f" {titles}" if titles else "", text)
    return text


class GeminiOracle:
    """Concrete implementation of IAnalysisOracle using the Gemini API."""

    def __init__(
        self,
        api_key: str | None,
        analysis_model: str,
        summary_model: str,
        embedding_model: str,
        timeout_seconds: float = 120.0,
        client: Any = None,
    ) -> None:
        self.analysis_model = analysis_model
        self.summary_model = summary_model
        self.embedding_model = embedding_model

        if client is None:
            client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
            )
        self._client = client

    def _translate(self, error: Exception, capability: str) -> OracleError:
        message = f"{capability} failed: {error}"
        code = getattr(error, "code", None)
        if code == 413 or "payload size exceeds the limit" in str(error).lower():
            return ContentTooLargeError(message)
        return OracleError(message)

    async def _generate(self, model: str, prompt: str, config: types.GenerateContentConfig) -> str:
        try:
            response = await self._client.aio.models.generate_content(
                model=model, contents=prompt, config=config
            )
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise self._translate(e, f"Generation with {model}") from e
        return response.text or ""

    async def analyze_code(self, content: str, filename: str) -> CodeAnalysisOutput:
        prompt = ANALYSIS_PROMPT.format(filename=filename, code=content)
        config = types.GenerateContentConfig(response_mime_type="application/json", temperature=0.2)
        text = await self._generate(self.analysis_model, prompt, config)

        try:
            output = CodeAnalysisOutput.model_validate_json(text)
        except ValidationError as e:
            raise OracleError(
                f"Malformed analysis response for {filename}",
                details={"errors": str(e.error_count())},
            ) from e

        output.insight = render_insight(output)
        return output

    async def embed(self, content: str, filename: str | None = None) -> Any:
        if not content.strip():
            raise OracleError("Input text for embedding cannot be empty.")

        if filename is None:
            config = types.EmbedContentConfig(task_type="RETRIEVAL_QUERY")
        else:
            config = types.EmbedContentConfig(task_type="RETRIEVAL_DOCUMENT", title=filename)

        try:
            response = await self._client.aio.models.embed_content(
                model=self.embedding_model, contents=content, config=config
            )
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise self._translate(e, "Embedding generation") from e

        # The SDK response is itself a pydantic model; hand over its plain shape
        return response.model_dump() if hasattr(response, "model_dump") else response

    async def summarize(self, context: SummaryContext) -> str:
        if context.file_insights:
            file_insights = "\n".join(
                f"- File: {name}\n  Insight: {insight}" for name, insight in context.file_insights
            )
        else:
            file_insights = "- No individual file insights were provided."

        prompt = SUMMARY_PROMPT.format(
            title=context.title,
            quality=context.quality_score,
            file_count=context.file_count,
            critical=context.critical_issues,
            high=context.high_issues,
            suggestions=context.suggestion_count,
            file_insights=file_insights,
        )
        text = await self._generate(
            self.summary_model, prompt, types.GenerateContentConfig(temperature=0.4)
        )
        logger.debug("Summary generated for {} ({} chars)", context.title, len(text))
        return text.strip()
