from mcp.server.fastmcp import FastMCP

from revsight.api.state import _services
from revsight.core.errors import RevsightError
from revsight.core.models import SimilarityResult

# The stdio server is driven by the `revsight mcp` command, which fills _services
mcp = FastMCP("revsight")


def _format_results(results: list[SimilarityResult], subject: str) -> str:
    if not results:
        return f"No similar code found for {subject}"

    output = [f"Found {len(results)} results for {subject}:\n"]
    for res in results:
        origin = f"#{res.number}" if res.number is not None else f"@{res.ref or 'HEAD'}"
        output.append(
            f"--- Result (Score: {res.score:.4f}) ---\n"
            f"Source: {res.owner}/{res.repo}{origin} {res.filename}\n"
            f"Analysis: {res.analysis_id}\n"
            f"Insight:\n{res.insight}\n"
        )
    return "\n".join(output)


@mcp.tool()
async def find_similar_code(analysis_id: str, filename: str, limit: int = 5) -> str:
    """
    Find previously analysed files whose code is semantically close to a given file.

    Args:
        analysis_id: The analysis that contains the file.
        filename: Path of the file inside that analysis.
        limit: Maximum number of results to return.
    """
    service = _services.get("search")
    if not service:
        return "Error: Search service is not initialized."

    try:
        results = await service.find_similar(analysis_id, filename, limit)
    except RevsightError as e:
        return f"Search execution failed: {e}"
    return _format_results(results, f"'{filename}'")


@mcp.tool()
async def search_code(query: str, limit: int = 10) -> str:
    """
    Search analysed files with free text or a code fragment via semantic vector search.

    Args:
        query: The concept, description or code you are looking for (max 5000 chars).
        limit: Maximum number of results to return.
    """
    service = _services.get("search")
    if not service:
        return "Error: Search service is not initialized."

    try:
        results = await service.search_text(query, limit)
    except RevsightError as e:
        return f"Search execution failed: {e}"
    return _format_results(results, f"'{query[:50]}'")


@mcp.tool()
async def analyze_pull_request(owner: str, repo: str, number: int) -> str:
    """
    Run an AI code review of a pull request and store the results.

    Args:
        owner: Repository owner.
        repo: Repository name.
        number: Pull request number.
    """
    coordinator = _services.get("coordinator")
    if not coordinator:
        return "Error: Analysis service is not initialized."

    try:
        analysis = await coordinator.request_analysis(owner, repo, number)
    except RevsightError as e:
        return f"Analysis failed: {e}"

    lines = [
        f"Analysis {analysis.id} of {owner}/{repo}#{number}",
        f"Quality: {analysis.quality_score:.1f}/10 across {len(analysis.file_results)} files",
        f"Security issues: {len(analysis.security_issues)}",
        f"Suggestions: {len(analysis.suggestions)}",
    ]
    for issue in analysis.security_issues:
        location = f"{issue.file}:{issue.line}" if issue.line is not None else issue.file
        lines.append(f"- [{issue.severity}] {issue.title} ({location})")
    lines.append("")
    lines.append(analysis.insight)
    return "\n".join(lines)
