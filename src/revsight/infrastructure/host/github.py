import base64
from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from revsight.core.errors import HostError, HostNotFoundError
from revsight.core.models import ChangeSetMetadata, FileChange


class GitHubClient:
    """Concrete implementation of IHostClient over the GitHub REST API."""

    def __init__(
        self,
        api_url: str = "https://api.github.com",
        token: str | None = None,
        timeout_seconds: float = 30.0,
        per_page: int = 100,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.per_page = per_page

        if client is None:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
            if token:
                headers["Authorization"] = f"Bearer {token}"
            client = httpx.AsyncClient(base_url=api_url, headers=headers, timeout=timeout_seconds)
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, resource: str, params: dict[str, Any] | None = None) -> Any:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            raise HostError(f"GitHub request failed for {resource}: {e}") from e

        if response.status_code == 404:
            raise HostNotFoundError(resource)
        if response.status_code >= 400:
            raise HostError(
                f"GitHub returned {response.status_code} for {resource}",
                status_code=response.status_code,
                details={"body": response.text[:200]},
            )
        return response.json()

    async def get_change_set_metadata(
        self, owner: str, repo: str, number: int
    ) -> ChangeSetMetadata:
        data = await self._get(
            f"/repos/{owner}/{repo}/pulls/{number}", resource=f"{owner}/{repo}#{number}"
        )
        state = "merged" if data.get("merged_at") else data.get("state", "open")
        return ChangeSetMetadata(
            title=data.get("title") or f"Pull request #{number}",
            state=state,
            author=(data.get("user") or {}).get("login") or "unknown",
            head_sha=data["head"]["sha"],
            head_ref=data["head"].get("ref"),
            base_ref=(data.get("base") or {}).get("ref"),
            body=data.get("body"),
        )

    async def get_changed_files(self, owner: str, repo: str, number: int) -> list[FileChange]:
        files: list[FileChange] = []
        page = 1
        while True:
            batch = await self._get(
                f"/repos/{owner}/{repo}/pulls/{number}/files",
                resource=f"{owner}/{repo}#{number} files",
                params={"per_page": self.per_page, "page": page},
            )
            files.extend(
                FileChange(
                    filename=item["filename"],
                    status=item.get("status", "modified"),
                    patch=item.get("patch"),
                    additions=item.get("additions", 0),
                    deletions=item.get("deletions", 0),
                    changes=item.get("changes", 0),
                )
                for item in batch
            )
            if len(batch) < self.per_page:
                return files
            page += 1

    async def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> str | None:
        try:
            data = await self._get(
                f"/repos/{owner}/{repo}/contents/{quote(path, safe='/')}",
                resource=f"{owner}/{repo}:{path}@{ref}",
                params={"ref": ref},
            )
        except HostNotFoundError:
            logger.warning("File not found or inaccessible: {} in {}/{} ({})", path, owner, repo, ref)
            return None
        except HostError as e:
            logger.error("Error fetching content for {} in {}/{}: {}", path, owner, repo, e)
            return None

        if isinstance(data, list):
            logger.warning("Expected file content for {}, got a directory listing", path)
            return None
        if data.get("encoding") != "base64" or not isinstance(data.get("content"), str):
            logger.warning("Unexpected content format for {} at {}", path, ref)
            return None

        return base64.b64decode(data["content"]).decode("utf-8", errors="replace")

    async def get_snapshot_metadata(
        self, owner: str, repo: str, ref: str | None = None
    ) -> ChangeSetMetadata:
        if ref is None:
            repo_data = await self._get(f"/repos/{owner}/{repo}", resource=f"{owner}/{repo}")
            ref = repo_data.get("default_branch") or "main"

        commit = await self._get(
            f"/repos/{owner}/{repo}/commits/{quote(ref, safe='')}",
            resource=f"{owner}/{repo}@{ref}",
        )
        return ChangeSetMetadata(
            title=f"{owner}/{repo} (Full Scan - {ref})",
            state="snapshot",
            author=(commit.get("author") or {}).get("login") or "unknown",
            head_sha=commit["sha"],
            head_ref=ref,
        )

    async def list_snapshot_files(self, owner: str, repo: str, sha: str) -> list[FileChange]:
        data = await self._get(
            f"/repos/{owner}/{repo}/git/trees/{sha}",
            resource=f"{owner}/{repo} tree {sha}",
            params={"recursive": "1"},
        )
        if data.get("truncated"):
            logger.warning("Tree listing for {}/{}@{} was truncated by GitHub", owner, repo, sha)

        return [
            FileChange(filename=entry["path"], status="added")
            for entry in data.get("tree", [])
            if entry.get("type") == "blob" and entry.get("path")
        ]
