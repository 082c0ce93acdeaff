import asyncio
from typing import Any

from revsight.core.models import CodeAnalysisOutput, SummaryContext
from revsight.core.ports import IAnalysisOracle, IEmbedder


class LocalEmbeddingOracle:
    """Routes the embedding capability to a local IEmbedder and everything
    else to a remote oracle."""

    def __init__(self, delegate: IAnalysisOracle, embedder: IEmbedder) -> None:
        self.delegate = delegate
        self.embedder = embedder

    async def analyze_code(self, content: str, filename: str) -> CodeAnalysisOutput:
        return await self.delegate.analyze_code(content, filename)

    async def summarize(self, context: SummaryContext) -> str:
        return await self.delegate.summarize(context)

    async def embed(self, content: str, filename: str | None = None) -> Any:
        # Local inference is CPU/GPU bound; keep it off the event loop
        if filename is None:
            vector = await asyncio.to_thread(self.embedder.embed_query, content)
        else:
            vector = (await asyncio.to_thread(self.embedder.embed_files, [(filename, content)]))[0]
        return vector.tolist()
