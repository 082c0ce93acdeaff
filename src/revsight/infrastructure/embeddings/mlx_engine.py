import threading
from pathlib import PurePosixPath
from typing import Any

import numpy as np
from loguru import logger
from mlx_embeddings.utils import load
from numpy.typing import NDArray

_MODEL_CACHE: dict[str, tuple[Any, Any, threading.Lock]] = {}

# Prompt formats of the EmbeddingGemma family: stored files are documents
# titled by their path, free-text searches are code retrieval queries.
FILE_TEMPLATE = "title: {title} | text: {text}"
QUERY_TEMPLATE = "task: code retrieval | query: {text}"

# Rough upper bound of characters per token for source code
CHARS_PER_TOKEN = 4


class MLXEmbedder:
    """
    Concrete implementation of IEmbedder using Apple MLX.

    Files and queries are embedded asymmetrically. The model's pooled output
    is cut to ``dimension`` components and re-normalised, so Matryoshka models
    can serve a smaller vector table than their native width.
    """

    def __init__(
        self,
        model_name: str,
        max_token_length: int,
        dimension: int,
        file_template: str = FILE_TEMPLATE,
        query_template: str = QUERY_TEMPLATE,
    ) -> None:
        self._model_name = model_name
        self._max_token_length = max_token_length
        self._dimension = dimension
        self._file_template = file_template
        self._query_template = query_template

        if model_name not in _MODEL_CACHE:
            logger.info("Loading MLX model: {}", model_name)
            _MODEL_CACHE[model_name] = (*load(model_name), threading.Lock())
        else:
            logger.debug("Using cached MLX model: {}", model_name)

        self.model: Any
        self.tokenizer: Any
        self.model, self.tokenizer, self._lock = _MODEL_CACHE[model_name]

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def max_chars(self) -> int:
        return self._max_token_length * CHARS_PER_TOKEN

    def _execute_mlx(self, texts: list[str]) -> NDArray[np.float32]:
        """Tokenizes, runs the model and copies the pooled embeddings out of MLX."""
        import mlx.core as mx

        with self._lock:
            inputs = self.tokenizer._tokenizer(
                texts,
                padding=True,
                truncation=True,
                max_length=self._max_token_length,
                return_tensors="mlx",
            )

            if hasattr(inputs, "attention_mask"):
                inputs["attention_mask"] = inputs["attention_mask"].astype(mx.float16)

            outputs = self.model(inputs["input_ids"], attention_mask=inputs.get("attention_mask"))

            if hasattr(outputs, "text_embeds"):
                embeds_mlx = outputs.text_embeds
            else:
                embeds_mlx = outputs["text_embeds"]

            vectors_np: NDArray[np.float32] = np.array(embeds_mlx).astype(np.float32)
        return vectors_np

    def _fit(self, vectors: NDArray[np.float32]) -> NDArray[np.float32]:
        """Cuts native-width vectors to ``dimension`` and rescales them to unit length."""
        if vectors.ndim != 2 or vectors.shape[1] < self._dimension:
            raise ValueError(f"Expected at least {self._dimension} components, got {vectors.shape}")

        fitted = vectors[:, : self._dimension]
        norms = np.linalg.norm(fitted, axis=1, keepdims=True)
        # Zero rows stay zero; search skips them
        return np.divide(fitted, norms, out=np.zeros_like(fitted), where=norms > 0)

    def _file_prompt(self, filename: str, text: str) -> str:
        if len(text) > self.max_chars:
            logger.debug(
                "Embedding the first {} of {} chars of {}", self.max_chars, len(text), filename
            )
            text = text[: self.max_chars]

        path = PurePosixPath(filename)
        title = f"{path.name} ({path.parent})" if str(path.parent) != "." else path.name
        return self._file_template.format(title=title, text=text)

    def embed_files(self, files: list[tuple[str, str]]) -> NDArray[np.float32]:
        """Embeds ``(filename, text)`` pairs as retrieval documents."""
        if not files:
            return np.empty((0, self._dimension), dtype=np.float32)

        prompts = [self._file_prompt(filename, text) for filename, text in files]
        try:
            return self._fit(self._execute_mlx(prompts))
        except Exception as e:
            logger.error("Error embedding {} files: {}", len(files), e)
            raise

    def embed_query(self, text: str) -> NDArray[np.float32]:
        """Embeds free text as a code retrieval query."""
        if not text.strip():
            raise ValueError("Text to embed cannot be empty.")

        prompt = self._query_template.format(text=text[: self.max_chars])
        return self._fit(self._execute_mlx([prompt]))[0]
