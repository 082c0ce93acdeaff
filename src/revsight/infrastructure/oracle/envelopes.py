"""Strict decoding of embedding responses.

Embedding providers wrap the vector in different envelopes. The accepted
shapes are enumerated here as pydantic models; anything else is rejected
instead of inspected field by field.
"""

from typing import Annotated, Any

import numpy as np
from loguru import logger
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

Number = Annotated[float, Field(strict=True)]
Vector = Annotated[list[Number], Field(min_length=1)]


class EmbeddingRejectedError(ValueError):
    """Raised when an embedding response has no recognised shape."""


class ValuesEnvelope(BaseModel):
    """``{"values": [...]}`` as returned by the Gemini embedding API."""

    values: Vector


class EmbeddingEnvelope(BaseModel):
    """``{"embedding": [...]}`` or ``{"embedding": {"values": [...]}}``."""

    embedding: Vector | ValuesEnvelope

    def unwrap(self) -> list[float]:
        if isinstance(self.embedding, ValuesEnvelope):
            return self.embedding.values
        return self.embedding


class EmbeddingsEnvelope(BaseModel):
    """``{"embeddings": [{"values": [...]}, ...]}``; the first entry is used."""

    embeddings: Annotated[list[ValuesEnvelope], Field(min_length=1)]

    def unwrap(self) -> list[float]:
        return self.embeddings[0].values


_ENVELOPES: TypeAdapter[Any] = TypeAdapter(
    Vector
    | Annotated[list[EmbeddingEnvelope], Field(min_length=1)]
    | ValuesEnvelope
    | EmbeddingEnvelope
    | EmbeddingsEnvelope
)


def decode_embedding(raw: Any) -> list[float]:
    """Parses a raw embedding response into a flat list of floats or raises."""
    try:
        parsed = _ENVELOPES.validate_python(raw)
    except ValidationError as e:
        raise EmbeddingRejectedError(
            f"Unrecognised embedding envelope: {e.error_count()} validation errors"
        ) from e

    if isinstance(parsed, ValuesEnvelope):
        return parsed.values
    if isinstance(parsed, (EmbeddingEnvelope, EmbeddingsEnvelope)):
        return parsed.unwrap()
    if parsed and isinstance(parsed[0], EmbeddingEnvelope):
        return parsed[0].unwrap()
    return parsed


def validate_embedding(raw: Any, dimension: int, label: str = "") -> list[float] | None:
    """Returns the vector only if it decodes, has ``dimension`` components and
    every component is finite at float32, the precision vectors are stored at.
    Invalid vectors are logged and dropped."""
    try:
        values = decode_embedding(raw)
    except EmbeddingRejectedError as e:
        logger.warning("Discarding embedding for {}: {}", label or "<input>", e)
        return None

    vector = np.asarray(values, dtype=np.float64)
    if vector.shape != (dimension,):
        logger.warning(
            "Discarding embedding for {}: expected {} dimensions, got {}",
            label or "<input>",
            dimension,
            vector.shape[0],
        )
        return None

    with np.errstate(over="ignore"):
        stored = vector.astype(np.float32)
    if not np.isfinite(stored).all():
        logger.warning("Discarding embedding for {}: non-finite components", label or "<input>")
        return None

    return vector.tolist()
