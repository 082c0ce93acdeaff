from typing import Any

from revsight.infrastructure.storage.lancedb_engine import LanceDBStore
from revsight.infrastructure.storage.memory import InMemoryStore


class ComponentRegistry:
    """Registry pattern to dynamically map string names to class implementations."""

    _stores: dict[str, Any] = {
        "lancedb": LanceDBStore,
        "memory": InMemoryStore,
    }

    # Imported lazily: the MLX stack only installs on Apple silicon
    _embedders: dict[str, str] = {
        "mlx": "revsight.infrastructure.embeddings.mlx_engine:MLXEmbedder",
    }

    @classmethod
    def get_store(cls, name: str) -> Any:
        if name not in cls._stores:
            raise ValueError(f"Unknown store type: '{name}'")
        return cls._stores[name]

    @classmethod
    def get_embedder(cls, name: str) -> Any:
        if name not in cls._embedders:
            raise ValueError(f"Unknown embedder type: '{name}'")

        import importlib

        module_name, class_name = cls._embedders[name].split(":")
        return getattr(importlib.import_module(module_name), class_name)
