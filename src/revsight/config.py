import os
from pathlib import Path

import yaml
from loguru import logger
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EXTENSIONS = [
    ".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".cs", ".go", ".rb", ".php",
    ".html", ".css", ".scss", ".json", ".md", ".yaml", ".yml",
]  # fmt: skip

DEFAULT_EXCLUDED_PATTERNS = [
    r"package-lock\.json$",
    r"yarn\.lock$",
    r"pnpm-lock\.yaml$",
    r"\.min\.(js|css)$",
    r"\.map$",
    r"\.lock$",
    r"(^|/)node_modules/",
    r"(^|/)\.git/",
    r"(^|/)dist/",
    r"(^|/)build/",
    r"(^|/)out/",
    r"\.(png|jpg|jpeg|gif|svg|ico|webp|woff|woff2|eot|ttf|otf)$",
]


class HostConfig(BaseModel):
    """Connection settings for the GitHub REST API."""

    api_url: str = "https://api.github.com"
    token: str | None = None
    timeout_seconds: float = 30.0
    per_page: int = 100


class OracleConfig(BaseModel):
    """Model selection for the analysis, summary and embedding capabilities."""

    api_key: str | None = None
    analysis_model: str = "gemini-2.0-flash"
    summary_model: str = "gemini-2.0-flash"
    embedding_model: str = "text-embedding-004"
    timeout_seconds: float = 120.0

    # "remote" embeds through the Gemini API, "mlx" through a local model
    embedder: str = "remote"
    mlx_model_name: str = "mlx-community/embeddinggemma-300m-bf16"
    max_token_length: int = 2048


class AnalysisConfig(BaseModel):
    """Limits applied while selecting and analysing the files of a change-set."""

    max_files: int = 10
    max_scan_files: int = 5
    max_content_chars: int = 20_000
    max_changed_lines: int = 2_000
    concurrency: int = 5
    allowed_extensions: list[str] = DEFAULT_EXTENSIONS
    excluded_patterns: list[str] = DEFAULT_EXCLUDED_PATTERNS


class SearchConfig(BaseModel):
    """Ranking parameters for the brute-force similarity scan."""

    vector_dimension: int = 768
    limit: int = 5
    min_score: float = 0.0
    text_limit: int = 10
    text_min_score: float = 0.4


class Settings(BaseSettings):
    """Global configuration for the revsight application."""

    # General System
    db_path: str = "./lancedb_revsight"
    store_type: str = "lancedb"
    log_level: str = "INFO"
    log_serialize: bool = False

    host: HostConfig = HostConfig()
    oracle: OracleConfig = OracleConfig()
    analysis: AnalysisConfig = AnalysisConfig()
    search: SearchConfig = SearchConfig()

    model_config = SettingsConfigDict(
        env_prefix="REVSIGHT_", env_file=".env", env_nested_delimiter="__"
    )


_SECTIONS: dict[str, type[BaseModel]] = {
    "host": HostConfig,
    "oracle": OracleConfig,
    "analysis": AnalysisConfig,
    "search": SearchConfig,
}


def load_settings(config_file: str | None = None) -> Settings:
    """Loads base settings and overrides them from config.yaml."""
    base_settings = Settings()

    if config_file is None:
        config_file = os.getenv("REVSIGHT_CONFIG_FILE", "config.yaml")

    yaml_path = Path(config_file)
    if yaml_path.exists():
        with open(yaml_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

            if not data:
                return base_settings

            # Override System configuration
            if "system" in data and isinstance(data["system"], dict):
                for key, value in data["system"].items():
                    if hasattr(base_settings, key):
                        setattr(base_settings, key, value)

            # Override nested sections, keeping env/default values for omitted keys
            for section, model in _SECTIONS.items():
                if section in data and isinstance(data[section], dict):
                    current = getattr(base_settings, section).model_dump()
                    current.update(data[section])
                    setattr(base_settings, section, model(**current))
    else:
        logger.warning("Configuration file '{}' not found, using defaults", yaml_path)

    return base_settings


# Global singleton instance
settings = load_settings()
