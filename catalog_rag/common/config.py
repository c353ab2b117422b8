"""
Configuration Management for Catalog RAG

Loads configuration from ~/.catalog_rag/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import List

logger = logging.getLogger("catalog_rag.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".catalog_rag"
CONFIG_PATH = CONFIG_DIR / "config.json"


@dataclass
class LLMConfig:
    """Completion service provider configuration"""
    provider: str = "anthropic"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.0-flash"
    timeout: float = 30.0


@dataclass
class EmbeddingConfig:
    """Embedding model configuration"""
    model: str = "BAAI/bge-small-en-v1.5"
    batch_size: int = 32


@dataclass
class VectorStoreConfig:
    """Qdrant vector store configuration"""
    url: str = "http://localhost:6333"
    api_key: str = ""
    collection: str = "product_documents"
    product_field: str = "metadata.productName"


@dataclass
class CatalogConfig:
    """Product catalog source configuration"""
    source: str = "static"  # "static", "file" or "url"
    path: str = ""
    url: str = ""
    ttl_seconds: float = 3600.0
    load_timeout: float = 5.0


@dataclass
class CompanyConfig:
    """Company context passed to the query analyzer"""
    name: str = "Frido"
    description: str = "Ergonomic comfort and orthopedic support products"
    product_categories: List[str] = field(default_factory=lambda: [
        "pillows", "cushions", "insoles", "mattress toppers", "back and neck support",
    ])


@dataclass
class PipelineConfig:
    """Default query options and stage tuning"""
    performance_mode: str = "balanced"  # fast, balanced, accurate or custom
    retrieval_count: int = 30
    similarity_threshold: float = 0.5
    max_queries: int = 5
    final_chunk_count: int = 10
    use_reranking: bool = True
    use_compression: bool = True
    use_multi_query: bool = True
    format_as_markdown: bool = True
    max_tokens_per_chunk: int = 400
    aggressive_compression: bool = False
    llm_compression: bool = False
    timeout_seconds: float = 60.0
    hint_match_threshold: float = 0.3
    query_match_threshold: float = 0.4


@dataclass
class ServerConfig:
    """HTTP server configuration"""
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class RagConfig:
    """Main Catalog RAG configuration"""
    llm: LLMConfig = field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    company: CompanyConfig = field(default_factory=CompanyConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_section(cls, data: dict):
    """Build a dataclass section, keeping defaults for missing or unknown keys"""
    known = cls.__dataclass_fields__
    return cls(**{k: v for k, v in data.items() if k in known})


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    return _parse_section(LLMConfig, data.get("llm", {}))


def _parse_vector_store_config(data: dict) -> VectorStoreConfig:
    """Parse vector_store section from config dict"""
    return _parse_section(VectorStoreConfig, data.get("vector_store", {}))


def load_config() -> RagConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.catalog_rag/config.json)
    3. Default values
    """
    config = RagConfig()

    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.llm = _parse_llm_config(data)
            config.embedding = _parse_section(EmbeddingConfig, data.get("embedding", {}))
            config.vector_store = _parse_vector_store_config(data)
            config.catalog = _parse_section(CatalogConfig, data.get("catalog", {}))
            config.company = _parse_section(CompanyConfig, data.get("company", {}))
            config.pipeline = _parse_section(PipelineConfig, data.get("pipeline", {}))
            config.server = _parse_section(ServerConfig, data.get("server", {}))
        except (json.JSONDecodeError, IOError, TypeError) as e:
            logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)

    if os.getenv("QDRANT_URL"):
        config.vector_store.url = os.getenv("QDRANT_URL")
    if os.getenv("QDRANT_API_KEY"):
        config.vector_store.api_key = os.getenv("QDRANT_API_KEY")
        config._env_sourced_keys.add("qdrant_api_key")
    if os.getenv("QDRANT_COLLECTION"):
        config.vector_store.collection = os.getenv("QDRANT_COLLECTION")
    if os.getenv("EMBEDDING_MODEL"):
        config.embedding.model = os.getenv("EMBEDDING_MODEL")

    if os.getenv("CATALOG_SOURCE"):
        config.catalog.source = os.getenv("CATALOG_SOURCE")
    if os.getenv("CATALOG_URL"):
        config.catalog.url = os.getenv("CATALOG_URL")
    if os.getenv("CATALOG_PATH"):
        config.catalog.path = os.getenv("CATALOG_PATH")
    if os.getenv("CATALOG_TTL_SECONDS"):
        config.catalog.ttl_seconds = float(os.getenv("CATALOG_TTL_SECONDS"))

    if os.getenv("RAG_PERFORMANCE_MODE"):
        config.pipeline.performance_mode = os.getenv("RAG_PERFORMANCE_MODE")
    if os.getenv("RAG_TIMEOUT_SECONDS"):
        config.pipeline.timeout_seconds = float(os.getenv("RAG_TIMEOUT_SECONDS"))
    if os.getenv("RAG_PORT"):
        config.server.port = int(os.getenv("RAG_PORT"))

    # LLM env var overrides (track env-sourced keys)
    _env_llm_map = {
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "RAG_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    return config


def save_config(config: RagConfig) -> None:
    """Save configuration to file.

    API keys that were sourced from environment variables are written as
    empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = dict(config.llm.__dict__)
    for key in ("anthropic_api_key", "openai_api_key", "google_api_key"):
        if key in env_sourced:
            llm_section[key] = ""

    vector_store_section = dict(config.vector_store.__dict__)
    if "qdrant_api_key" in env_sourced:
        vector_store_section["api_key"] = ""

    data = {
        "llm": llm_section,
        "embedding": dict(config.embedding.__dict__),
        "vector_store": vector_store_section,
        "catalog": dict(config.catalog.__dict__),
        "company": dict(config.company.__dict__),
        "pipeline": dict(config.pipeline.__dict__),
        "server": dict(config.server.__dict__),
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
