"""Runtime settings from .env and the environment.

    DATA_DIR            base data directory (default ./data)
    EMBEDDING_BACKEND   local | http | hash (default local)
    EMBEDDING_MODEL     sentence-transformers model id or remote model name
    EMBEDDING_URL       base URL for the http backend
    EMBEDDING_API_KEY   bearer token for the http backend
    DEFAULT_DIFFICULTY  difficulty id for new games (default master)
    HOST, PORT          bind address for `serve`
    LOG_LEVEL           logging level name (default INFO)
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel

from ludic_reader.embeddings import Embedder, HashEmbedder, HttpEmbedder, SentenceTransformerEmbedder

logger = logging.getLogger(__name__)

ROOT = Path(__file__).parent.parent

EmbeddingBackend = Literal["local", "http", "hash"]


class Settings(BaseModel):
    data_dir: Path = Path("data")
    embedding_backend: EmbeddingBackend = "local"
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_url: str = "http://localhost:8080"
    embedding_api_key: str = ""
    default_difficulty: str = "master"
    host: str = "127.0.0.1"
    port: int = 13013
    log_level: str = "INFO"


def load_settings(env_file: Path | None = None) -> Settings:
    """Read .env (without overriding real environment variables), then the environment."""
    load_dotenv(env_file or ROOT / ".env")
    defaults = Settings()
    backend = os.getenv("EMBEDDING_BACKEND", defaults.embedding_backend).lower()
    if backend not in ("local", "http", "hash"):
        logger.warning("Unknown EMBEDDING_BACKEND %r, using %r", backend, defaults.embedding_backend)
        backend = defaults.embedding_backend
    return Settings(
        data_dir=Path(os.getenv("DATA_DIR", str(defaults.data_dir))),
        embedding_backend=backend,
        embedding_model=os.getenv("EMBEDDING_MODEL", defaults.embedding_model),
        embedding_url=os.getenv("EMBEDDING_URL", defaults.embedding_url),
        embedding_api_key=os.getenv("EMBEDDING_API_KEY", defaults.embedding_api_key),
        default_difficulty=os.getenv("DEFAULT_DIFFICULTY", defaults.default_difficulty),
        host=os.getenv("HOST", defaults.host),
        port=int(os.getenv("PORT", str(defaults.port))),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level).upper(),
    )


def build_embedder(settings: Settings) -> Embedder:
    if settings.embedding_backend == "http":
        return HttpEmbedder(
            settings.embedding_url,
            api_key=settings.embedding_api_key,
            model=settings.embedding_model,
        )
    if settings.embedding_backend == "hash":
        return HashEmbedder()
    return SentenceTransformerEmbedder(settings.embedding_model)
