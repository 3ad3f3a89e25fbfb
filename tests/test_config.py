"""Tests for settings loading and embedder selection."""

from pathlib import Path

import pytest

from ludic_reader.config import Settings, build_embedder, load_settings
from ludic_reader.embeddings import HashEmbedder, HttpEmbedder, SentenceTransformerEmbedder

ENV_VARS = (
    "DATA_DIR", "EMBEDDING_BACKEND", "EMBEDDING_MODEL", "EMBEDDING_URL", "EMBEDDING_API_KEY",
    "DEFAULT_DIFFICULTY", "HOST", "PORT", "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # setenv first so teardown also removes anything load_dotenv writes
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def test_defaults(tmp_path: Path):
    settings = load_settings(tmp_path / "missing.env")
    assert settings == Settings()
    assert settings.port == 13013
    assert settings.embedding_backend == "local"


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "books"))
    monkeypatch.setenv("EMBEDDING_BACKEND", "HTTP")
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    settings = load_settings(tmp_path / "missing.env")
    assert settings.data_dir == tmp_path / "books"
    assert settings.embedding_backend == "http"
    assert settings.port == 9000
    assert settings.log_level == "DEBUG"


def test_env_file(tmp_path: Path):
    env_file = tmp_path / ".env"
    env_file.write_text("DEFAULT_DIFFICULTY=expert\nEMBEDDING_BACKEND=hash\n")
    settings = load_settings(env_file)
    assert settings.default_difficulty == "expert"
    assert settings.embedding_backend == "hash"


def test_unknown_backend_falls_back(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog):
    monkeypatch.setenv("EMBEDDING_BACKEND", "quantum")
    with caplog.at_level("WARNING"):
        settings = load_settings(tmp_path / "missing.env")
    assert settings.embedding_backend == "local"
    assert "quantum" in caplog.text


@pytest.mark.parametrize("backend,cls", [
    ("local", SentenceTransformerEmbedder),
    ("http", HttpEmbedder),
    ("hash", HashEmbedder),
])
def test_build_embedder(backend, cls):
    assert isinstance(build_embedder(Settings(embedding_backend=backend)), cls)
