import os
from pathlib import Path

import pytest

from inventory_suite.config import load_db_path, load_llm, load_server

_ENV_KEYS = (
    "LLM_BACKEND", "GROQ_API_KEY", "OPEN_ROUTER_API_KEY", "OPENROUTER_API_KEY", "OPENAI_API_KEY",
    "GROQ_MODEL", "LLM_MODEL", "LLM_BASE_URL", "LLM_MAX_TOKENS", "LLM_TIMEOUT",
    "HOST", "PORT", "CLIENT_ORIGIN", "INVENTORY_DB_PATH",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_llm_defaults_to_groq(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("GROQ_API_KEY=gsk-123\n", encoding="utf-8")

    cfg = load_llm(str(tmp_path))

    assert cfg.backend == "groq"
    assert cfg.api_key == "gsk-123"
    assert cfg.model_name == "qwen/qwen3-32b"
    assert cfg.base_url == "https://api.groq.com/openai/v1"
    assert cfg.timeout_seconds == 60


def test_llm_openrouter_from_dotenv_in_parent(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "LLM_BACKEND=openrouter\nOPEN_ROUTER_API_KEY=or-key\nLLM_BASE_URL=https://proxy.local/v1/\nLLM_TIMEOUT=15\n",
        encoding="utf-8",
    )
    nested = tmp_path / "src" / "pkg"
    nested.mkdir(parents=True)

    cfg = load_llm(str(nested))

    assert cfg.backend == "openrouter"
    assert cfg.api_key == "or-key"
    assert cfg.base_url == "https://proxy.local/v1"
    assert cfg.timeout_seconds == 15


def test_process_env_wins_over_dotenv(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / ".env").write_text("GROQ_API_KEY=from-file\nGROQ_MODEL=file-model\n", encoding="utf-8")
    monkeypatch.setenv("GROQ_API_KEY", "from-env")

    cfg = load_llm(str(tmp_path))

    assert cfg.api_key == "from-env"
    assert cfg.model_name == "file-model"


def test_unknown_backend_falls_back_to_groq(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / "README.md").write_text("marker", encoding="utf-8")
    monkeypatch.setenv("LLM_BACKEND", "mystery")

    cfg = load_llm(str(tmp_path))

    assert cfg.backend == "groq"


def test_server_settings(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("PORT=not-a-port\nCLIENT_ORIGIN=http://a.test, http://b.test\n", encoding="utf-8")

    host, port, origins = load_server(str(tmp_path))

    assert host == "127.0.0.1"
    assert port == 5001
    assert origins == ["http://a.test", "http://b.test"]


def test_db_path_default_and_override(tmp_path: Path, monkeypatch) -> None:
    (tmp_path / "README.md").write_text("marker", encoding="utf-8")
    assert load_db_path(str(tmp_path)) == os.path.join(str(tmp_path), "var", "inventory", "inventory.sqlite3")

    monkeypatch.setenv("INVENTORY_DB_PATH", str(tmp_path / "elsewhere.db"))
    assert load_db_path(str(tmp_path)) == str(tmp_path / "elsewhere.db")
