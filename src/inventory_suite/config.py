import os
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from dotenv import dotenv_values

from .logging import get_logger
from .paths import expand_abs, find_project_root, var_dir

log = get_logger("config")

DEFAULT_PORT = 5001
DEFAULT_DB_FOLDER = "inventory"
DEFAULT_DB_FILENAME = "inventory.sqlite3"

# backend -> (api key variable(s), default chat-completions base URL, default model)
LLM_BACKENDS: Dict[str, Tuple[Tuple[str, ...], str, str]] = {
    "groq": (("GROQ_API_KEY",), "https://api.groq.com/openai/v1", "qwen/qwen3-32b"),
    "openrouter": (("OPEN_ROUTER_API_KEY", "OPENROUTER_API_KEY"), "https://openrouter.ai/api/v1", "qwen/qwen3-32b"),
    "openai": (("OPENAI_API_KEY",), "https://api.openai.com/v1", "gpt-4o-mini"),
}
DEFAULT_LLM_BACKEND = "groq"


@dataclass(frozen=True)
class LLMConfig:
    """Settings needed to reach a chat-completions style LLM endpoint."""

    backend: str
    api_key: Optional[str]
    model_name: str
    base_url: str
    temperature: float = 0.0
    max_tokens: int = 300
    timeout_seconds: int = 60


def _find_upwards(start_dir: str, filename: str) -> Optional[str]:
    """Return first matching file found when walking up from start_dir.

    Running the CLI from a subdirectory (e.g. `src/`) still picks up the
    repository-level `.env`.
    """
    d = os.path.abspath(start_dir or ".")
    while True:
        candidate = os.path.join(d, filename)
        if os.path.isfile(candidate):
            return candidate
        parent = os.path.dirname(d)
        if parent == d:
            return None
        d = parent


def _read_dotenv(dotenv_dir: str) -> Dict[str, str]:
    """Read the nearest .env into a mapping without mutating os.environ."""
    path = _find_upwards(dotenv_dir, ".env")
    if not path:
        log.debug("No .env found starting from: %s", os.path.abspath(dotenv_dir))
        return {}
    try:
        values = dotenv_values(path)
    except OSError as e:
        log.warning("Failed reading .env: %s", e)
        return {}
    env = {k: v.strip() for k, v in values.items() if v is not None}
    log.debug("Loaded %d key(s) from .env at %s", len(env), path)
    return env


def _lookup(env: Dict[str, str], *keys: str) -> Optional[str]:
    """Return the first non-empty value for keys, process env taking precedence."""
    for key in keys:
        v = os.environ.get(key)
        if v is not None and v.strip():
            return v.strip()
    for key in keys:
        v = env.get(key)
        if v:
            return v
    return None


def _int_or(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError:
        log.warning("Expected an integer but got %r; using %d", value, default)
        return default


def load_llm(dotenv_dir: str) -> LLMConfig:
    """Return the LLM settings used by the SQL chat endpoint.

    LLM_BACKEND selects groq (default), openrouter or openai. Keys, model and
    base URL fall back to the backend's defaults.
    """
    env = _read_dotenv(dotenv_dir)
    backend = (_lookup(env, "LLM_BACKEND") or DEFAULT_LLM_BACKEND).lower()
    if backend not in LLM_BACKENDS:
        log.warning("Unknown LLM_BACKEND=%r; defaulting to %r", backend, DEFAULT_LLM_BACKEND)
        backend = DEFAULT_LLM_BACKEND
    key_names, default_url, default_model = LLM_BACKENDS[backend]
    model_keys = ("GROQ_MODEL", "LLM_MODEL") if backend == "groq" else ("LLM_MODEL",)
    return LLMConfig(
        backend=backend,
        api_key=_lookup(env, *key_names),
        model_name=_lookup(env, *model_keys) or default_model,
        base_url=(_lookup(env, "LLM_BASE_URL") or default_url).rstrip("/"),
        max_tokens=_int_or(_lookup(env, "LLM_MAX_TOKENS"), 300),
        timeout_seconds=_int_or(_lookup(env, "LLM_TIMEOUT"), 60),
    )


def load_server(dotenv_dir: str) -> Tuple[str, int, List[str]]:
    """Return (host, port, allowed_origins) for the API server."""
    env = _read_dotenv(dotenv_dir)
    host = _lookup(env, "HOST") or "127.0.0.1"
    port = _int_or(_lookup(env, "PORT"), DEFAULT_PORT)
    origins_raw = _lookup(env, "CLIENT_ORIGIN") or "*"
    origins = [o.strip() for o in origins_raw.split(",") if o.strip()] or ["*"]
    return host, port, origins


def load_db_path(dotenv_dir: str) -> str:
    """Return the SQLite file location.

    INVENTORY_DB_PATH wins; otherwise `<project-root>/var/inventory/inventory.sqlite3`.
    """
    env = _read_dotenv(dotenv_dir)
    override = _lookup(env, "INVENTORY_DB_PATH")
    if override:
        return expand_abs(override)
    root = find_project_root(dotenv_dir)
    return os.path.join(var_dir(root), DEFAULT_DB_FOLDER, DEFAULT_DB_FILENAME)
