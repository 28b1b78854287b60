"""Single source of truth for all configuration and secrets.

All modules import from here — never from os.environ directly.

Values come from secrets/internal.env (plain, or SOPS-encrypted when
KENNY_USE_SOPS=true). Process environment variables with a ``KENNY_`` or
``OLLAMA_`` prefix override the file. A missing file is not an error;
the defaults below apply.
"""

import os
from pathlib import Path

from kenny.secrets import load_dotenv_fallback, load_secrets, overlay_environ

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Toggle SOPS vs plain .env (default: plain .env for local dev)
USE_SOPS = os.environ.get("KENNY_USE_SOPS", "false").lower() == "true"


def _load(scope: str) -> dict[str, str | None]:
    """Load secrets for a given scope, with the environment on top."""
    if USE_SOPS:
        values = load_secrets(PROJECT_ROOT / f"secrets/{scope}.env.enc")
    else:
        values = load_dotenv_fallback(PROJECT_ROOT / f"secrets/{scope}.env", missing_ok=True)
    return overlay_environ(values, dict(os.environ))


_internal = _load("internal")

# --- Completion backend (Ollama) ---
OLLAMA_BASE_URL: str = _internal.get("OLLAMA_BASE_URL") or "http://localhost:11434"
OLLAMA_MODEL: str = _internal.get("OLLAMA_MODEL") or ""
OLLAMA_KEEP_ALIVE: str = _internal.get("OLLAMA_KEEP_ALIVE") or "5m"
COMPLETION_TIMEOUT_SECONDS: float = float(_internal.get("KENNY_COMPLETION_TIMEOUT") or "15")
CACHE_MAX_ENTRIES: int = int(_internal.get("KENNY_CACHE_SIZE") or "100")
CACHE_TTL_SECONDS: float = float(_internal.get("KENNY_CACHE_TTL") or "3600")

# --- Classification / decision ---
DECISION_POLICY: str = _internal.get("KENNY_DECISION_POLICY") or "threshold"
RULE_CONFIDENCE_CUTOFF: float = float(_internal.get("KENNY_RULE_CUTOFF") or "0.8")
CONFIRM_THRESHOLD: float = float(_internal.get("KENNY_CONFIRM_THRESHOLD") or "0.81")
EXECUTE_THRESHOLD: float = float(_internal.get("KENNY_EXECUTE_THRESHOLD") or "0.91")
MIN_SLOTS: int = int(_internal.get("KENNY_MIN_SLOTS") or "2")

# --- Sessions ---
MAX_TURNS: int = int(_internal.get("KENNY_MAX_TURNS") or "10")

# --- Storage ---
SESSION_DB_PATH: str = _internal.get("KENNY_SESSION_DB_PATH") or str(
    PROJECT_ROOT / "data" / "sessions.db"
)
PATTERN_DB_PATH: str = _internal.get("KENNY_PATTERN_DB_PATH") or str(
    PROJECT_ROOT / "data" / "patterns.db"
)
RECORDS_DB_PATH: str = _internal.get("KENNY_RECORDS_DB_PATH") or str(
    PROJECT_ROOT / "data" / "records.db"
)
AUDIT_LOG_PATH: str = _internal.get("KENNY_AUDIT_LOG_PATH") or str(
    PROJECT_ROOT / "data" / "decisions.jsonl"
)
