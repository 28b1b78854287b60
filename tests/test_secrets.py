"""Tests for secrets loading and environment overlay."""

import pytest

from kenny.secrets import load_dotenv_fallback, load_secrets, overlay_environ


def test_dotenv_fallback_reads_file(tmp_path):
    env = tmp_path / "internal.env"
    env.write_text("OLLAMA_MODEL=qwen2.5:7b\nKENNY_MAX_TURNS=6\n")

    values = load_dotenv_fallback(env)

    assert values == {"OLLAMA_MODEL": "qwen2.5:7b", "KENNY_MAX_TURNS": "6"}


def test_dotenv_fallback_missing_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_dotenv_fallback(tmp_path / "missing.env")


def test_dotenv_fallback_missing_ok(tmp_path):
    assert load_dotenv_fallback(tmp_path / "missing.env", missing_ok=True) == {}


def test_load_secrets_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError, match="Encrypted secrets file not found"):
        load_secrets(tmp_path / "internal.env.enc")


def test_overlay_environ_only_takes_prefixed_keys():
    values = {"OLLAMA_MODEL": "from-file", "KENNY_MAX_TURNS": "10"}
    environ = {"OLLAMA_MODEL": "from-env", "HOME": "/root", "KENNY_DECISION_POLICY": "semantic"}

    merged = overlay_environ(values, environ)

    assert merged == {
        "OLLAMA_MODEL": "from-env",
        "KENNY_MAX_TURNS": "10",
        "KENNY_DECISION_POLICY": "semantic",
    }
    assert values["OLLAMA_MODEL"] == "from-file"


def test_overlay_environ_custom_prefixes():
    merged = overlay_environ({}, {"APP_X": "1", "KENNY_Y": "2"}, prefixes=("APP_",))
    assert merged == {"APP_X": "1"}
