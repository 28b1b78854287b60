"""SOPS decrypt helper for loading encrypted secrets files."""

import logging
import subprocess
from io import StringIO
from pathlib import Path

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


def load_secrets(encrypted_path: str | Path) -> dict[str, str | None]:
    """Decrypt a SOPS-encrypted .env file and return its key-value pairs.

    Args:
        encrypted_path: Path to the encrypted .env.enc file.

    Returns:
        Dictionary of decrypted key-value pairs.

    Raises:
        FileNotFoundError: If the encrypted file does not exist.
        subprocess.CalledProcessError: If SOPS decryption fails.
    """
    path = Path(encrypted_path)
    if not path.exists():
        raise FileNotFoundError(f"Encrypted secrets file not found: {path}")

    result = subprocess.run(
        ["sops", "--decrypt", str(path)],
        capture_output=True,
        text=True,
        check=True,
    )
    return dict(dotenv_values(stream=StringIO(result.stdout)))


def load_dotenv_fallback(
    dotenv_path: str | Path,
    *,
    missing_ok: bool = False,
) -> dict[str, str | None]:
    """Load a plain .env file directly. For development use only.

    Args:
        dotenv_path: Path to an unencrypted .env file.
        missing_ok: Return an empty mapping instead of raising when the
            file is absent, so built-in defaults apply.

    Returns:
        Dictionary of key-value pairs.

    Raises:
        FileNotFoundError: If the .env file does not exist and
            ``missing_ok`` is false.
    """
    path = Path(dotenv_path)
    if not path.exists():
        if missing_ok:
            logger.debug("No dotenv file at %s, using defaults", path)
            return {}
        raise FileNotFoundError(f"Dotenv file not found: {path}")

    return dict(dotenv_values(path))


def overlay_environ(
    values: dict[str, str | None],
    environ: dict[str, str],
    *,
    prefixes: tuple[str, ...] = ("KENNY_", "OLLAMA_"),
) -> dict[str, str | None]:
    """Return *values* with matching process environment variables on top."""
    merged = dict(values)
    for key, value in environ.items():
        if key.startswith(prefixes):
            merged[key] = value
    return merged
