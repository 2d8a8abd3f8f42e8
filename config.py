import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import serialization
from dotenv import load_dotenv

from errors import ConfigurationError

load_dotenv(dotenv_path=".env")  # handy for local dev; real env always wins


def int_env(name: str, default: int) -> int:
    v = (os.environ.get(name) or "").strip()
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {v!r}")


def str_env(name: str, default: str = "", *aliases: str) -> str:
    for key in (name, *aliases):
        v = (os.environ.get(key) or "").strip()
        if v:
            return v
    return default


@dataclass(frozen=True)
class Settings:
    app_id: str
    webhook_secret: str
    private_key: str
    github_api: str = "https://api.github.com"
    github_server_url: str = "https://github.com"
    check_name: str = "Octo RuboCop"
    http_timeout_s: int = 25
    git_timeout_s: int = 120
    rubocop_timeout_s: int = 300
    rubocop_bin: str = "rubocop"
    git_author_name: str = "Octo RuboCop"
    git_author_email: str = "octo-rubocop[bot]@users.noreply.github.com"
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    def __repr__(self) -> str:
        # keep secrets out of logs and tracebacks
        return (f"Settings(app_id={self.app_id!r}, github_api={self.github_api!r}, "
                f"check_name={self.check_name!r}, has_secret={bool(self.webhook_secret)}, "
                f"has_key={bool(self.private_key)})")


def _read_private_key_env() -> str:
    path = str_env("GITHUB_PRIVATE_KEY_PATH")
    if path:
        try:
            return Path(path).read_text()
        except OSError as e:
            raise ConfigurationError(f"cannot read GITHUB_PRIVATE_KEY_PATH={path}: {e}")
    # PEM pasted into a single-line env var keeps its newlines escaped
    return str_env("GITHUB_PRIVATE_KEY").replace("\\n", "\n").strip()


def load_settings() -> Settings:
    """Read every knob from the environment. Nothing here validates secrets; see validate_settings."""
    return Settings(
        app_id=str_env("GITHUB_APP_IDENTIFIER", "", "GITHUB_APP_ID"),
        webhook_secret=str_env("GITHUB_WEBHOOK_SECRET"),
        private_key=_read_private_key_env(),
        github_api=str_env("GITHUB_API", "https://api.github.com").rstrip("/"),
        github_server_url=str_env("GITHUB_SERVER_URL", "https://github.com").rstrip("/"),
        check_name=str_env("CHECK_NAME", "Octo RuboCop"),
        http_timeout_s=int_env("HTTP_TIMEOUT_S", 25),
        git_timeout_s=int_env("GIT_TIMEOUT_S", 120),
        rubocop_timeout_s=int_env("RUBOCOP_TIMEOUT_S", 300),
        rubocop_bin=str_env("RUBOCOP_BIN", "rubocop"),
        git_author_name=str_env("GIT_AUTHOR_NAME", "Octo RuboCop"),
        git_author_email=str_env("GIT_AUTHOR_EMAIL", "octo-rubocop[bot]@users.noreply.github.com"),
        host=str_env("HOST", "0.0.0.0"),
        port=int_env("PORT", 3000),
        log_level=str_env("LOGLEVEL", "INFO").upper(),
    )


def load_private_key(pem: Optional[str]):
    """Parse a PEM private key, raising ConfigurationError if it is absent or malformed."""
    if not pem:
        raise ConfigurationError("GITHUB_PRIVATE_KEY[_PATH] is not set")
    if not pem.startswith("-----BEGIN") or "PRIVATE KEY" not in pem:
        raise ConfigurationError("GITHUB_PRIVATE_KEY[_PATH] is not a PEM private key")
    try:
        return serialization.load_pem_private_key(pem.encode("utf-8"), password=None)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"GITHUB_PRIVATE_KEY[_PATH] could not be parsed: {e}")


def validate_settings(settings: Settings) -> None:
    if not settings.app_id:
        raise ConfigurationError("GITHUB_APP_IDENTIFIER is missing")
    if not settings.webhook_secret:
        raise ConfigurationError("GITHUB_WEBHOOK_SECRET is missing")
    load_private_key(settings.private_key)
