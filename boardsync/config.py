# boardsync — configuration
# Values come from an optional config.yaml overlaid by BOARDSYNC_* environment
# variables. Missing or invalid required values are fatal at startup.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlparse

CONFIG_PATH = Path.home() / ".config" / "boardsync" / "config.yaml"

ENV_PREFIX = "BOARDSYNC_"


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value or "")
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@dataclass
class Config:
    """Runtime configuration for the board client."""

    # REST API
    api_url: str = ""
    request_timeout: float = 10.0

    # Push channel (derived from api_url when empty)
    push_url: str = ""

    # Identity provider
    auth_domain: str = ""
    auth_client_id: str = ""
    auth_audience: str = ""
    auth_client_secret: str = ""
    access_token: str = ""          # pre-issued token, skips the OAuth exchange

    # Push channel reconnect backoff
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_max_attempts: int = 5

    # Pending optimistic mutations are released after this many seconds
    pending_mutation_timeout: float = 5.0

    def resolve(self):
        """Normalize URLs and derive the push-channel base from the API URL."""
        self.api_url = self.api_url.strip().rstrip("/")
        if not self.push_url:
            self.push_url = self.api_url
        self.push_url = self.push_url.strip().rstrip("/")

    def validate(self):
        """Raise ConfigError naming every missing or invalid field."""
        problems: List[str] = []

        if not self.api_url:
            problems.append("api_url is required")
        elif not _is_http_url(self.api_url):
            problems.append(f"api_url must be an http(s) URL, got: '{self.api_url}'")
        if self.push_url and not _is_http_url(self.push_url):
            problems.append(f"push_url must be an http(s) URL, got: '{self.push_url}'")

        for name in ("auth_domain", "auth_client_id", "auth_audience"):
            if not getattr(self, name):
                problems.append(f"{name} is required")

        if self.request_timeout <= 0:
            problems.append("request_timeout must be > 0")
        if self.retry_initial_delay <= 0:
            problems.append("retry_initial_delay must be > 0")
        if self.retry_max_delay < self.retry_initial_delay:
            problems.append("retry_max_delay must be >= retry_initial_delay")
        if self.retry_max_attempts < 0:
            problems.append("retry_max_attempts must be >= 0")
        if self.pending_mutation_timeout <= 0:
            problems.append("pending_mutation_timeout must be > 0")

        if problems:
            raise ConfigError("Invalid configuration:\n  " + "\n  ".join(problems))

    @staticmethod
    def _coerce(f, value, source: str):
        """Convert a raw file or environment value to the field's type."""
        if f.type in (int, "int", float, "float"):
            convert = int if f.type in (int, "int") else float
            try:
                if isinstance(value, bool):
                    raise ValueError(value)
                return convert(value)
            except (TypeError, ValueError):
                raise ConfigError(f"{source} must be a number, got: '{value}'")
        if not isinstance(value, str):
            raise ConfigError(f"{source} must be a string, got: '{value}'")
        return value

    @classmethod
    def _from_file(cls, data: Mapping[str, object], cfg_path: Path) -> Dict[str, object]:
        """Pick known keys from the YAML mapping, coerced to each field's type."""
        values = {}
        for f in fields(cls):
            if data.get(f.name) is None:
                continue
            values[f.name] = cls._coerce(f, data[f.name], f"{f.name} in {cfg_path}")
        return values

    @classmethod
    def _from_env(cls, environ: Mapping[str, str]) -> Dict[str, object]:
        """Pick BOARDSYNC_<FIELD> variables, coerced to each field's type."""
        values = {}
        for f in fields(cls):
            raw = environ.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = cls._coerce(f, raw, ENV_PREFIX + f.name.upper())
        return values

    @classmethod
    def load(
        cls,
        path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Config":
        """
        Load config from YAML (if present) and the environment, then validate.

        Environment variables win over the file. The file path is taken from
        `path`, then BOARDSYNC_CONFIG, then the per-user default.
        """
        environ = os.environ if environ is None else environ
        cfg_path = Path(path or environ.get(ENV_PREFIX + "CONFIG") or CONFIG_PATH)

        data = {}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Cannot parse {cfg_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"{cfg_path} must contain a mapping")

        values = cls._from_file(data, cfg_path)
        values.update(cls._from_env(environ))

        cfg = cls(**values)
        cfg.resolve()
        cfg.validate()
        return cfg
