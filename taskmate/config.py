# TaskMate configuration
# Override paths and settings via config.yaml or TASKMATE_* environment variables.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

# env var -> (field name, type)
ENV_OVERRIDES = {
    "TASKMATE_DB": ("db_path", str),
    "TASKMATE_SESSION_BACKEND": ("session_backend", str),
    "TASKMATE_REDIS_URL": ("redis_url", str),
    "TASKMATE_CRON_SECRET": ("cron_secret", str),
    "TASKMATE_CRON_OWNER": ("cron_owner_email", str),
    "TASKMATE_LOG_LEVEL": ("log_level", str),
    "TASKMATE_COOKIE_SECURE": ("cookie_secure", bool),
}


@dataclass
class Config:
    """Runtime configuration for the TaskMate server."""

    # Storage
    db_path: str = "~/.local/share/taskmate/taskmate.db"
    query_retries: int = 3
    retry_delay_secs: float = 1.0

    # Sessions
    session_backend: str = "memory"   # "memory" | "redis"
    redis_url: str = "redis://localhost:6379/0"
    session_ttl_hours: int = 24
    cookie_name: str = "taskmate-session"
    cookie_secure: bool = False

    # Cleanup
    retention_hours: int = 48
    cron_secret: str = ""
    cron_owner_email: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ in filesystem paths."""
        if self.db_path != ":memory:":
            self.db_path = str(Path(self.db_path).expanduser())

    def apply_env(self, environ: Optional[dict] = None):
        """Overlay TASKMATE_* environment variables onto the loaded values."""
        environ = os.environ if environ is None else environ
        for env_name, (attr, kind) in ENV_OVERRIDES.items():
            raw = environ.get(env_name)
            if raw is None or raw.strip() == "":
                continue
            if kind is bool:
                setattr(self, attr, raw.strip().lower() in {"1", "true", "yes", "on"})
            else:
                setattr(self, attr, raw.strip())

    @classmethod
    def load(cls, path: Optional[str] = None, environ: Optional[dict] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        environ = os.environ if environ is None else environ
        cfg_path = Path(path or environ.get("TASKMATE_CONFIG") or CONFIG_PATH)
        known = {f.name for f in fields(cls)}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except (yaml.YAMLError, TypeError, AttributeError):
                cfg = cls()
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.resolve_paths()
        return cfg
