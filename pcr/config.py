"""Runtime configuration for the replication playground.

Settings are resolved once at startup and handed to every component; nothing
reads the environment after that.

Resolution order:
1. Command-line flags (applied with ``Settings.override``)
2. Environment variables
3. Built-in defaults
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Explicit configuration threaded through every component."""

    network: str = "roachnet1"
    image_repo: str = "docker.io/cockroachdb/cockroach"
    version: str = ""

    # Replication poll (replicating + ready conjunction)
    max_iters: int = 60
    poll_interval: float = 5
    # Cutover poll (failover readiness)
    ready_max_iters: int = 30
    ready_poll_interval: float = 10
    # Cluster init and node readiness after a restart
    init_max_iters: int = 60
    init_interval: float = 2
    # Pause between B -> A replication start and its failover in run-all
    settle_seconds: float = 30

    dry_run: bool = False
    debug: bool = False

    state_file: Path = field(default_factory=lambda: Path.home() / ".pcr_state")
    registry_path: Path = field(default_factory=lambda: Path.home() / ".pcr" / "registry.db")
    log_file: Optional[Path] = None

    organization: str = "Workshop"
    license_key: str = ""
    console_host: str = "localhost"
    rest_port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        db_dir = os.getenv("DB_DIR")
        registry = os.getenv("DB_PATH") or (
            os.path.join(db_dir, "registry.db") if db_dir else None
        )
        log_file = os.getenv("PCR_LOG_FILE")
        defaults = cls()
        return cls(
            network=os.getenv("PCR_NETWORK", defaults.network),
            image_repo=os.getenv("IMAGE_REPO", defaults.image_repo),
            version=os.getenv("CRDB_VERSION", ""),
            max_iters=_env_int("MAX_ITERS", defaults.max_iters),
            poll_interval=_env_float("POLL_INTERVAL", defaults.poll_interval),
            ready_max_iters=_env_int("READY_MAX_ITERS", defaults.ready_max_iters),
            ready_poll_interval=_env_float("READY_POLL_INTERVAL", defaults.ready_poll_interval),
            init_max_iters=_env_int("INIT_MAX_ITERS", defaults.init_max_iters),
            init_interval=_env_float("INIT_INTERVAL", defaults.init_interval),
            settle_seconds=_env_float("SETTLE_SECONDS", defaults.settle_seconds),
            dry_run=_env_bool("DRY_RUN"),
            debug=_env_bool("DEBUG"),
            state_file=Path(os.getenv("PCR_STATE_FILE", str(defaults.state_file))).expanduser(),
            registry_path=Path(registry).expanduser() if registry else defaults.registry_path,
            log_file=Path(log_file) if log_file else None,
            organization=os.getenv("PCR_ORGANIZATION", defaults.organization),
            license_key=os.getenv("PCR_LICENSE", ""),
            console_host=os.getenv("PCR_CONSOLE_HOST", defaults.console_host),
            rest_port=_env_int("REST_PORT", defaults.rest_port),
        )

    def override(self, **changes) -> "Settings":
        """Return a copy with every non-None value in ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def image_for(self, version: Optional[str] = None) -> str:
        """Image reference for ``version`` (falls back to the configured one, then latest)."""
        ver = version or self.version or "latest"
        if ver[0].isdigit():
            ver = f"v{ver}"
        return f"{self.image_repo}:{ver}"
