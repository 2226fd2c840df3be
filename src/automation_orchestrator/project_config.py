"""Project configuration for the automation orchestrator.

Manages the per-project .automation/ directory with config.toml,
.gitignore and the run log database. Provides discovery via
find_project_root() and database resolution for CLI commands.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from .circuit_breaker_config import CircuitBreakerConfig
from .orchestrator.config import OrchestratorConfig
from .retry.config import RetryConfig
from .targets import InMemoryTargetRegistry, TargetKind, TargetSystem

logger = logging.getLogger(__name__)

_AUTOMATION_DIR = ".automation"
_CONFIG_FILE = "config.toml"
_DB_FILE = "automation.db"

_GITIGNORE_CONTENT = """\
automation.db
*.db-journal
*.db-wal
*.db-shm
"""

_RETRY_KEYS = ("max_retries", "initial_delay", "max_delay", "backoff_multiplier", "jitter")


@dataclass(frozen=True)
class ProjectConfig:
    """Per-project orchestrator configuration.

    Loaded from .automation/config.toml via load_project_config().
    """

    name: str
    retry: RetryConfig = field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    deployment: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    targets: tuple[TargetSystem, ...] = ()

    def resolve_db_path(self, project_root: Path) -> Path:
        """Resolve absolute path to the project database."""
        return project_root.resolve() / _AUTOMATION_DIR / _DB_FILE

    def target_registry(self) -> InMemoryTargetRegistry:
        return InMemoryTargetRegistry(self.targets)


def load_project_config(project_path: Path) -> ProjectConfig:
    """Load config from .automation/config.toml.

    Args:
        project_path: Path to the project root directory.

    Returns:
        Parsed ProjectConfig.

    Raises:
        FileNotFoundError: If .automation/config.toml is missing.
        ValueError: On invalid, empty, or corrupt TOML.
    """
    config_file = project_path / _AUTOMATION_DIR / _CONFIG_FILE
    if not config_file.exists():
        msg = f"Project config not found: {config_file}"
        raise FileNotFoundError(msg)

    content = config_file.read_text(encoding="utf-8")
    if not content.strip():
        msg = f"Config file is empty: {config_file}"
        raise ValueError(msg)

    try:
        data = tomllib.loads(content)
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {config_file}: {exc}"
        raise ValueError(msg) from exc

    return _parse_config(data)


def _table(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        msg = f"[{name}] section must be a table"
        raise ValueError(msg)
    return section


def _parse_config(data: dict[str, Any]) -> ProjectConfig:
    """Parse raw TOML data into a ProjectConfig.

    Unknown fields are silently ignored for forward compatibility.
    """
    project = _table(data, "project")
    retry_data = _table(data, "retry")
    breaker_data = _table(data, "circuit_breaker")
    deployment_data = _table(data, "deployment")

    name = project.get("name")
    if not isinstance(name, str) or not name:
        msg = "project.name is required and must be a non-empty string"
        raise ValueError(msg)

    try:
        retry = RetryConfig(**{k: retry_data[k] for k in _RETRY_KEYS if k in retry_data})
        breaker_keys = {f.name for f in fields(CircuitBreakerConfig)}
        circuit_breaker = CircuitBreakerConfig(
            **{k: v for k, v in breaker_data.items() if k in breaker_keys}
        )
        deployment_keys = {f.name for f in fields(OrchestratorConfig)}
        deployment = OrchestratorConfig(
            **{k: v for k, v in deployment_data.items() if k in deployment_keys}
        )
    except TypeError as exc:
        msg = f"Invalid configuration value: {exc}"
        raise ValueError(msg) from exc

    config = ProjectConfig(
        name=name,
        retry=retry,
        circuit_breaker=circuit_breaker,
        deployment=deployment,
        targets=_parse_targets(data.get("targets", [])),
    )
    _validate_config(config)
    return config


def _parse_targets(raw: Any) -> tuple[TargetSystem, ...]:
    if not isinstance(raw, list):
        msg = "[[targets]] must be an array of tables"
        raise ValueError(msg)

    targets: list[TargetSystem] = []
    for entry in raw:
        if not isinstance(entry, dict):
            msg = "[[targets]] entries must be tables"
            raise ValueError(msg)
        target_id = entry.get("id")
        if not isinstance(target_id, str) or not target_id:
            msg = "targets.id is required and must be a non-empty string"
            raise ValueError(msg)
        try:
            kind = TargetKind(entry.get("kind", TargetKind.STAGING.value))
        except ValueError:
            msg = f"targets.kind must be 'production' or 'staging', got {entry.get('kind')!r}"
            raise ValueError(msg) from None
        targets.append(
            TargetSystem(
                id=target_id,
                name=str(entry.get("name", target_id)),
                kind=kind,
                owner=entry.get("owner"),
                endpoint=str(entry.get("endpoint", "")),
            )
        )
    return tuple(targets)


def create_default_config(
    project_path: Path,
    *,
    name: str | None = None,
    force: bool = False,
) -> ProjectConfig:
    """Create .automation/ directory with config.toml and .gitignore.

    Args:
        project_path: Path to the project root directory.
        name: Project name. Defaults to directory basename.
        force: Overwrite existing .automation/ configuration.

    Returns:
        The created ProjectConfig.

    Raises:
        FileExistsError: If .automation/ exists and force=False.
    """
    automation_dir = project_path / _AUTOMATION_DIR
    if automation_dir.exists() and not force:
        msg = f"Project already initialized: {automation_dir}"
        raise FileExistsError(msg)

    resolved_name = name or project_path.resolve().name
    config = ProjectConfig(name=resolved_name)
    _validate_config(config)

    automation_dir.mkdir(parents=True, exist_ok=True)

    config_file = automation_dir / _CONFIG_FILE
    config_file.write_text(_generate_toml(config), encoding="utf-8")

    gitignore_file = automation_dir / ".gitignore"
    gitignore_file.write_text(_GITIGNORE_CONTENT, encoding="utf-8")

    logger.info("Initialized project '%s' at %s", resolved_name, automation_dir)
    return config


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from start to find nearest .automation/ directory.

    Args:
        start: Starting directory. Defaults to cwd.

    Returns:
        The directory containing .automation/, or None if not found.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        if (current / _AUTOMATION_DIR).is_dir():
            return current
        parent = current.parent
        if parent == current:
            return None
        current = parent


def resolve_project_for_cli(
    db_override: str | None = None,
) -> tuple[Path, ProjectConfig | None]:
    """Resolve database path for CLI commands with auto-discovery fallback.

    Args:
        db_override: Explicit --db path. If given, the project config is
            still loaded when one can be found, but never required.

    Returns:
        (db_path, config). config is None when no project was found.

    Raises:
        FileNotFoundError: If no db_override and no .automation/ found.
        ValueError: If .automation/config.toml is corrupt or invalid.
    """
    project_root = find_project_root()

    if db_override is not None:
        config = load_project_config(project_root) if project_root is not None else None
        return Path(db_override), config

    if project_root is None:
        msg = (
            "No .automation/ directory found. "
            "Run 'automation-orchestrator init' first or use --db."
        )
        raise FileNotFoundError(msg)

    config = load_project_config(project_root)
    return config.resolve_db_path(project_root), config


def _generate_toml(config: ProjectConfig) -> str:
    """Generate TOML string from a ProjectConfig.

    Handles Python->TOML type mapping: integers unquoted, floats with a
    decimal point, strings quoted. Targets are left as a commented example.
    """
    retry = config.retry
    breaker = config.circuit_breaker
    deployment = config.deployment
    lines = [
        "[project]",
        f'name = "{_escape_toml_string(config.name)}"',
        "",
        "[retry]",
        f"max_retries = {retry.max_retries}",
        f"initial_delay = {float(retry.initial_delay)}",
        f"max_delay = {float(retry.max_delay)}",
        f"backoff_multiplier = {float(retry.backoff_multiplier)}",
        f"jitter = {float(retry.jitter)}",
        "",
        "[circuit_breaker]",
        f"failure_threshold = {breaker.failure_threshold}",
        f"recovery_timeout_seconds = {float(breaker.recovery_timeout_seconds)}",
        f"half_open_max_attempts = {breaker.half_open_max_attempts}",
        "",
        "[deployment]",
        f"max_polls = {deployment.max_polls}",
        f"poll_interval_seconds = {float(deployment.poll_interval_seconds)}",
        f"rollback_max_polls = {deployment.rollback_max_polls}",
        f"rollback_poll_interval_seconds = {float(deployment.rollback_poll_interval_seconds)}",
        f"verify_concurrency = {deployment.verify_concurrency}",
        f'api_version = "{_escape_toml_string(deployment.api_version)}"',
        "",
        "# [[targets]]",
        '# id = "staging"',
        '# name = "Staging"',
        '# kind = "staging"',
        '# owner = "acme"',
        '# endpoint = "https://staging.example.com/api"',
        "",
    ]
    return "\n".join(lines)


def _escape_toml_string(value: str) -> str:
    """Escape special characters for TOML string values."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _validate_config(config: ProjectConfig) -> None:
    """Validate config values.

    Raises:
        ValueError: On invalid configuration.
    """
    if not config.name or not config.name.strip():
        msg = "project.name must not be empty"
        raise ValueError(msg)
    if " " in config.name or "\t" in config.name:
        msg = f"project.name must not contain whitespace: '{config.name}'"
        raise ValueError(msg)

    seen: set[str] = set()
    for target in config.targets:
        if target.id in seen:
            msg = f"Duplicate target id: '{target.id}'"
            raise ValueError(msg)
        seen.add(target.id)
        if not target.endpoint:
            msg = f"targets.endpoint is required for target '{target.id}'"
            raise ValueError(msg)
