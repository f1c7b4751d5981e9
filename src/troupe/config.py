"""
Troupe Run Configuration

Invocation options shared by the runner, executor and pool.
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Set, Union

import yaml

from troupe.engine.errors import ConfigError

HASH_BEHAVIOURS = ("replace", "merge")

# Environment variable naming a default config file
CONFIG_ENV_VAR = "TROUPE_CONFIG"


@dataclass
class RunConfig:
    """
    Configuration for one run.

    Attributes:
        limit: Host pattern further restricting every play's targets
        tags: Only run tasks carrying one of these tags
        skip_tags: Skip tasks carrying one of these tags
        forks: Maximum number of hosts advanced concurrently
        check_mode: Dispatch modules in dry-run mode
        become: Privilege escalation default for plays that don't set it
        become_user: Target user for privilege escalation
        timeout: Per-operation timeout in seconds (None = unbounded)
        extra_vars: Highest-precedence variables
        hash_behaviour: "replace" or "merge" for mapping-valued variables
        force_handlers: Run notified handlers even on failed hosts
        notify_on_change_only: Only notify handlers from changed results
    """

    limit: Optional[str] = None
    tags: Set[str] = field(default_factory=set)
    skip_tags: Set[str] = field(default_factory=set)
    forks: int = 5
    check_mode: bool = False
    become: bool = False
    become_user: str = "root"
    timeout: Optional[float] = None
    extra_vars: Dict[str, Any] = field(default_factory=dict)
    hash_behaviour: str = "replace"
    force_handlers: bool = False
    notify_on_change_only: bool = False

    # Output settings
    verbosity: int = 0
    json_output: bool = False

    def validate(self) -> 'RunConfig':
        """Check option values, returning self for chaining."""
        if not isinstance(self.forks, int) or self.forks < 1:
            raise ConfigError(f"forks must be a positive integer, got {self.forks!r}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout!r}")
        if self.hash_behaviour not in HASH_BEHAVIOURS:
            raise ConfigError(
                f"hash_behaviour must be one of {', '.join(HASH_BEHAVIOURS)}, "
                f"got {self.hash_behaviour!r}"
            )
        if not isinstance(self.extra_vars, dict):
            raise ConfigError("extra_vars must be a mapping")
        return self

    def merged(self, **overrides: Any) -> 'RunConfig':
        """Return a copy with non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigError(f"Unknown config option(s): {', '.join(sorted(unknown))}")
        if 'extra_vars' in changes:
            changes['extra_vars'] = {**self.extra_vars, **changes['extra_vars']}
        for key in ('tags', 'skip_tags'):
            if key in changes:
                changes[key] = _as_tag_set(changes[key])
        return replace(self, **changes).validate()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RunConfig':
        """Build a config from a plain mapping, rejecting unknown keys."""
        return cls().merged(**data)


def _as_tag_set(value: Any) -> Set[str]:
    if value is None:
        return set()
    if isinstance(value, str):
        return {t.strip() for t in value.split(',') if t.strip()}
    return {str(t) for t in value}


def load_config(path: Optional[Union[str, Path]] = None) -> RunConfig:
    """
    Load a RunConfig from a YAML file.

    Args:
        path: Config file; defaults to $TROUPE_CONFIG when set

    Returns:
        RunConfig (defaults when no file is given)
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)
        if not path:
            return RunConfig()

    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        data = yaml.safe_load(config_path.read_text(encoding='utf-8')) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}", details=str(e))

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {config_path}")

    return RunConfig.from_dict(data)
