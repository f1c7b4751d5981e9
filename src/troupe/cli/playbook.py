"""
Playbook CLI entrypoint for troupe-playbook.

Usage:
    troupe-playbook --version
    troupe-playbook -i inventory playbook.yml
"""

import argparse
import json
import platform
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from troupe import __version__
from troupe.config import load_config
from troupe.display import Display, setup_logging
from troupe.engine.errors import ConfigError, ExitCode


def get_version_string() -> str:
    """Generate a detailed version string."""
    return (
        f"troupe-playbook {__version__}\n"
        f"  python: {platform.python_version()}\n"
        f"  platform: {platform.system()} {platform.release()}"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for troupe-playbook."""
    parser = argparse.ArgumentParser(
        prog="troupe-playbook",
        description="Run playbooks against an inventory",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  troupe-playbook -i inventory.ini site.yml
  troupe-playbook -i hosts.yml deploy.yml --limit 'webservers:!web3' -f 10
  troupe-playbook -i inventory/ site.yml --tags config --check -v
        """,
    )

    parser.add_argument("--version", action="version", version=get_version_string())
    parser.add_argument("playbook", nargs="*", help="Playbook file(s) to run")
    parser.add_argument("-i", "--inventory", dest="inventory", default=None,
                        help="Inventory file or directory")
    parser.add_argument("-c", "--config", dest="config", default=None,
                        help="YAML config file (default: $TROUPE_CONFIG)")
    parser.add_argument("-v", "--verbose", action="count", default=None,
                        help="Increase verbosity (-v, -vv)")
    parser.add_argument("-C", "--check", action="store_true", default=None,
                        help="Run in check mode (dry run)")
    parser.add_argument("-l", "--limit", dest="limit", default=None,
                        help="Further limit hosts with a pattern")
    parser.add_argument("-t", "--tags", dest="tags", default=None,
                        help="Only run tasks tagged with these values (comma separated)")
    parser.add_argument("--skip-tags", dest="skip_tags", default=None,
                        help="Skip tasks tagged with these values (comma separated)")
    parser.add_argument("-f", "--forks", dest="forks", type=int, default=None,
                        help="Number of hosts to run in parallel (default: 5)")
    parser.add_argument("-b", "--become", action="store_true", default=None,
                        help="Run operations with become")
    parser.add_argument("--become-user", dest="become_user", default=None,
                        help="Run operations as this user (default: root)")
    parser.add_argument("-T", "--timeout", dest="timeout", type=float, default=None,
                        help="Per-operation timeout in seconds")
    parser.add_argument("-e", "--extra-vars", dest="extra_vars", action="append", default=[],
                        help="Extra variables as key=value, JSON or @file (repeatable)")
    parser.add_argument("--force-handlers", action="store_true", default=None,
                        help="Run handlers even on failed hosts")
    parser.add_argument("--json", action="store_true", default=None,
                        help="Output results in JSON format")
    return parser


def parse_extra_vars(extra_vars_list: List[str]) -> Dict[str, Any]:
    """
    Parse ``-e`` values.

    Accepts JSON objects, ``@file`` (YAML or JSON) and space separated
    ``key=value`` pairs whose values are decoded as JSON when possible.
    """
    result: Dict[str, Any] = {}
    for item in extra_vars_list:
        item = item.strip()
        if not item:
            continue

        if item.startswith('@'):
            path = Path(item[1:])
            if not path.is_file():
                raise ConfigError(f"Extra vars file not found: {path}")
            data = yaml.safe_load(path.read_text(encoding='utf-8')) or {}
            if not isinstance(data, dict):
                raise ConfigError(f"Extra vars file must contain a mapping: {path}")
            result.update(data)
            continue

        if item.startswith('{'):
            try:
                data = json.loads(item)
            except json.JSONDecodeError as e:
                raise ConfigError(f"Invalid JSON in extra vars: {e}")
            result.update(data)
            continue

        for pair in item.split():
            key, sep, value = pair.partition('=')
            if not sep or not key:
                raise ConfigError(f"Extra vars must be key=value, JSON or @file: {pair!r}")
            try:
                result[key] = json.loads(value)
            except json.JSONDecodeError:
                result[key] = value
    return result


def main(args: Optional[List[str]] = None) -> int:
    """Main entrypoint for troupe-playbook CLI."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.playbook:
        parser.print_help()
        return ExitCode.SUCCESS

    if not parsed.inventory:
        print("ERROR: Inventory (-i/--inventory) is required", file=sys.stderr)
        return ExitCode.PARSE_ERROR

    try:
        config = load_config(parsed.config).merged(
            limit=parsed.limit,
            tags=parsed.tags,
            skip_tags=parsed.skip_tags,
            forks=parsed.forks,
            check_mode=parsed.check,
            become=parsed.become,
            become_user=parsed.become_user,
            timeout=parsed.timeout,
            extra_vars=parse_extra_vars(parsed.extra_vars) or None,
            force_handlers=parsed.force_handlers,
            verbosity=parsed.verbose,
            json_output=parsed.json,
        )
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return ExitCode.GENERIC_ERROR

    setup_logging(config.verbosity)

    from troupe.engine.runner import PlaybookRunner

    runner = PlaybookRunner(
        inventory=parsed.inventory,
        playbooks=parsed.playbook,
        config=config,
        display=Display(verbosity=config.verbosity, json_output=config.json_output),
    )
    return runner.run()


if __name__ == "__main__":
    sys.exit(main())
