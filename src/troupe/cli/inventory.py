"""
Inventory CLI entrypoint for troupe-inventory.

Usage:
    troupe-inventory -i inventory --list
    troupe-inventory -i inventory --host <hostname>
    troupe-inventory -i inventory --graph [group]
    troupe-inventory -i inventory --pattern 'webservers:&prod'
"""

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

import yaml

from troupe import __version__
from troupe.engine.errors import ExitCode, TroupeError
from troupe.engine.inventory import InventoryManager
from troupe.engine.patterns import resolve
from troupe.engine.variables import VariableManager


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for troupe-inventory."""
    parser = argparse.ArgumentParser(
        prog="troupe-inventory",
        description="Show inventory information",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  troupe-inventory -i inventory.ini --list
  troupe-inventory -i hosts.yml --host web1
  troupe-inventory -i inventory/ --graph
  troupe-inventory -i hosts.yml --pattern 'webservers:&!dbservers'
        """,
    )
    parser.add_argument("--version", action="version", version=f"troupe-inventory {__version__}")
    parser.add_argument("-i", "--inventory", dest="inventory", default=None,
                        help="Inventory file or directory")
    parser.add_argument("--list", action="store_true", dest="list_hosts",
                        help="Output all groups and host variables")
    parser.add_argument("--host", dest="host", default=None,
                        help="Output one host's variables")
    parser.add_argument("--graph", nargs="?", const="all", default=None, metavar="GROUP",
                        help="Output the group tree (default: all)")
    parser.add_argument("--pattern", dest="pattern", default=None,
                        help="Print the hosts a pattern resolves to, in order")
    parser.add_argument("-y", "--yaml", action="store_true",
                        help="Output in YAML format")
    return parser


def build_list(inventory: InventoryManager) -> Dict[str, Any]:
    """Inventory as a mapping: groups with hosts/children/vars plus _meta.hostvars."""
    variables = VariableManager(inventory)
    data: Dict[str, Any] = {
        "_meta": {
            "hostvars": {
                name: dict(variables.get_scope(host, magic=False).flatten())
                for name, host in inventory.hosts.items()
            },
        },
    }
    for name, group in inventory.groups.items():
        entry: Dict[str, Any] = {}
        if group.hosts:
            entry["hosts"] = list(group.hosts)
        if group.children:
            entry["children"] = list(group.children)
        if group.vars:
            entry["vars"] = dict(group.vars)
        if entry or name in ('all', 'ungrouped'):
            data[name] = entry
    return data


def build_graph(inventory: InventoryManager, group_name: str) -> List[str]:
    """Lines of an indented group tree."""
    lines: List[str] = []

    def walk(name: str, depth: int) -> None:
        group = inventory.groups[name]
        lines.append("  " * depth + ("|--" if depth else "") + f"@{name}:")
        for child in group.children:
            walk(child, depth + 1)
        for host in group.hosts:
            lines.append("  " * (depth + 1) + f"|--{host}")

    if group_name not in inventory.groups:
        raise TroupeError(f"Group not found: {group_name}")
    walk(group_name, 0)
    return lines


def _dump(data: Any, as_yaml: bool) -> str:
    if as_yaml:
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return json.dumps(data, indent=2, default=str)


def main(args: Optional[List[str]] = None) -> int:
    """Main entrypoint for troupe-inventory CLI."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not (parsed.list_hosts or parsed.host or parsed.graph or parsed.pattern):
        parser.print_help()
        return ExitCode.SUCCESS

    if not parsed.inventory:
        print("ERROR: Inventory (-i/--inventory) is required", file=sys.stderr)
        return ExitCode.PARSE_ERROR

    try:
        inventory = InventoryManager().parse(parsed.inventory)

        if parsed.list_hosts:
            print(_dump(build_list(inventory), parsed.yaml))
        elif parsed.host:
            host = inventory.get_host(parsed.host)
            if host is None:
                print(f"ERROR: Host not found: {parsed.host}", file=sys.stderr)
                return ExitCode.PARSE_ERROR
            hostvars = VariableManager(inventory).get_scope(host, magic=False).flatten()
            print(_dump(dict(hostvars), parsed.yaml))
        elif parsed.graph:
            print("\n".join(build_graph(inventory, parsed.graph)))
        else:
            for host in resolve(parsed.pattern, inventory):
                print(host.name)
    except TroupeError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return int(e.exit_code)

    return ExitCode.SUCCESS


if __name__ == "__main__":
    sys.exit(main())
