"""
Troupe Host Patterns

Resolves host-pattern expressions against an inventory.

Supported terms (separated by ``:`` or ``,``; separators inside brackets,
braces or parentheses belong to the term, so ``~web\\d{1,3}`` is one term):
- ``all`` / ``*`` - every host
- ``web1`` - a host
- ``webservers`` - a group, including its descendant groups
- ``web*`` - glob over host and group names
- ``~web\\d+`` - regex over host and group names
- ``&term`` - intersection, ``!term`` (or ``&!term``) - exclusion
"""

import fnmatch
import re
from typing import TYPE_CHECKING, Dict, List, NamedTuple

from troupe.engine.errors import PatternResolutionError

if TYPE_CHECKING:
    from troupe.engine.inventory import Host, InventoryManager


GLOB_CHARS = ('*', '?', '[')
SEPARATORS = (':', ',')
OPENERS = '([{'
CLOSERS = ')]}'


class PatternTerm(NamedTuple):
    """One parsed term of a host pattern."""
    op: str  # 'union', 'intersect' or 'exclude'
    expr: str


def split_terms(pattern: str) -> List[str]:
    """Split on top-level separators only."""
    terms: List[str] = []
    current: List[str] = []
    depth = 0
    for ch in pattern:
        if ch in OPENERS:
            depth += 1
        elif ch in CLOSERS and depth:
            depth -= 1
        if ch in SEPARATORS and not depth:
            terms.append(''.join(current))
            current = []
        else:
            current.append(ch)
    terms.append(''.join(current))
    return terms


def parse_pattern(pattern: str) -> List[PatternTerm]:
    """Split a pattern into operator-tagged terms."""
    if pattern is None or not str(pattern).strip():
        raise PatternResolutionError(str(pattern))

    terms: List[PatternTerm] = []
    for raw in split_terms(str(pattern)):
        term = raw.strip()
        if not term:
            continue
        if term.startswith('&!') or term.startswith('!'):
            terms.append(PatternTerm('exclude', term.lstrip('&!')))
        elif term.startswith('&'):
            terms.append(PatternTerm('intersect', term[1:]))
        else:
            terms.append(PatternTerm('union', term))

    if not terms or any(not t.expr for t in terms):
        raise PatternResolutionError(str(pattern))
    return terms


def _match_term(pattern: str, term: str, inventory: 'InventoryManager') -> List['Host']:
    """Hosts selected by a single term, in deterministic order."""
    if term in ('all', '*'):
        return list(inventory.hosts.values())

    if term.startswith('~'):
        try:
            regex = re.compile(term[1:])
        except re.error:
            raise PatternResolutionError(pattern, term)
        return _collect(inventory, lambda name: regex.search(name) is not None)

    if any(c in term for c in GLOB_CHARS):
        return _collect(inventory, lambda name: fnmatch.fnmatchcase(name, term))

    if term in inventory.groups:
        return inventory.group_hosts(term)
    if term in inventory.hosts:
        return [inventory.hosts[term]]

    raise PatternResolutionError(pattern, term)


def _collect(inventory: 'InventoryManager', matches) -> List['Host']:
    """Hosts whose own name, or one of whose groups' names, matches."""
    selected: Dict[str, 'Host'] = {}
    for name, host in inventory.hosts.items():
        if matches(name):
            selected.setdefault(name, host)
    for group_name in inventory.groups:
        if matches(group_name):
            for host in inventory.group_hosts(group_name):
                selected.setdefault(host.name, host)
    return list(selected.values())


def resolve(pattern: str, inventory: 'InventoryManager') -> List['Host']:
    """
    Resolve a host pattern to an ordered, deduplicated list of hosts.

    Union terms are applied left to right first, then intersections, then
    exclusions, so an exclusion removes hosts whatever its position. A
    pattern with no union term starts from every host.

    Args:
        pattern: Host pattern expression
        inventory: Inventory to resolve against

    Returns:
        Hosts in first-seen order

    Raises:
        PatternResolutionError: If a literal host/group term does not exist
    """
    terms = parse_pattern(pattern)

    unions = [t for t in terms if t.op == 'union']
    selected: Dict[str, 'Host'] = {}
    if unions:
        for term in unions:
            for host in _match_term(pattern, term.expr, inventory):
                selected.setdefault(host.name, host)
    else:
        selected = dict(inventory.hosts)

    for term in terms:
        if term.op == 'intersect':
            keep = {h.name for h in _match_term(pattern, term.expr, inventory)}
            selected = {n: h for n, h in selected.items() if n in keep}

    for term in terms:
        if term.op == 'exclude':
            drop = {h.name for h in _match_term(pattern, term.expr, inventory)}
            selected = {n: h for n, h in selected.items() if n not in drop}

    return list(selected.values())


def filter_hosts(hosts: List['Host'], limit: str, inventory: 'InventoryManager') -> List['Host']:
    """Restrict ``hosts`` to those matched by ``limit``, keeping their order."""
    allowed = {h.name for h in resolve(limit, inventory)}
    return [h for h in hosts if h.name in allowed]
