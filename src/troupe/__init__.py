# Copyright (c) 2024 Troupe Contributors
# MIT License

"""
Troupe: declarative remote-task orchestration.

Resolves host patterns against an inventory, layers variables per host and
task, and drives plays of tasks through pluggable modules with bounded
cross-host parallelism and per-host failure isolation.

Features:
    - Host patterns with union, intersection, exclusion, globs and regexes
    - Fixed-precedence variable layers with optional hash merging
    - Conditionals, loops, tags, handlers, blocks with rescue/always
    - asyncio execution pool with forks, timeouts and cancellation
    - Local and SSH (asyncssh) connections
"""

from __future__ import annotations

from troupe.release import __version__, __author__, __codename__

__all__ = [
    "__version__",
    "__author__",
    "__codename__",
]
