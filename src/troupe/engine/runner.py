"""
Troupe Playbook Runner

High-level runner that coordinates inventory loading, playbook parsing,
host resolution, execution and output.
"""

import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from troupe.config import RunConfig
from troupe.display import Display
from troupe.engine.errors import ExitCode, ParseError, PatternResolutionError, TroupeError
from troupe.engine.executor import TaskExecutor
from troupe.engine.inventory import Host, InventoryManager
from troupe.engine.patterns import filter_hosts, resolve
from troupe.engine.playbook import Play, PlaybookParser
from troupe.engine.pool import ConnectionFactory
from troupe.engine.results import PlaybookResult, PlayResult
from troupe.engine.state import RunState

logger = logging.getLogger(__name__)

InventorySource = Union[str, Path, Dict[str, Any], InventoryManager]


class PlaybookRunner:
    """
    Runs one or more playbooks against an inventory.

    Coordinates:
    - Inventory loading (file, directory, mapping or prebuilt manager)
    - Playbook parsing (paths) or already-built Play objects
    - Host resolution, including the invocation ``limit``
    - Execution, cancellation and the run report

    All host patterns are resolved before the first task runs, so a bad
    pattern aborts the run without touching any host.
    """

    def __init__(
        self,
        inventory: InventorySource,
        playbooks: Sequence[Union[str, Path, Play]],
        config: Optional[RunConfig] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        display: Optional[Display] = None,
    ):
        self.inventory_source = inventory
        self.playbooks = list(playbooks)
        self.config = (config or RunConfig()).validate()
        self.connection_factory = connection_factory
        self.display = display or Display(
            verbosity=self.config.verbosity,
            json_output=self.config.json_output,
        )
        self.run_state = RunState()
        self.inventory: Optional[InventoryManager] = None

    def run(self) -> int:
        """
        Run synchronously and print the report.

        Returns:
            Exit code (0 ok, 2 host failures, 3 parse/pattern error,
            4 unreachable hosts only, 130 cancelled)
        """
        try:
            result = asyncio.run(self.run_async())
        except TroupeError as e:
            self._report_error(e, int(e.exit_code))
            return int(e.exit_code)
        except KeyboardInterrupt:
            self._report_error("Execution interrupted", ExitCode.CANCELLED)
            return ExitCode.CANCELLED

        if self.config.json_output:
            print(result.to_json())
        return int(result.exit_code)

    def cancel(self) -> None:
        """Request run-level cancellation; in-flight tasks fail as cancelled."""
        logger.warning("cancellation requested")
        self.run_state.cancel()

    async def run_async(self) -> PlaybookResult:
        """
        Run everything and return the report.

        Raises:
            ParseError: If inventory or playbooks are malformed
            PatternResolutionError: If a play or limit pattern is invalid
        """
        inventory = self.inventory = self._load_inventory()
        plays = self._load_plays()
        targets = self._resolve_targets(plays, inventory)

        report = PlaybookResult(playbook_path=self._report_path())
        executor = TaskExecutor(
            inventory,
            config=self.config,
            run_state=self.run_state,
            connection_factory=self.connection_factory,
            display=self.display,
        )

        loop = asyncio.get_running_loop()
        handles_sigint = _add_sigint_handler(loop, self.cancel)
        try:
            for play, hosts in targets:
                if self.run_state.cancelled:
                    break
                self.display.play(play.name)
                if not hosts:
                    self.display.warning(f"No hosts matched for play: {play.hosts}")
                    report.add_play_result(PlayResult(play_name=play.name, hosts=[]))
                    continue
                logger.info("play '%s' on %d host(s)", play.name, len(hosts))
                report.add_play_result(await executor.run_play(play, hosts))
        finally:
            if handles_sigint:
                loop.remove_signal_handler(signal.SIGINT)
            await executor.close()

        report.cancelled = self.run_state.cancelled
        self.display.recap(report.get_final_stats())
        return report

    def _load_inventory(self) -> InventoryManager:
        source = self.inventory_source
        if isinstance(source, InventoryManager):
            return source.finalize()
        if isinstance(source, dict):
            return InventoryManager.from_dict(source)
        return InventoryManager().parse(source)

    def _load_plays(self) -> List[Play]:
        plays: List[Play] = []
        for entry in self.playbooks:
            if isinstance(entry, Play):
                plays.append(entry)
                continue
            self.display.playbook(str(entry))
            plays.extend(PlaybookParser(entry).parse())
        if not plays:
            raise ParseError("No plays to run")
        return plays

    def _resolve_targets(self, plays: List[Play], inventory: InventoryManager) -> List[Tuple[Play, List[Host]]]:
        limit = self.config.limit
        if limit:
            # Fail early on a bad limit even when every play matches nothing
            resolve(limit, inventory)

        targets = []
        for play in plays:
            hosts = resolve(play.hosts, inventory)
            if limit:
                hosts = filter_hosts(hosts, limit, inventory)
            targets.append((play, hosts))
        return targets

    def _report_path(self) -> str:
        for entry in self.playbooks:
            if not isinstance(entry, Play):
                return str(entry)
        return "<plays>"

    def _report_error(self, error: Union[TroupeError, str], exit_code: int) -> None:
        if isinstance(error, PatternResolutionError):
            error_type = "pattern_error"
        elif isinstance(error, ParseError):
            error_type = "parse_error"
        elif isinstance(error, TroupeError):
            error_type = "error"
        else:
            error_type = "interrupted"

        if self.config.json_output:
            print(json.dumps({
                "error": True,
                "error_type": error_type,
                "message": str(error),
                "exit_code": int(exit_code),
            }, indent=2))
        else:
            self.display.error(str(error))


def _add_sigint_handler(loop: asyncio.AbstractEventLoop, callback) -> bool:
    """Route Ctrl-C to ``callback``; not every platform's loop supports it."""
    try:
        loop.add_signal_handler(signal.SIGINT, callback)
    except (NotImplementedError, RuntimeError, ValueError):
        return False
    return True
