"""
Troupe Task Executor

Walks a play's tasks for every target host. Each host advances through
its own copy of the task list inside one pool slot:

1. skip when the host already failed in this play (unless the task always runs)
2. apply the tag filter
3. evaluate ``when`` (per item when the task loops)
4. expand loops, render arguments, dispatch to the module
5. record the result; failure marks the host, success notifies handlers
6. write ``register`` results and module facts to the run state

Notified handlers run after every host has finished its main tasks, or
earlier for one host at a ``meta: flush_handlers`` task.
"""

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from troupe.config import RunConfig
from troupe.engine.conditionals import Conditional
from troupe.engine.errors import (
    ConditionalError,
    ConnectionError,
    ErrorKind,
    ModuleError,
    TaskCancelledError,
    TaskTimeoutError,
    TemplateError,
    UndefinedVariableError,
)
from troupe.engine.inventory import Host, InventoryManager
from troupe.engine.playbook import BlockInfo, Play, Task
from troupe.engine.pool import ConnectionFactory, ExecutionPool
from troupe.engine.results import PlayResult, TaskResult, TaskStatus
from troupe.engine.state import RunState
from troupe.engine.templating import get_template_engine
from troupe.engine.variables import MAGIC_VARS, VariableManager
from troupe.modules.base import ModuleContext, get_module

logger = logging.getLogger(__name__)

GATHER_FACTS_TASK = "Gathering Facts"


def should_run_tags(task_tags: Iterable[str], only: Set[str], skip: Set[str]) -> bool:
    """
    Tag filter.

    - ``always`` runs unless "always" itself is skipped
    - ``never`` runs only when one of the task's tags is requested by name
    - ``tagged``/``untagged`` match any tagged/untagged task
    - an empty include set or ``all`` includes everything
    """
    tags = set(task_tags)

    if 'always' in tags and 'always' not in skip:
        return True

    if tags & skip:
        return False
    if 'tagged' in skip and tags:
        return False
    if 'untagged' in skip and not tags:
        return False

    if tags & only:
        return True
    if 'never' in tags:
        return False
    if not only or 'all' in only:
        return True
    if 'tagged' in only and tags:
        return True
    if 'untagged' in only and not tags:
        return True
    return False


@dataclass
class HostContext:
    """Per-host, per-play execution state."""

    host: Host
    play: Play
    connection: Any = None
    unreachable_msg: str = ""
    current_task: Optional[Task] = None
    # Blocks this host started executing
    entered_blocks: Set[BlockInfo] = field(default_factory=set)
    # Blocks whose main section failed and switched to rescue
    failed_blocks: Set[BlockInfo] = field(default_factory=set)

    @property
    def name(self) -> str:
        return self.host.name


class TaskExecutor:
    """
    Runs plays against resolved hosts.

    One executor serves a whole run: connections opened in one play are
    reused by later plays, and facts and registered results carry over.
    """

    def __init__(
        self,
        inventory: InventoryManager,
        config: Optional[RunConfig] = None,
        run_state: Optional[RunState] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        display: Any = None,
    ):
        self.inventory = inventory
        self.config = config or RunConfig()
        self.run_state = run_state or RunState()
        self.display = display
        self.engine = get_template_engine()
        self.variables = VariableManager(
            inventory,
            run_state=self.run_state,
            extra_vars=self.config.extra_vars,
            hash_behaviour=self.config.hash_behaviour,
            check_mode=self.config.check_mode,
        )
        self.pool = ExecutionPool(
            forks=self.config.forks,
            connection_factory=connection_factory,
            run_state=self.run_state,
        )

    async def run_play(self, play: Play, hosts: List[Host]) -> PlayResult:
        """
        Run one play on already-resolved hosts.

        Returns:
            PlayResult listing every attempted (host, task) pair
        """
        self.run_state.start_play()
        play_result = PlayResult(play_name=play.name, hosts=[h.name for h in hosts])
        contexts: Dict[str, HostContext] = {}

        tasks = list(play.tasks)
        if play.gather_facts:
            tasks.insert(0, Task(name=GATHER_FACTS_TASK, module='setup', tags=['always']))

        async def run_host(host: Host) -> None:
            ctx = HostContext(host=host, play=play)
            contexts[host.name] = ctx
            await self._connect(ctx)
            for task in tasks:
                if self.run_state.cancelled:
                    break
                ctx.current_task = task
                await self.run_task(ctx, task, play_result)

        def host_crashed(host: Host, error: Exception) -> None:
            ctx = contexts.get(host.name)
            task_name = ctx.current_task.name if ctx and ctx.current_task else "setup"
            self.run_state.mark_failed(host.name)
            self._record(play_result, TaskResult(
                host=host.name,
                task_name=task_name,
                status=TaskStatus.FAILED,
                msg=f"Internal error: {error}",
                error_kind=ErrorKind.MODULE.value,
            ))

        await self.pool.run_hosts(hosts, run_host, on_error=host_crashed)

        async def flush_host(host: Host) -> None:
            await self.flush_handlers(contexts[host.name], play_result)

        pending = [h for h in hosts if h.name in contexts and self.run_state.handlers.has_pending(h.name)]
        if pending and not self.run_state.cancelled:
            await self.pool.run_hosts(pending, flush_host, on_error=host_crashed)

        return play_result

    async def close(self) -> None:
        await self.pool.close()

    async def _connect(self, ctx: HostContext) -> None:
        if self.run_state.is_unreachable(ctx.name):
            ctx.unreachable_msg = "Host unreachable earlier in this run"
            return
        try:
            ctx.connection = await self.pool.dispatch(
                self.pool.connect(ctx.host), ctx.name, "connect", self.config.timeout,
            )
        except (ConnectionError, TaskTimeoutError) as e:
            logger.warning("%s: unreachable: %s", ctx.name, e)
            ctx.unreachable_msg = str(e)
            self.run_state.mark_unreachable(ctx.name)
        except TaskCancelledError:
            # Nothing is dispatched after cancellation
            return

    async def run_task(self, ctx: HostContext, task: Task, play_result: PlayResult) -> Optional[TaskResult]:
        """Run one task for one host, recording and returning its result."""
        host = ctx.name

        if self.run_state.is_unreachable(host):
            return self._record(play_result, TaskResult(
                host=host,
                task_name=task.name,
                status=TaskStatus.UNREACHABLE,
                msg=ctx.unreachable_msg or "Host unreachable",
                error_kind=ErrorKind.CONNECTION.value,
            ))

        chain = list(task.block_chain())
        for block, section in chain:
            # Rest of a failed block, or rescue of a block that did not fail
            if section == 'block' and block in ctx.failed_blocks:
                return None
            if section == 'rescue' and block not in ctx.failed_blocks:
                return None

        if self.run_state.is_failed(host) and not self._runs_after_failure(ctx, task, chain):
            return self._record(play_result, TaskResult(
                host=host,
                task_name=task.name,
                status=TaskStatus.SKIPPED,
                msg="Host previously failed",
            ))

        if not should_run_tags(list(task.tags) + list(ctx.play.tags), self.config.tags, self.config.skip_tags):
            return self._record(play_result, TaskResult(
                host=host,
                task_name=task.name,
                status=TaskStatus.SKIPPED,
                msg="Excluded by tags",
            ))

        for block, _ in chain:
            ctx.entered_blocks.add(block)

        result = await self.execute_task(ctx, task)
        return await self._settle(ctx, task, result, chain, play_result)

    async def _settle(self, ctx: HostContext, task: Task, result: TaskResult, chain, play_result: PlayResult) -> TaskResult:
        """Resolve notify targets, then mark, record and follow up on a result."""
        notify = self._notify_targets(ctx, task, result)
        self._mark_outcome(ctx, result, chain)
        self._record(play_result, result)
        await self._after_result(ctx, task, result, notify, play_result)
        return result

    def _runs_after_failure(self, ctx: HostContext, task: Task, chain) -> bool:
        if 'always' in task.tags:
            return True
        return any(section == 'always' and block in ctx.entered_blocks for block, section in chain)

    async def execute_task(self, ctx: HostContext, task: Task) -> TaskResult:
        """Evaluate conditions and loops, then dispatch; never raises for host-level errors."""
        host = ctx.name
        scope = self.variables.get_vars(ctx.host, ctx.play, task)
        try:
            if task.loop is None:
                if not self._condition_holds(task, scope):
                    return _skipped(host, task, "Conditional result was False")
                result = await self._invoke(ctx, task, scope)
            else:
                result = await self._run_loop(ctx, task, scope)
        except UndefinedVariableError as e:
            result = _failed(host, task, str(e.with_host(host)), ErrorKind.UNDEFINED)
        except ConditionalError as e:
            result = _failed(host, task, str(e), ErrorKind.CONDITIONAL)
        except TemplateError as e:
            result = _failed(host, task, str(e), ErrorKind.TEMPLATE)

        if result.status == TaskStatus.FAILED and task.ignore_errors:
            result.ignored = True
        return result

    def _condition_holds(self, task: Task, scope: Mapping[str, Any]) -> bool:
        conditional = Conditional(task.when, self.engine)
        if not conditional:
            return True
        try:
            return conditional.evaluate(scope)
        except UndefinedVariableError:
            raise
        except TemplateError as e:
            raise ConditionalError('when', e.message, template=str(task.when))

    async def _run_loop(self, ctx: HostContext, task: Task, scope: Mapping[str, Any]) -> TaskResult:
        """Run one sub-invocation per loop item, in item order."""
        host = ctx.name
        items = self._loop_items(task, scope)
        results: List[TaskResult] = []

        for index, item in enumerate(items):
            item_vars = dict(scope)
            item_vars[task.loop_var] = item
            if task.index_var:
                item_vars[task.index_var] = index
            item_scope = MappingProxyType(item_vars)

            try:
                if not self._condition_holds(task, item_scope):
                    item_result = _skipped(host, task, "Conditional result was False")
                else:
                    item_result = await self._invoke(ctx, task, item_scope)
            except UndefinedVariableError as e:
                item_result = _failed(host, task, str(e.with_host(host)), ErrorKind.UNDEFINED)
            except ConditionalError as e:
                item_result = _failed(host, task, str(e), ErrorKind.CONDITIONAL)
            except TemplateError as e:
                item_result = _failed(host, task, str(e), ErrorKind.TEMPLATE)

            if item_result.status == TaskStatus.FAILED and task.ignore_errors:
                item_result.ignored = True
            item_result.payload.setdefault(task.loop_var, item)
            results.append(item_result)

            if item_result.status == TaskStatus.UNREACHABLE:
                break
            if item_result.status == TaskStatus.FAILED and not task.ignore_errors:
                break
            if self.run_state.cancelled:
                break

        return _aggregate(host, task, results)

    def _loop_items(self, task: Task, scope: Mapping[str, Any]) -> List[Any]:
        if isinstance(task.loop, str):
            items = self.engine.render(task.loop, scope)
        else:
            items = self.engine.render_recursive(task.loop, scope)

        if isinstance(items, Mapping):
            return [{'key': k, 'value': v} for k, v in items.items()]
        if isinstance(items, (list, tuple)):
            return list(items)
        raise TemplateError(
            f"Loop source must be a list or mapping, got {type(items).__name__}",
            template=str(task.loop),
        )

    async def _invoke(self, ctx: HostContext, task: Task, scope: Mapping[str, Any]) -> TaskResult:
        """Render arguments and dispatch one module call through the pool."""
        host = ctx.name
        module_cls = get_module(task.module)
        if module_cls is None:
            return _failed(host, task, f"Unknown module: {task.module}", ErrorKind.UNKNOWN_MODULE)

        args = self.engine.render_recursive(task.args, scope)

        check_mode = self.config.check_mode if task.check_mode is None else bool(task.check_mode)
        if check_mode and not module_cls.supports_check_mode:
            return _skipped(host, task, f"Module {task.module} does not support check mode")

        module = module_cls(ModuleContext(
            host=ctx.host,
            connection=ctx.connection,
            become=self._become(ctx.play, task),
            become_user=task.become_user or ctx.play.become_user or self.config.become_user,
        ))
        timeout = task.timeout if task.timeout is not None else self.config.timeout

        try:
            module_result = await self.pool.dispatch(
                module.execute(args, scope, check_mode), host, task.name, timeout,
            )
        except TaskTimeoutError as e:
            return _failed(host, task, str(e), ErrorKind.TIMEOUT)
        except TaskCancelledError as e:
            return _failed(host, task, str(e), ErrorKind.CANCELLED)
        except ConnectionError as e:
            ctx.unreachable_msg = str(e)
            return TaskResult(
                host=host,
                task_name=task.name,
                status=TaskStatus.UNREACHABLE,
                msg=str(e),
                error_kind=ErrorKind.CONNECTION.value,
            )
        except ModuleError as e:
            return _failed(host, task, str(e), ErrorKind.MODULE)

        result = module_result.to_task_result(host, task.name)

        if module_result.facts and not result.failed:
            reserved = sorted(set(module_result.facts) & MAGIC_VARS)
            if reserved:
                return _failed(host, task, f"Cannot set reserved variable(s): {', '.join(reserved)}",
                               ErrorKind.INVALID_ARGS)
            self.run_state.facts.set_facts(host, module_result.facts)

        self._apply_result_conditions(task, scope, result)
        return result

    def _become(self, play: Play, task: Task) -> bool:
        if task.become is not None:
            return bool(task.become)
        if play.become is not None:
            return bool(play.become)
        return self.config.become

    def _apply_result_conditions(self, task: Task, scope: Mapping[str, Any], result: TaskResult) -> None:
        """Override changed/failed status from ``changed_when``/``failed_when``."""
        if task.changed_when is None and task.failed_when is None:
            return
        if result.status in (TaskStatus.SKIPPED, TaskStatus.UNREACHABLE):
            return

        registered = result.to_registered()
        eval_vars = dict(scope)
        eval_vars['result'] = registered
        if task.register:
            eval_vars[task.register] = registered

        try:
            if task.changed_when is not None and result.status != TaskStatus.FAILED:
                result.changed = Conditional(task.changed_when, self.engine).evaluate(eval_vars)
                result.status = TaskStatus.CHANGED if result.changed else TaskStatus.OK
            if task.failed_when is not None:
                if Conditional(task.failed_when, self.engine).evaluate(eval_vars):
                    result.status = TaskStatus.FAILED
                    result.changed = False
                    result.error_kind = ErrorKind.MODULE.value
                    result.msg = result.msg or "failed_when condition was true"
                elif result.status == TaskStatus.FAILED:
                    result.status = TaskStatus.CHANGED if result.changed else TaskStatus.OK
                    result.error_kind = None
        except TemplateError as e:
            result.status = TaskStatus.FAILED
            result.changed = False
            result.msg = str(e)
            result.error_kind = ErrorKind.CONDITIONAL.value

    def _mark_outcome(self, ctx: HostContext, result: TaskResult, chain) -> None:
        """Mark the host failed or unreachable, or hand a failure to the nearest rescue."""
        if result.status == TaskStatus.UNREACHABLE:
            self.run_state.mark_unreachable(ctx.name)
        elif result.status == TaskStatus.FAILED and not result.ignored:
            for block, section in chain:
                if section == 'block' and block.has_rescue:
                    ctx.failed_blocks.add(block)
                    result.rescued = True
                    return
            self.run_state.mark_failed(ctx.name)

    def _notify_targets(self, ctx: HostContext, task: Task, result: TaskResult) -> List[str]:
        """
        Rendered handler names this result notifies.

        A name that fails to render turns the result into a failure.
        """
        if not (result.ok and task.notify):
            return []
        if self.config.notify_on_change_only and not result.changed:
            return []

        scope = self.variables.get_vars(ctx.host, ctx.play, task)
        try:
            return [str(self.engine.render(name, scope)) for name in task.notify]
        except UndefinedVariableError as e:
            _fail_in_place(result, str(e.with_host(ctx.name)), ErrorKind.UNDEFINED, task.ignore_errors)
        except TemplateError as e:
            _fail_in_place(result, str(e), ErrorKind.TEMPLATE, task.ignore_errors)
        return []

    async def _after_result(
        self, ctx: HostContext, task: Task, result: TaskResult, notify: List[str], play_result: PlayResult,
    ) -> None:
        """Notifications, register and meta actions."""
        host = ctx.name

        for handler_name in notify:
            if self.run_state.handlers.notify(host, handler_name):
                logger.debug("%s: notified handler '%s'", host, handler_name)

        if task.register:
            self.run_state.facts.register(host, task.register, result.to_registered())

        if result.ok and result.payload.get('meta_action') == 'flush_handlers':
            await self.flush_handlers(ctx, play_result)

    async def flush_handlers(self, ctx: HostContext, play_result: PlayResult) -> None:
        """
        Run this host's notified handlers once each, in definition order.

        A handler notified by an earlier handler in the same flush still
        runs when it is defined later; one defined earlier stays queued for
        the next flush. Failed and unreachable hosts only run handlers with
        ``force_handlers``, and a handler failure stops the rest.
        """
        host = ctx.name
        queue = self.run_state.handlers
        if not queue.has_pending(host):
            return

        blocked = self.run_state.is_failed(host) or self.run_state.is_unreachable(host)
        if blocked and not self.config.force_handlers:
            logger.info("%s: dropping handlers for failed host", host)
            queue.clear(host)
            return

        consumed = set(queue.pending(host))
        for handler in ctx.play.handlers:
            if self.run_state.cancelled:
                break
            if not queue.is_notified(host, handler):
                continue
            if self.run_state.is_unreachable(host):
                break
            consumed.add(handler.name)
            consumed.update(handler.listen)
            result = await self.execute_task(ctx, handler)
            await self._settle(ctx, handler, result, [], play_result)
            if self.run_state.is_failed(host) and not self.config.force_handlers:
                logger.info("%s: handler '%s' failed, skipping the rest", host, handler.name)
                queue.clear(host)
                return

        queue.discard(host, consumed)

    def _record(self, play_result: PlayResult, result: TaskResult) -> TaskResult:
        play_result.add_result(result)
        if self.display is not None:
            self.display.task_result(result)
        return result


def _skipped(host: str, task: Task, msg: str) -> TaskResult:
    return TaskResult(host=host, task_name=task.name, status=TaskStatus.SKIPPED, msg=msg)


def _failed(host: str, task: Task, msg: str, kind: ErrorKind) -> TaskResult:
    return TaskResult(host=host, task_name=task.name, status=TaskStatus.FAILED, msg=msg, error_kind=kind.value)


def _aggregate(host: str, task: Task, results: List[TaskResult]) -> TaskResult:
    """Combine loop item results into one task result."""
    if any(r.status == TaskStatus.UNREACHABLE for r in results):
        status = TaskStatus.UNREACHABLE
    elif any(r.status == TaskStatus.FAILED for r in results):
        status = TaskStatus.FAILED
    elif all(r.status == TaskStatus.SKIPPED for r in results):
        status = TaskStatus.SKIPPED
    elif any(r.changed for r in results):
        status = TaskStatus.CHANGED
    else:
        status = TaskStatus.OK

    failed = [r for r in results if r.failed]
    if failed:
        msg = failed[0].msg
        error_kind = failed[0].error_kind
    elif not results:
        msg, error_kind = "No items in loop", None
    else:
        msg, error_kind = f"Loop completed with {len(results)} item(s)", None

    return TaskResult(
        host=host,
        task_name=task.name,
        status=status,
        changed=status == TaskStatus.CHANGED,
        msg=msg,
        error_kind=error_kind,
        loop_results=results,
    )


def _fail_in_place(result: TaskResult, msg: str, kind: ErrorKind, ignore_errors: bool) -> None:
    result.status = TaskStatus.FAILED
    result.changed = False
    result.msg = msg
    result.error_kind = kind.value
    result.ignored = ignore_errors
