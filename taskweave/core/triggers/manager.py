# taskweave/core/triggers/manager.py
from __future__ import annotations
import asyncio
import inspect
from datetime import datetime, timezone
from typing import Any, Mapping, Optional
from pydantic import TypeAdapter, ValidationError
from result import is_err
from taskweave.core.collaborators import RuleEvaluator
from taskweave.core.definitions.store import DefinitionStore
from taskweave.core.engine.controller import ExecutionController
from taskweave.core.errors import ErrorCode, InvalidParamError
from taskweave.core.logging import get_logger
from taskweave.core.models.app import TriggerConfig
from taskweave.core.models.schedule import (
    POLICY_NAMES,
    ConditionalPolicy,
    ImmediatePolicy,
    ScheduledPolicy,
    TriggerPolicy,
)
from taskweave.core.triggers.calculator import next_fire_time

logger = get_logger('triggers')

_policy_adapter: TypeAdapter[TriggerPolicy] = TypeAdapter(TriggerPolicy)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _invalid_schedule(message: str, *notes: str, help_text: str | None = None) -> InvalidParamError:
    return InvalidParamError(
        message=message,
        code=ErrorCode.CONFIG_INVALID_SCHEDULE,
        notes=list(notes),
        help_text=help_text,
    )


def parse_schedule(
    policy_name: str, schedule_data: str | Mapping[str, Any] | None = None,
) -> TriggerPolicy:
    """
    Build a policy from its name and policy-specific data.

    ``schedule_data`` may be a mapping or a string:
        - immediate: ignored, must be empty
        - scheduled: a JSON object (``{"pattern": {...}, "timezone": ...}``)
          or an ISO-8601 timestamp for a one-shot start (naive means UTC)
        - conditional: a JSON object or the bare condition string

    Raises:
        InvalidParamError: unknown policy name or malformed data
    """
    name = policy_name.strip().lower()
    if name not in POLICY_NAMES:
        raise _invalid_schedule(
            f"unknown scheduling policy '{policy_name}'",
            help_text=f'use one of: {", ".join(sorted(POLICY_NAMES))}',
        )

    data: dict[str, Any]
    if schedule_data is None or (isinstance(schedule_data, str) and not schedule_data.strip()):
        data = {}
    elif isinstance(schedule_data, Mapping):
        data = dict(schedule_data)
    else:
        text = schedule_data.strip()
        if text.startswith('{'):
            try:
                loaded = TypeAdapter(dict[str, Any]).validate_json(text)
            except ValidationError as exc:
                raise _invalid_schedule(
                    'schedule data is not a JSON object', str(exc.errors()[0]['msg']),
                ) from exc
            data = loaded
        elif name == 'scheduled':
            data = {'at': _parse_timestamp(text)}
        elif name == 'conditional':
            data = {'condition': text}
        else:
            raise _invalid_schedule(
                'immediate policy takes no schedule data', f'got: {text[:40]!r}',
            )

    if name == 'immediate' and data and set(data) != {'type'}:
        raise _invalid_schedule(
            'immediate policy takes no schedule data', f'got keys: {sorted(data)}',
        )
    data['type'] = name
    try:
        return _policy_adapter.validate_python(data)
    except ValidationError as exc:
        raise _invalid_schedule(
            f'invalid {name} schedule data',
            *[
                f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in exc.errors()
            ],
        ) from exc


def _parse_timestamp(text: str) -> datetime:
    try:
        at = datetime.fromisoformat(text)
    except ValueError as exc:
        raise _invalid_schedule(
            'scheduled policy data is neither JSON nor an ISO-8601 timestamp',
            f'got: {text[:40]!r}',
            help_text='e.g. "2026-01-31T09:00:00+00:00"',
        ) from exc
    if at.tzinfo is None:
        at = at.replace(tzinfo=timezone.utc)
    return at


class TriggerManager:
    """
    Turns per-workflow scheduling policies into calls of
    ``ExecutionController.start``.

    Policies are stored by workflow name, independent of executions. While
    the manager runs, each scheduled or conditional policy owns one timer
    task on the engine loop. Manual ``start`` is always allowed.
    """

    def __init__(
        self,
        store: DefinitionStore,
        controller: ExecutionController,
        *,
        config: TriggerConfig | None = None,
        rule_evaluator: Optional[RuleEvaluator] = None,
        resources: Any = None,
    ) -> None:
        self.store = store
        self.controller = controller
        self.config = config or TriggerConfig()
        self.rule_evaluator = rule_evaluator
        self.resources = resources
        self._policies: dict[str, TriggerPolicy] = {}
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._running = False
        # Observability: successful automatic starts per workflow.
        self.fire_counts: dict[str, int] = {}
        self.last_fired: dict[str, datetime] = {}

    @property
    def running(self) -> bool:
        return self._running

    # --- policy storage ---

    async def set_schedule(self, workflow_name: str, policy: TriggerPolicy) -> None:
        """
        Store ``policy`` for ``workflow_name`` and re-arm it if running.

        Raises:
            NotFoundError: unknown workflow
            InvalidParamError: conditional policy without a rule evaluator
        """
        self.store.get_info(workflow_name)
        if isinstance(policy, ConditionalPolicy) and self.rule_evaluator is None:
            raise _invalid_schedule(
                'conditional policy needs a rule evaluator',
                f"workflow '{workflow_name}': condition {policy.condition!r}",
                help_text='pass rule_evaluator= to Taskweave',
            )
        await self._disarm(workflow_name)
        self._policies[workflow_name] = policy
        logger.info(f"Schedule for '{workflow_name}' set to {policy.type}")
        if self._running:
            self._arm(workflow_name, policy)

    def get_schedule(self, workflow_name: str) -> TriggerPolicy:
        """The stored policy; ImmediatePolicy when none was set."""
        self.store.get_info(workflow_name)
        return self._policies.get(workflow_name, ImmediatePolicy())

    async def clear_schedule(self, workflow_name: str) -> None:
        await self._disarm(workflow_name)
        self._policies.pop(workflow_name, None)

    def list_schedules(self) -> dict[str, TriggerPolicy]:
        return dict(self._policies)

    # --- lifecycle ---

    async def start(self) -> None:
        if self._running:
            return
        if not self.config.enabled:
            logger.info('Triggers disabled by configuration; not arming')
            return
        self._running = True
        for workflow_name, policy in self._policies.items():
            self._arm(workflow_name, policy)
        logger.info(f'Trigger manager started ({len(self._timers)} armed)')

    async def stop(self) -> None:
        self._running = False
        for workflow_name in list(self._timers):
            await self._disarm(workflow_name)
        logger.info('Trigger manager stopped')

    # --- timers ---

    def _arm(self, workflow_name: str, policy: TriggerPolicy) -> None:
        match policy:
            case ScheduledPolicy():
                coro = self._run_scheduled(workflow_name, policy)
            case ConditionalPolicy():
                coro = self._run_conditional(workflow_name, policy)
            case _:
                return
        self._timers[workflow_name] = asyncio.create_task(
            coro, name=f'taskweave-trigger-{workflow_name}',
        )

    async def _disarm(self, workflow_name: str) -> None:
        timer = self._timers.pop(workflow_name, None)
        if timer is None or timer.done():
            return
        timer.cancel()
        await asyncio.gather(timer, return_exceptions=True)

    async def _run_scheduled(self, workflow_name: str, policy: ScheduledPolicy) -> None:
        last: Optional[datetime] = None
        while True:
            fire_at = next_fire_time(policy, _now(), last)
            if fire_at is None:
                if self._timers.get(workflow_name) is asyncio.current_task():
                    del self._timers[workflow_name]
                return
            delay = (fire_at - _now()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            last = _now()
            await self._fire(workflow_name, policy.allow_overlap)

    async def _run_conditional(self, workflow_name: str, policy: ConditionalPolicy) -> None:
        interval = policy.check_interval_seconds or self.config.default_check_interval_seconds
        previous = False
        while True:
            current = await self._evaluate(workflow_name, policy.condition)
            if current and (not policy.edge_triggered or not previous):
                await self._fire(workflow_name, policy.allow_overlap)
            previous = current
            await asyncio.sleep(interval)

    async def _evaluate(self, workflow_name: str, condition: str) -> bool:
        if self.rule_evaluator is None:
            return False
        context = {
            'workflow_name': workflow_name,
            'now': _now(),
            'resources': self.resources,
        }
        try:
            value = self.rule_evaluator.evaluate(condition, context)
            if inspect.isawaitable(value):
                value = await value
        except Exception as exc:
            # A broken predicate must not kill the polling loop; it counts as false.
            logger.warning(
                f"Condition {condition!r} of '{workflow_name}' failed to evaluate: "
                f'{type(exc).__name__}: {exc}'
            )
            return False
        return bool(value)

    async def _fire(self, workflow_name: str, allow_overlap: bool) -> None:
        if not allow_overlap and self.controller.has_live_execution(workflow_name):
            logger.info(f"Trigger for '{workflow_name}' skipped: an execution is still live")
            return
        started = await self.controller.start(workflow_name)
        if is_err(started):
            logger.warning(
                f"Triggered start of '{workflow_name}' failed: "
                f'{started.err_value.code.value}: {started.err_value.message}'
            )
            return
        self.fire_counts[workflow_name] = self.fire_counts.get(workflow_name, 0) + 1
        self.last_fired[workflow_name] = _now()
        logger.info(f"Triggered execution {started.ok_value} of '{workflow_name}'")
