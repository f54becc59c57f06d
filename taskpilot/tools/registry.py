"""Tool registration, metadata and dispatch with timeout, retry and metrics."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from langchain_core.tools import BaseTool

from taskpilot.config.settings import RegistrySettings
from taskpilot.models import RiskLevel
from taskpilot.utils import error_handler as errors
from taskpilot.utils.logging_utils import log_tool_call, log_tool_result

LOGGER = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any], "ToolContext"], Union[Any, Awaitable[Any]]]
Sleep = Callable[[float], Awaitable[Any]]

_JSON_TYPES = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}


@dataclass(slots=True)
class ToolContext:
    """Per-call context handed to tool handlers.

    ``chain`` and ``page`` carry the collaborator adapters that web3 and page
    tools delegate to.
    """

    session_id: Optional[str] = None
    account: Optional[str] = None
    chain_id: Optional[int] = None
    chain: Any = None
    page: Any = None
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """Named, schema-described capability with risk and timeout policy."""

    name: str
    description: str
    handler: ToolHandler
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}, "required": []})
    risk_level: RiskLevel = RiskLevel.LOW
    category: str = "utility"
    timeout_ms: int = 30000
    retryable: bool = True

    @property
    def required_params(self) -> List[str]:
        return list(self.parameters.get("required", []))

    @property
    def properties(self) -> Dict[str, Any]:
        return dict(self.parameters.get("properties", {}))

    def spec(self) -> Dict[str, Any]:
        """Function-calling description of the tool."""
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


@dataclass(slots=True)
class ToolResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    duration: float = 0.0  # milliseconds
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def error_type(self) -> Optional[str]:
        return self.metadata.get("error_type")


@dataclass(slots=True)
class ToolMetrics:
    executions: int = 0
    successes: int = 0
    failures: int = 0
    average_duration: float = 0.0
    last_execution: Optional[float] = None


@dataclass(slots=True)
class ExecutionRecord:
    tool: str
    params: Dict[str, Any]
    success: bool
    attempt: int
    duration: float
    error: Optional[str]
    timestamp: float


@dataclass(slots=True)
class ParameterCheck:
    valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass(slots=True)
class ToolCall:
    name: str
    params: Dict[str, Any] = field(default_factory=dict)


class ToolRegistry:
    """Holds tool definitions and dispatches calls to them.

    A single call is raced against the tool's ``timeout_ms``; sync handlers
    run in a worker thread so they are raced too. Failures of retryable
    tools are retried with ``2^attempt * backoff_base_ms`` delay until
    ``max_retries`` attempts were made. Cancellation and configuration
    errors are never retried. Every attempt updates per-tool
    metrics and the capped execution history. Lookup and parameter errors
    are returned as failed results, never raised.
    """

    def __init__(
        self,
        settings: Optional[RegistrySettings] = None,
        tools: Optional[Iterable[ToolDefinition]] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.settings = settings or RegistrySettings()
        self._tools: Dict[str, ToolDefinition] = {}
        self._metrics: Dict[str, ToolMetrics] = {}
        self._history: Deque[ExecutionRecord] = deque(maxlen=self.settings.history_limit)
        self._lock = threading.Lock()
        self._sleep: Sleep = sleep or asyncio.sleep
        if tools:
            for tool in tools:
                self.register(tool)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, tool: ToolDefinition) -> None:
        self._check_definition(tool)
        if tool.name in self._tools:
            LOGGER.info(f"Overwriting tool registration: {tool.name}")
        self._tools[tool.name] = tool
        self._metrics.setdefault(tool.name, ToolMetrics())
        LOGGER.debug(f"Registered tool {tool.name} ({tool.category}, {tool.risk_level.value})")

    def register_langchain_tool(
        self,
        tool: BaseTool,
        *,
        risk_level: RiskLevel = RiskLevel.LOW,
        category: str = "utility",
        timeout_ms: Optional[int] = None,
        retryable: bool = True,
    ) -> ToolDefinition:
        """Adapt a langchain-core tool and register it."""

        schema = tool.get_input_schema().model_json_schema()
        parameters = {
            "type": "object",
            "properties": schema.get("properties", {}),
            "required": schema.get("required", []),
        }

        async def handler(params: Dict[str, Any], context: ToolContext) -> Any:
            return await tool.ainvoke(params)

        definition = ToolDefinition(
            name=tool.name,
            description=tool.description,
            handler=handler,
            parameters=parameters,
            risk_level=risk_level,
            category=category,
            timeout_ms=timeout_ms or self.settings.default_timeout_ms,
            retryable=retryable,
        )
        self.register(definition)
        return definition

    def unregister(self, name: str) -> bool:
        removed = self._tools.pop(name, None)
        self._metrics.pop(name, None)
        return removed is not None

    @staticmethod
    def _check_definition(tool: ToolDefinition) -> None:
        if not tool.name or not tool.name.strip():
            raise errors.ValidationSchemaError("Tool name must be a non-empty string")
        if not callable(tool.handler):
            raise errors.ValidationSchemaError(f"Tool {tool.name}: handler is not callable")
        if tool.timeout_ms <= 0:
            raise errors.ValidationSchemaError(f"Tool {tool.name}: timeout_ms must be positive")
        if not isinstance(tool.risk_level, RiskLevel):
            raise errors.ValidationSchemaError(f"Tool {tool.name}: unknown risk level {tool.risk_level!r}")

        parameters = tool.parameters
        if not isinstance(parameters, Mapping):
            raise errors.ValidationSchemaError(f"Tool {tool.name}: parameters must be a JSON schema object")
        properties = parameters.get("properties", {})
        required = parameters.get("required", [])
        if not isinstance(properties, Mapping) or not isinstance(required, (list, tuple)):
            raise errors.ValidationSchemaError(f"Tool {tool.name}: malformed parameter schema")
        undeclared = [name for name in required if name not in properties]
        if undeclared:
            raise errors.ValidationSchemaError(
                f"Tool {tool.name}: required parameters not declared: {', '.join(undeclared)}"
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def get_tool(self, name: str) -> ToolDefinition:
        if name not in self._tools:
            raise errors.ToolNotFoundError(name)
        return self._tools[name]

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self, category: Optional[str] = None, risk_level: Optional[RiskLevel] = None) -> List[ToolDefinition]:
        tools = list(self._tools.values())
        if category is not None:
            tools = [t for t in tools if t.category == category]
        if risk_level is not None:
            tools = [t for t in tools if t.risk_level == risk_level]
        return tools

    def categories(self) -> List[str]:
        return sorted({t.category for t in self._tools.values()})

    def function_specs(self) -> List[Dict[str, Any]]:
        return [tool.spec() for tool in self._tools.values()]

    def validate_parameters(self, name: str, params: Mapping[str, Any]) -> ParameterCheck:
        """Check required presence and declared JSON types."""

        tool = self._tools.get(name)
        if tool is None:
            return ParameterCheck(valid=False, errors=[f"Tool not found: {name}"])

        problems: List[str] = []
        for param in tool.required_params:
            if params.get(param) is None:
                problems.append(f"Missing required parameter: {param}")

        for param, value in params.items():
            declared = tool.properties.get(param)
            if value is None or not isinstance(declared, Mapping):
                continue
            expected = _JSON_TYPES.get(declared.get("type"))
            if expected is None:
                continue
            # bool is an int subclass; only accept it for boolean fields
            if isinstance(value, bool) and bool not in expected:
                problems.append(f"Parameter {param} should be {declared['type']}")
            elif not isinstance(value, expected):
                problems.append(f"Parameter {param} should be {declared['type']}")

        return ParameterCheck(valid=not problems, errors=problems)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def execute(
        self,
        name: str,
        params: Optional[Dict[str, Any]] = None,
        context: Optional[ToolContext] = None,
        *,
        max_attempts: Optional[int] = None,
    ) -> ToolResult:
        """Run one tool call, retrying retryable failures.

        ``max_attempts`` overrides ``settings.max_retries`` for this call;
        callers that keep their own retry budget pass 1.
        """
        params = dict(params or {})
        max_attempts = self.settings.max_retries if max_attempts is None else max(1, max_attempts)
        context = context or ToolContext()

        tool = self._tools.get(name)
        if tool is None:
            LOGGER.warning(f"Tool not found: {name}")
            return ToolResult(
                success=False,
                error=str(errors.ToolNotFoundError(name)),
                metadata={"tool": name, "attempt": 0, "error_type": "ToolNotFoundError"},
            )

        check = self.validate_parameters(name, params)
        if not check.valid:
            LOGGER.warning(f"Invalid parameters for {name}: {check.errors}")
            return ToolResult(
                success=False,
                error="Invalid parameters: " + "; ".join(check.errors),
                metadata={
                    "tool": name,
                    "attempt": 0,
                    "category": tool.category,
                    "error_type": "InvalidParameters",
                    "errors": check.errors,
                },
            )

        started = time.perf_counter()
        attempt = 1
        while True:
            log_tool_call(LOGGER, name, params, attempt)
            attempt_started = time.perf_counter()
            try:
                data = await self._invoke(tool, params, context)
            except (errors.CancellationError, errors.ConfigurationError) as e:
                self._record(tool.name, params, False, attempt, attempt_started, str(e))
                log_tool_result(LOGGER, name, str(e), success=False)
                return self._failure(tool, attempt, started, str(e), type(e).__name__)
            except Exception as e:
                message = str(e) or type(e).__name__
                self._record(tool.name, params, False, attempt, attempt_started, message)
                log_tool_result(LOGGER, name, message, success=False)

                if tool.retryable and attempt < max_attempts:
                    delay_ms = (2 ** attempt) * self.settings.backoff_base_ms
                    LOGGER.info(f"Retrying {name} in {delay_ms}ms (attempt {attempt + 1}/{max_attempts})")
                    await self._sleep(delay_ms / 1000)
                    attempt += 1
                    continue

                error_type = type(e).__name__ if isinstance(e, errors.TaskPilotError) else "ToolExecutionError"
                return self._failure(tool, attempt, started, message, error_type)

            self._record(tool.name, params, True, attempt, attempt_started, None)
            log_tool_result(LOGGER, name, data, success=True)
            return ToolResult(
                success=True,
                data=data,
                duration=(time.perf_counter() - started) * 1000,
                metadata={"tool": name, "attempt": attempt, "category": tool.category},
            )

    async def execute_many(
        self,
        calls: Sequence[Union[ToolCall, Mapping[str, Any]]],
        context: Optional[ToolContext] = None,
    ) -> List[ToolResult]:
        """Run a batch of calls, at most ``max_concurrency`` at a time.

        Results are returned in input order.
        """
        normalized = [self._as_call(call) for call in calls]
        if not self.settings.enable_parallel or len(normalized) <= 1:
            return [await self.execute(call.name, call.params, context) for call in normalized]

        tasks: List[asyncio.Future] = []
        in_flight: set = set()
        for call in normalized:
            if len(in_flight) >= self.settings.max_concurrency:
                _, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
            task = asyncio.ensure_future(self.execute(call.name, call.params, context))
            tasks.append(task)
            in_flight.add(task)

        # one task per call, so results line up with the input
        return list(await asyncio.gather(*tasks))

    @staticmethod
    def _as_call(call: Union[ToolCall, Mapping[str, Any]]) -> ToolCall:
        if isinstance(call, ToolCall):
            return call
        return ToolCall(name=call["name"], params=dict(call.get("params") or {}))

    async def _invoke(self, tool: ToolDefinition, params: Dict[str, Any], context: ToolContext) -> Any:
        timeout = tool.timeout_ms / 1000
        try:
            if inspect.iscoroutinefunction(tool.handler):
                return await asyncio.wait_for(tool.handler(params, context), timeout=timeout)
            # sync handlers run off the event loop so the timeout still applies
            started = time.perf_counter()
            outcome = await asyncio.wait_for(asyncio.to_thread(tool.handler, params, context), timeout=timeout)
            if inspect.isawaitable(outcome):
                remaining = max(timeout - (time.perf_counter() - started), 0.001)
                return await asyncio.wait_for(outcome, timeout=remaining)
            return outcome
        except asyncio.TimeoutError as e:
            raise errors.TimeoutError(f"Tool execution timeout after {tool.timeout_ms}ms") from e

    def _failure(self, tool: ToolDefinition, attempt: int, started: float, message: str, error_type: str) -> ToolResult:
        return ToolResult(
            success=False,
            error=message,
            duration=(time.perf_counter() - started) * 1000,
            metadata={"tool": tool.name, "attempt": attempt, "category": tool.category, "error_type": error_type},
        )

    # ------------------------------------------------------------------
    # Metrics and history
    # ------------------------------------------------------------------

    def _record(self, name: str, params: Dict[str, Any], success: bool, attempt: int,
                attempt_started: float, error: Optional[str]) -> None:
        duration = (time.perf_counter() - attempt_started) * 1000
        now = time.time()
        with self._lock:
            self._history.append(ExecutionRecord(
                tool=name,
                params=params,
                success=success,
                attempt=attempt,
                duration=duration,
                error=error,
                timestamp=now,
            ))
            if not self.settings.enable_metrics:
                return
            metrics = self._metrics.setdefault(name, ToolMetrics())
            metrics.executions += 1
            if success:
                metrics.successes += 1
            else:
                metrics.failures += 1
            metrics.average_duration += (duration - metrics.average_duration) / metrics.executions
            metrics.last_execution = now

    def get_metrics(self, name: str) -> Optional[ToolMetrics]:
        return self._metrics.get(name)

    def get_history(self, limit: Optional[int] = None, tool: Optional[str] = None) -> List[ExecutionRecord]:
        with self._lock:
            records = list(self._history)
        if tool is not None:
            records = [r for r in records if r.tool == tool]
        if limit is not None:
            records = records[-limit:] if limit > 0 else []
        return records

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
        LOGGER.info("Tool execution history cleared")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            metrics = list(self._metrics.values())
        executions = sum(m.executions for m in metrics)
        successes = sum(m.successes for m in metrics)
        weighted = sum(m.average_duration * m.executions for m in metrics)

        categories: Dict[str, int] = {}
        for tool in self._tools.values():
            categories[tool.category] = categories.get(tool.category, 0) + 1

        return {
            "total_tools": len(self._tools),
            "total_executions": executions,
            "success_rate": successes / executions if executions else 0.0,
            "average_duration": weighted / executions if executions else 0.0,
            "categories": categories,
        }
