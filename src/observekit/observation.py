"""Observation: a started/stopped unit of work fanned out to registry handlers."""

from __future__ import annotations

import functools
import inspect
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Protocol, TypeVar, runtime_checkable

from observekit import context as _ambient
from observekit.errors import InvalidInputError, ObservationStateError, RegistryRequiredError

if TYPE_CHECKING:
    from contextvars import Token

    from observekit.handlers.base import ObservationHandler
    from observekit.registry import ObservationRegistry

__all__ = [
    "ErrorInfo",
    "Observation",
    "ObservationContext",
    "ObservationConvention",
    "ObservationScope",
    "ObservationState",
    "observed",
]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ObservationState(str, Enum):
    NOT_STARTED = "not_started"
    STARTED = "started"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ErrorInfo:
    """Failure recorded on an observation."""

    type: str
    message: str
    code: str | None = None
    exception: BaseException | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorInfo:
        code = getattr(exc, "code", None)
        return cls(
            type=type(exc).__name__,
            message=str(exc),
            code=code if isinstance(code, str) else None,
            exception=exc,
        )


@dataclass
class ObservationContext:
    """State of one observation as seen by handlers, filters and conventions.

    Handlers keep their per-observation state in ``data``.
    """

    technical_name: str
    trace_id: str = field(default_factory=_ambient.new_trace_id)
    span_id: str = field(default_factory=_ambient.new_span_id)
    contextual_name: str | None = None
    low_cardinality_tags: dict[str, str] = field(default_factory=dict)
    high_cardinality_tags: dict[str, str] = field(default_factory=dict)
    parent: ObservationContext | None = None
    start_time: float | None = None
    end_time: float | None = None
    duration: float | None = None
    error: ErrorInfo | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        """Name used for spans: the contextual name, else the technical one."""
        return self.contextual_name or self.technical_name

    @property
    def parent_span_id(self) -> str | None:
        return self.parent.span_id if self.parent is not None else None


@runtime_checkable
class ObservationConvention(Protocol):
    """Supplies tags computed from the finished observation, applied on stop."""

    def low_cardinality_tags(self, context: ObservationContext) -> Mapping[str, str]:
        ...

    def high_cardinality_tags(self, context: ObservationContext) -> Mapping[str, str]:
        ...


def _check_tag(key: Any, value: Any) -> tuple[str, str]:
    if not isinstance(key, str) or not key:
        raise InvalidInputError(message=f"Tag key must be a non-empty string, got {key!r}")
    if value is None:
        raise InvalidInputError(message=f"Tag '{key}' has no value")
    return key, str(value)


class ObservationScope:
    """Makes an observation current until closed. Closing twice is a no-op."""

    def __init__(self, observation: Observation, token: Token) -> None:
        self._observation = observation
        self._token = token
        self._closed = False

    @property
    def observation(self) -> Observation:
        return self._observation

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._observation._notify("scope_closed")
        finally:
            _ambient._pop(self._token)

    def __enter__(self) -> ObservationScope:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()


class Observation:
    """A single measured and traced unit of work.

    Usage::

        result = (
            Observation.create("my.observation", registry)
            .with_low_cardinality_tag("low.cardinality.key", "low cardinality value")
            .with_high_cardinality_tag("high.cardinality.key", "high cardinality value")
            .with_contextual_name("command-line-runner")
            .run(work)
        )

    Tags and names may only be set before the observation starts; afterwards
    the builder methods raise ObservationStateError. Instances are single-use.
    """

    def __init__(
        self,
        technical_name: str,
        registry: ObservationRegistry,
        convention: ObservationConvention | None = None,
    ) -> None:
        self._registry = registry
        self._convention = convention
        self._context = ObservationContext(technical_name=technical_name)
        self._state = ObservationState.NOT_STARTED
        self._lock = threading.Lock()
        self._handlers: list[ObservationHandler] = []
        self._started_at: float = 0.0
        self._scope: ObservationScope | None = None

    @classmethod
    def create(
        cls,
        technical_name: str,
        registry: ObservationRegistry | None,
        convention: ObservationConvention | None = None,
    ) -> Observation:
        """Create an observation in the NOT_STARTED state.

        Raises:
            RegistryRequiredError: If registry is None.
            InvalidInputError: If technical_name is empty.
        """
        if not isinstance(technical_name, str) or not technical_name:
            raise InvalidInputError(message=f"Technical name must be a non-empty string, got {technical_name!r}")
        if registry is None:
            raise RegistryRequiredError(technical_name=technical_name)
        return cls(technical_name, registry, convention)

    # ----- Read-only view -----

    @property
    def context(self) -> ObservationContext:
        return self._context

    @property
    def registry(self) -> ObservationRegistry:
        return self._registry

    @property
    def state(self) -> ObservationState:
        return self._state

    @property
    def technical_name(self) -> str:
        return self._context.technical_name

    @property
    def contextual_name(self) -> str | None:
        return self._context.contextual_name

    @property
    def low_cardinality_tags(self) -> dict[str, str]:
        return dict(self._context.low_cardinality_tags)

    @property
    def high_cardinality_tags(self) -> dict[str, str]:
        return dict(self._context.high_cardinality_tags)

    @property
    def start_time(self) -> float | None:
        return self._context.start_time

    @property
    def end_time(self) -> float | None:
        return self._context.end_time

    @property
    def duration(self) -> float | None:
        """Monotonic duration in seconds, set on stop."""
        return self._context.duration

    @property
    def error(self) -> ErrorInfo | None:
        return self._context.error

    @property
    def parent(self) -> ObservationContext | None:
        return self._context.parent

    # ----- Builder -----

    def _ensure_not_started(self, operation: str) -> None:
        if self._state is not ObservationState.NOT_STARTED:
            raise ObservationStateError(self.technical_name, self._state.value, operation)

    def with_low_cardinality_tag(self, key: str, value: Any) -> Observation:
        """Attach a tag with a bounded value space; used as a metric dimension."""
        key, value = _check_tag(key, value)
        with self._lock:
            self._ensure_not_started("tag")
            self._context.low_cardinality_tags[key] = value
        return self

    def with_high_cardinality_tag(self, key: str, value: Any) -> Observation:
        """Attach a tag with an unbounded value space; used only on spans."""
        key, value = _check_tag(key, value)
        with self._lock:
            self._ensure_not_started("tag")
            self._context.high_cardinality_tags[key] = value
        return self

    def with_contextual_name(self, name: str) -> Observation:
        if not isinstance(name, str) or not name:
            raise InvalidInputError(message=f"Contextual name must be a non-empty string, got {name!r}")
        with self._lock:
            self._ensure_not_started("rename")
            self._context.contextual_name = name
        return self

    # ----- Lifecycle -----

    def _notify(self, event: str) -> None:
        getattr(self._registry, f"notify_{event}")(self._context, self._handlers)

    def start(self) -> Observation:
        """Record the start time and notify handlers.

        The observation current at this moment becomes the parent and
        donates its trace id.
        """
        with self._lock:
            self._ensure_not_started("start")
            parent = _ambient.current_observation()
            if parent is not None:
                self._context.parent = parent.context
                self._context.trace_id = parent.context.trace_id
            self._context.start_time = time.time()
            self._started_at = time.perf_counter()
            self._state = ObservationState.STARTED
        self._handlers = self._registry.supporting_handlers(self._context)
        self._notify("start")
        return self

    def open_scope(self) -> ObservationScope:
        """Make this observation current until the returned scope is closed.

        The scope must be closed in the same thread or task that opened it.
        """
        if self._state is not ObservationState.STARTED:
            raise ObservationStateError(self.technical_name, self._state.value, "open scope of")
        token = _ambient._push(self)
        scope = ObservationScope(self, token)
        try:
            self._notify("scope_opened")
        except BaseException:
            scope.close()
            raise
        return scope

    def record_error(self, exc: BaseException) -> Observation:
        """Record a failure. Only the first recorded failure is kept."""
        with self._lock:
            if self._state is not ObservationState.STARTED:
                raise ObservationStateError(self.technical_name, self._state.value, "record error on")
            if self._context.error is not None:
                logger.debug("Observation '%s' already has an error; ignoring %r", self.technical_name, exc)
                return self
            self._context.error = ErrorInfo.from_exception(exc)
        self._notify("error")
        return self

    def stop(self) -> None:
        """Record the end time, apply conventions and filters, notify handlers."""
        with self._lock:
            if self._state is not ObservationState.STARTED:
                raise ObservationStateError(self.technical_name, self._state.value, "stop")
            self._context.duration = time.perf_counter() - self._started_at
            self._context.end_time = time.time()
            self._state = ObservationState.STOPPED
        self._apply_convention()
        self._registry.apply_filters(self._context)
        self._notify("stop")

    def _apply_convention(self) -> None:
        if self._convention is None:
            return
        try:
            low = self._convention.low_cardinality_tags(self._context)
            high = self._convention.high_cardinality_tags(self._context)
        except Exception:
            logger.error(
                "Observation convention %r failed for '%s'", self._convention, self.technical_name, exc_info=True
            )
            return
        self._context.low_cardinality_tags.update({k: str(v) for k, v in low.items()})
        self._context.high_cardinality_tags.update({k: str(v) for k, v in high.items()})

    # ----- Scoped execution -----

    def run(self, work: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run *work* inside this observation and return its result.

        The observation is started, made current while *work* runs, and
        always stopped. A failure of *work* is recorded and re-raised as is.
        """
        self.start()
        try:
            with self.open_scope():
                return work(*args, **kwargs)
        except BaseException as exc:
            self.record_error(exc)
            raise
        finally:
            self.stop()

    observe = run

    async def run_async(self, work: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Coroutine counterpart of run(); cancellation is recorded like any failure."""
        self.start()
        try:
            with self.open_scope():
                return await work(*args, **kwargs)
        except BaseException as exc:
            self.record_error(exc)
            raise
        finally:
            self.stop()

    def __enter__(self) -> Observation:
        self.start()
        try:
            self._scope = self.open_scope()
        except BaseException:
            self.stop()
            raise
        return self

    def __exit__(self, exc_type: Any, exc: BaseException | None, tb: Any) -> None:
        try:
            if self._scope is not None:
                self._scope.close()
                self._scope = None
        finally:
            if exc is not None:
                self.record_error(exc)
            self.stop()

    def __repr__(self) -> str:
        return f"Observation(name={self.technical_name!r}, state={self._state.value})"


def observed(
    technical_name: str | None = None,
    registry: ObservationRegistry | None = None,
    *,
    contextual_name: str | None = None,
    low_cardinality_tags: Mapping[str, Any] | None = None,
    high_cardinality_tags: Mapping[str, Any] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator running every call of the function in a fresh Observation.

    The technical name defaults to the function's module-qualified name.
    Works for plain and ``async def`` functions.

    Raises:
        RegistryRequiredError: At decoration time if registry is None.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        name = technical_name or f"{func.__module__}.{func.__qualname__}"
        if registry is None:
            raise RegistryRequiredError(technical_name=name)

        def build() -> Observation:
            observation = Observation.create(name, registry)
            for key, value in (low_cardinality_tags or {}).items():
                observation.with_low_cardinality_tag(key, value)
            for key, value in (high_cardinality_tags or {}).items():
                observation.with_high_cardinality_tag(key, value)
            if contextual_name:
                observation.with_contextual_name(contextual_name)
            return observation

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                return await build().run_async(func, *args, **kwargs)

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return build().run(func, *args, **kwargs)

        return wrapper

    return decorator
