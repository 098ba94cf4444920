"""Coroutine Task Driver.

This module implements the CoroutineDriver class, a trampoline that runs a
generator on an asyncio event loop. The generator yields asynchronous
operations; the driver waits for each one through a done callback and
resumes the generator with its result, or throws its exception in at the
yield point. The outcome of the whole run is a single future.

Every resume after the first happens from a callback queued on the loop,
so the synchronous stack stays flat however many steps the generator takes.
"""

import asyncio
import functools
from collections.abc import Callable, Generator
from enum import Enum
from typing import Any

from cotask.config import DriverConfig, default_driver_config
from cotask.driver.handles import DriverError, Handle, InvalidYieldError, as_handle
from cotask.driver.step import Completed, ResumableSequence, Step, Suspended
from cotask.log_config import bound_context, get_logger

logger = get_logger(__name__)

type SequenceFactory = Callable[[], Generator[Any, Any, Any]]


class DriverState(Enum):
    """Lifecycle of a driver run.

    Attributes:
        PENDING: Created, not started
        RUNNING: Inside a resume of the generator
        SUSPENDED: Waiting for a yielded operation to settle
        COMPLETED: The generator returned; result fulfilled
        FAILED: An error escaped the generator; result rejected
        CANCELLED: Cancelled between suspension points
    """

    PENDING = "pending"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepLimitExceededError(DriverError):
    """A generator kept yielding past the configured step limit.

    Attributes:
        limit: The configured ``max_steps``
    """

    def __init__(self, limit: int, driver_name: str | None = None):
        super().__init__(f"Driver exceeded {limit} steps", driver_name)
        self.limit = limit


class CoroutineDriver:
    """Drives one generator to completion on the running event loop.

    The factory is called exactly once, on ``start``. Each yielded value is
    coerced to a future (see ``cotask.driver.handles.as_handle``) and a
    single done callback is registered on it; no other operation is in
    flight for this run until that one settles.

    Example:
        >>> def fetch_title():
        ...     response = yield fetch(uri)
        ...     post = yield response.json()
        ...     return post["title"]
        >>>
        >>> driver = CoroutineDriver(fetch_title, name="fetch-title")
        >>> title = await driver.start()

    Attributes:
        factory: Zero-argument callable returning a generator
        config: Driver settings
        name: Label used in logs and errors
        state: Current DriverState
        errors_injected: Number of errors thrown into the generator
    """

    def __init__(
        self,
        factory: SequenceFactory,
        config: DriverConfig | None = None,
        name: str | None = None,
    ):
        """Initialize the driver.

        Args:
            factory: Zero-argument callable returning a fresh generator
            config: Driver settings (default: the loaded configuration's driver section)
            name: Label for logs (default: the factory's qualified name)
        """
        self.factory = factory
        self.config = config or default_driver_config()
        self.name = name or getattr(factory, "__qualname__", repr(factory))
        self.state = DriverState.PENDING
        self.errors_injected = 0

        self._loop: asyncio.AbstractEventLoop | None = None
        self._result: Handle | None = None
        self._sequence: ResumableSequence | None = None
        self._in_flight: Handle | None = None
        self._children: set[Handle] = set()
        self._limit_error: StepLimitExceededError | None = None
        self._resuming = False

    @property
    def result(self) -> Handle | None:
        """The result future, once started."""
        return self._result

    def start(self) -> Handle:
        """Start driving the generator.

        The first resume runs synchronously; errors it raises are delivered
        through the returned future. KeyboardInterrupt and SystemExit also
        reject the future and are then re-raised, as in ``asyncio.Task``.

        Returns:
            Future fulfilled with the generator's return value, or rejected
            with the first error that escaped it

        Raises:
            RuntimeError: If called twice, or without a running event loop
            KeyboardInterrupt, SystemExit: If the first resume raised one
        """
        if self._result is not None:
            msg = f"Driver {self.name} was already started"
            raise RuntimeError(msg)

        self._loop = asyncio.get_running_loop()
        self._result = self._loop.create_future()
        self._result.add_done_callback(self._on_result_done)

        logger.info(
            "driver_started",
            driver=self.name,
            max_steps=self.config.max_steps,
        )

        try:
            self._sequence = ResumableSequence(self.factory())
        except (KeyboardInterrupt, SystemExit) as e:
            self._abort(e)
            raise
        except BaseException as e:
            self._abort(e)
            return self._result

        self._iterate(self._sequence.resume_with_value, None)
        return self._result

    def cancel(self, msg: Any = None) -> bool:
        """Stop the run between suspension points.

        Detaches from the in-flight operation without cancelling it, closes
        the generator so its ``finally`` blocks run, and cancels the result.

        Args:
            msg: Optional message passed to the result's cancellation

        Returns:
            True if the run was cancelled, False if it had not started or
            was already settled
        """
        if self._result is None or self._result.done():
            return False

        self._result.cancel(msg)
        self._teardown()
        return True

    def get_stats(self) -> dict[str, Any]:
        """Get run statistics.

        Returns:
            Dictionary with:
                - name: Driver name
                - state: Current state value
                - steps: Resumes that reached the generator
                - errors_injected: Errors thrown into the generator
        """
        stats = {
            "name": self.name,
            "state": self.state.value,
            "steps": self._sequence.steps if self._sequence is not None else 0,
            "errors_injected": self.errors_injected,
        }

        logger.debug("driver_stats_retrieved", **stats)

        return stats

    def _iterate(self, resume: Callable[[Any], Step], argument: Any) -> None:
        """Resume once and act on the resulting step."""
        if self._result.done():
            return

        if self._limit_error is None and self._over_limit():
            self._limit_error = StepLimitExceededError(self.config.max_steps, self.name)
            logger.warning(
                "step_limit_exceeded",
                driver=self.name,
                limit=self.config.max_steps,
            )
            resume, argument = self._sequence.resume_with_error, self._limit_error

        if self.config.trace_steps:
            logger.debug("driver_step", driver=self.name, step=self._sequence.steps + 1)

        self.state = DriverState.RUNNING
        self._resuming = True
        try:
            with bound_context(driver=self.name):
                step = resume(argument)
        except (KeyboardInterrupt, SystemExit) as e:
            self._abort(e)
            raise
        except BaseException as e:
            self._abort(e)
            return
        finally:
            self._resuming = False

        if self._result.done():
            # Cancelled from inside the body while it was running
            self._teardown()
            return

        match step:
            case Completed(value=value):
                self._complete(value)
            case Suspended() if self._limit_error is not None:
                # Yielded again after the limit error instead of finishing
                self._close_sequence()
                self._fail(self._limit_error)
            case Suspended(operation=operation):
                self._suspend(operation)

    def _suspend(self, operation: Any) -> None:
        try:
            handle = as_handle(
                operation,
                loop=self._loop,
                config=self.config,
                nested=self._run_nested,
            )
        except InvalidYieldError as e:
            e.driver_name = self.name
            self.state = DriverState.SUSPENDED
            self._loop.call_soon(self._inject, e)
            return

        self.state = DriverState.SUSPENDED
        self._in_flight = handle
        handle.add_done_callback(self._on_settled)

    def _on_settled(self, handle: Handle) -> None:
        if handle is not self._in_flight:
            return
        self._in_flight = None

        if handle.cancelled():
            self._inject(asyncio.CancelledError())
        elif (error := handle.exception()) is not None:
            self._inject(error)
        else:
            self._iterate(self._sequence.resume_with_value, handle.result())

    def _inject(self, error: BaseException) -> None:
        if self._result.done():
            return

        self.errors_injected += 1
        logger.info(
            "driver_error_injected",
            driver=self.name,
            error=str(error),
            error_type=type(error).__name__,
        )
        self._iterate(self._sequence.resume_with_error, error)

    def _run_nested(self, generator: Generator[Any, Any, Any]) -> Handle:
        child = CoroutineDriver(
            lambda: generator,
            config=self.config,
            name=f"{self.name}/{generator.__qualname__}",
        )
        handle = child.start()
        self._children.add(handle)
        handle.add_done_callback(self._children.discard)
        return handle

    def _over_limit(self) -> bool:
        limit = self.config.max_steps
        return limit is not None and self._sequence.steps >= limit

    def _complete(self, value: Any) -> None:
        self.state = DriverState.COMPLETED
        self._children.clear()
        logger.info(
            "driver_completed",
            driver=self.name,
            steps=self._sequence.steps,
        )
        self._result.set_result(value)

    def _abort(self, error: BaseException) -> None:
        """Settle the run with an error that escaped the factory or the body."""
        if isinstance(error, asyncio.CancelledError):
            if not self._result.done():
                logger.info("driver_cancelled", driver=self.name, source="generator")
                self.state = DriverState.CANCELLED
                self._result.cancel()
            return
        self._fail(error)

    def _fail(self, error: BaseException) -> None:
        if self._result.done():
            logger.warning(
                "driver_error_after_cancel",
                driver=self.name,
                error=str(error),
                error_type=type(error).__name__,
            )
            return
        self.state = DriverState.FAILED
        self._children.clear()
        logger.warning(
            "driver_failed",
            driver=self.name,
            error=str(error),
            error_type=type(error).__name__,
        )
        if isinstance(error, StopIteration):
            # Futures refuse StopIteration
            error = RuntimeError(f"{type(error).__name__} raised while starting {self.name}")
        self._result.set_exception(error)

    def _on_result_done(self, result: Handle) -> None:
        if result.cancelled():
            self._teardown()

    def _teardown(self) -> None:
        """Release everything a cancelled run still holds."""
        if self._in_flight is not None:
            self._in_flight.remove_done_callback(self._on_settled)
            self._in_flight = None

        for child in list(self._children):
            child.cancel()
        self._children.clear()

        self._close_sequence()

        if self.state is not DriverState.CANCELLED:
            self.state = DriverState.CANCELLED
            logger.info("driver_cancelled", driver=self.name, source="caller")

    def _close_sequence(self) -> None:
        # A running generator cannot be closed; _iterate closes it on return
        if self._resuming or self._sequence is None or self._sequence.finished:
            return
        try:
            self._sequence.close()
        except Exception:
            logger.exception("driver_close_failed", driver=self.name)


def run(
    factory: SequenceFactory,
    *,
    config: DriverConfig | None = None,
    name: str | None = None,
) -> Handle:
    """Drive the generator produced by ``factory`` and return its result future.

    Must be called while an event loop is running.

    Args:
        factory: Zero-argument callable returning a generator
        config: Driver settings (default: the loaded configuration's driver section)
        name: Label for logs

    Returns:
        Future settling with the generator's outcome

    Example:
        >>> def body():
        ...     a = yield resolved(2)
        ...     b = yield resolved(a * 2)
        ...     return f"done:{b}"
        >>> await run(body)
        'done:4'
    """
    return CoroutineDriver(factory, config=config, name=name).start()


def wrap(
    generator_function: Callable[..., Generator[Any, Any, Any]],
    *,
    config: DriverConfig | None = None,
) -> Callable[..., Handle]:
    """Turn a generator function into a function returning a result future.

    Example:
        >>> @wrap
        ... def add_later(a, b):
        ...     x = yield resolved(a)
        ...     return x + b
        >>> await add_later(1, 2)
        3
    """

    @functools.wraps(generator_function)
    def wrapper(*args: Any, **kwargs: Any) -> Handle:
        return run(
            functools.partial(generator_function, *args, **kwargs),
            config=config,
            name=generator_function.__qualname__,
        )

    return wrapper
