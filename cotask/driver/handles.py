"""Async handle boundary and combinators.

Everything a driven generator yields crosses ``as_handle`` before the driver
registers a continuation on it. Futures pass through untouched, awaitables
are scheduled as tasks, and (when enabled) generators and collections are
turned into a single future. Anything else is an ``InvalidYieldError``.

The combinators mirror the usual promise helpers: ``all_of`` waits for
every operation, ``race`` follows whichever settles first and ``deadline``
bounds how long an operation may take.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Generator
from typing import Any

from cotask.config import DriverConfig
from cotask.log_config import get_logger

logger = get_logger(__name__)

type Handle = asyncio.Future[Any]
type NestedRunner = Callable[[Generator[Any, Any, Any]], Handle]

_VALID = object()


class DriverError(Exception):
    """Base class for errors raised by the coroutine driver.

    Attributes:
        message: Description of the failure
        driver_name: Name of the driver run the error belongs to, if known
    """

    def __init__(self, message: str, driver_name: str | None = None):
        super().__init__(message)
        self.message = message
        self.driver_name = driver_name


class InvalidYieldError(DriverError, TypeError):
    """A generator yielded something that cannot become an async handle.

    Attributes:
        value: The offending yielded value
    """

    def __init__(self, value: Any, driver_name: str | None = None):
        message = (
            "Yielded values must be futures, awaitables, generators, "
            f"lists, tuples or dicts of those; got {type(value).__name__}: {value!r}"
        )
        super().__init__(message, driver_name)
        self.value = value


def as_handle(
    value: Any,
    *,
    loop: asyncio.AbstractEventLoop,
    config: DriverConfig,
    nested: NestedRunner | None = None,
) -> Handle:
    """Coerce a yielded value into an ``asyncio.Future``.

    Every member of a collection is checked before any of them is
    coerced, so an invalid member never leaves nested runs or scheduled
    tasks behind.

    Args:
        value: What the generator yielded
        loop: Event loop the driver runs on
        config: Driver settings controlling collection and generator coercion
        nested: Starts a nested driver for a yielded generator and returns
            its result future; generators are rejected when omitted

    Returns:
        A future that settles the way the yielded operation does

    Raises:
        InvalidYieldError: If the value, or any member of it, has no handle form
    """
    invalid = _find_invalid(value, config, nested)
    if invalid is not _VALID:
        logger.warning("invalid_yield", value_type=type(invalid).__name__)
        raise InvalidYieldError(invalid)

    return _coerce(value, loop, nested)


def _find_invalid(value: Any, config: DriverConfig, nested: NestedRunner | None) -> Any:
    """Return the first value with no handle form, or ``_VALID``."""
    if asyncio.isfuture(value) or inspect.isawaitable(value):
        return _VALID

    if inspect.isgenerator(value) and config.coerce_generators and nested is not None:
        return _VALID

    if config.coerce_collections:
        if isinstance(value, list | tuple):
            members = value
        elif isinstance(value, dict):
            members = value.values()
        else:
            return value

        for member in members:
            invalid = _find_invalid(member, config, nested)
            if invalid is not _VALID:
                return invalid
        return _VALID

    return value


def _coerce(value: Any, loop: asyncio.AbstractEventLoop, nested: NestedRunner | None) -> Handle:
    if asyncio.isfuture(value):
        return value

    if inspect.isawaitable(value):
        return asyncio.ensure_future(value, loop=loop)

    if inspect.isgenerator(value):
        return nested(value)

    if isinstance(value, dict):
        keys = list(value)
        handles = [_coerce(value[key], loop, nested) for key in keys]
        result = loop.create_future()
        _transfer(
            _gather(handles, loop),
            result,
            transform=lambda values: dict(zip(keys, values, strict=True)),
        )
        return result

    return _gather([_coerce(item, loop, nested) for item in value], loop)


def all_of(*operations: Awaitable[Any]) -> Handle:
    """Wait for every operation; fulfil with their results in order.

    Rejects with the first failure. The remaining operations keep running.
    """
    loop = asyncio.get_running_loop()
    return _gather([asyncio.ensure_future(op, loop=loop) for op in operations], loop)


def race(*operations: Awaitable[Any]) -> Handle:
    """Settle the way the first operation to settle does.

    Losing operations are not cancelled; their outcomes are ignored.

    Raises:
        ValueError: If no operations are given
    """
    if not operations:
        msg = "race() needs at least one operation"
        raise ValueError(msg)

    loop = asyncio.get_running_loop()
    result = loop.create_future()

    def _settle(handle: Handle) -> None:
        if result.done():
            _consume(handle)
            return
        _copy_outcome(handle, result)

    for op in operations:
        asyncio.ensure_future(op, loop=loop).add_done_callback(_settle)

    return result


def deadline(operation: Awaitable[Any], seconds: float) -> Handle:
    """Settle like ``operation`` if it settles within ``seconds``.

    Otherwise reject with ``TimeoutError``. The operation itself is left
    running.
    """
    loop = asyncio.get_running_loop()
    handle = asyncio.ensure_future(operation, loop=loop)
    result = loop.create_future()

    def _expire() -> None:
        if not result.done():
            logger.debug("deadline_expired", seconds=seconds)
            result.set_exception(TimeoutError(f"Operation did not settle within {seconds}s"))

    timer = loop.call_later(seconds, _expire)

    def _settle(source: Handle) -> None:
        timer.cancel()
        if result.done():
            _consume(source)
            return
        _copy_outcome(source, result)

    handle.add_done_callback(_settle)
    return result


def resolved(value: Any = None) -> Handle:
    """An already fulfilled future on the running loop."""
    future = asyncio.get_running_loop().create_future()
    future.set_result(value)
    return future


def rejected(error: BaseException) -> Handle:
    """An already rejected future on the running loop."""
    future = asyncio.get_running_loop().create_future()
    future.set_exception(error)
    return future


def _gather(handles: list[Handle], loop: asyncio.AbstractEventLoop) -> Handle:
    if not handles:
        empty = loop.create_future()
        empty.set_result([])
        return empty
    return asyncio.gather(*handles)


def _transfer(
    source: Handle,
    target: Handle,
    transform: Callable[[Any], Any] | None = None,
) -> None:
    def _done(finished: Handle) -> None:
        if target.done():
            _consume(finished)
            return
        if finished.cancelled() or finished.exception() is not None or transform is None:
            _copy_outcome(finished, target)
        else:
            target.set_result(transform(finished.result()))

    source.add_done_callback(_done)


def _copy_outcome(source: Handle, target: Handle) -> None:
    if source.cancelled():
        target.cancel()
    elif (error := source.exception()) is not None:
        target.set_exception(error)
    else:
        target.set_result(source.result())


def _consume(handle: Handle) -> None:
    # Marks a late exception as retrieved so asyncio does not report it
    if not handle.cancelled():
        handle.exception()
