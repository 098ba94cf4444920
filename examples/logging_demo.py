"""Structured logging around driver runs.

Shows JSON output, a correlation ID that follows a run through its
resumes, and the events a failing run produces.
"""

import asyncio

from cotask import (
    CoroutineDriver,
    CotaskConfig,
    DriverConfig,
    LoggingConfig,
    rejected,
    resolved,
    run,
)
from cotask.log_config import (
    bind_correlation_id,
    get_logger,
    unbind_correlation_id,
)

logger = get_logger(__name__)


def counter(limit: int):
    total = 0
    for i in range(limit):
        total += yield resolved(i)
    return total


def flaky():
    try:
        yield rejected(ConnectionError("socket hang up"))
    except ConnectionError:
        logger.info("recovering_from_upstream_rejection")
    yield rejected(ValueError("no recovery for this one"))


async def demonstrate_runs() -> None:
    bind_correlation_id("demo-12345")
    try:
        driver = CoroutineDriver(
            lambda: counter(5),
            config=DriverConfig(trace_steps=True),
            name="counter",
        )
        total = await driver.start()
        logger.info("counter_finished", total=total, **driver.get_stats())

        try:
            await run(flaky, name="flaky")
        except ValueError:
            logger.exception("flaky_run_failed")
    finally:
        unbind_correlation_id()


def main() -> None:
    print("=== JSON Logging Output ===\n")
    CotaskConfig(logging=LoggingConfig(level="DEBUG", json_logs=True)).apply_logging()
    asyncio.run(demonstrate_runs())


if __name__ == "__main__":
    main()
