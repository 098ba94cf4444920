"""cotask: drive generators that yield asyncio futures.

A generator body written as a straight line of ``yield`` expressions runs as
an asynchronous task: ``run(body)`` returns a future that settles with what
the body returns, or with the first error it does not handle.
"""

from cotask.config import CotaskConfig, DriverConfig, LoggingConfig
from cotask.driver import (
    Completed,
    CoroutineDriver,
    DriverError,
    DriverState,
    InvalidYieldError,
    ResumableSequence,
    StepLimitExceededError,
    Suspended,
    all_of,
    deadline,
    race,
    rejected,
    resolved,
    run,
    wrap,
)

__version__ = "0.1.0"

__all__ = [
    "Completed",
    "CotaskConfig",
    "CoroutineDriver",
    "DriverConfig",
    "DriverError",
    "DriverState",
    "InvalidYieldError",
    "LoggingConfig",
    "ResumableSequence",
    "StepLimitExceededError",
    "Suspended",
    "all_of",
    "deadline",
    "race",
    "rejected",
    "resolved",
    "run",
    "wrap",
]
