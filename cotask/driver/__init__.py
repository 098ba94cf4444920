"""Driver module for running generators as asynchronous tasks.

This module contains the CoroutineDriver trampoline, the Step values a
resume produces, and the async handle boundary with its combinators.
"""

from cotask.driver.handles import (
    DriverError,
    InvalidYieldError,
    all_of,
    as_handle,
    deadline,
    race,
    rejected,
    resolved,
)
from cotask.driver.runner import (
    CoroutineDriver,
    DriverState,
    StepLimitExceededError,
    run,
    wrap,
)
from cotask.driver.step import Completed, ResumableSequence, Suspended

__all__ = [
    "Completed",
    "CoroutineDriver",
    "DriverError",
    "DriverState",
    "InvalidYieldError",
    "ResumableSequence",
    "StepLimitExceededError",
    "Suspended",
    "all_of",
    "as_handle",
    "deadline",
    "race",
    "rejected",
    "resolved",
    "run",
    "wrap",
]
