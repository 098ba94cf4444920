"""Concurrent operations inside a single generator body.

A driven generator suspends on one operation at a time. To overlap work,
yield a combined operation: a list or dict of operations, ``all_of``,
``race`` or ``deadline``.
"""

import asyncio
import random

from cotask import all_of, deadline, race, run
from cotask.log_config import configure_logging


async def get_field(name: str, value, delay: float):
    await asyncio.sleep(delay)
    return name, value


async def slow_answer(delay: float) -> str:
    await asyncio.sleep(delay)
    return "Promise resolved in time!"


def post_information():
    # Three requests in flight at once; results come back in yield order
    fields = yield [
        get_field("title", "sunt aut facere", random.uniform(0.05, 0.2)),
        get_field("userId", 1, random.uniform(0.05, 0.2)),
        get_field("body", "quia et suscipit", random.uniform(0.05, 0.2)),
    ]
    info = dict(fields)

    winner = yield race(
        get_field("google", 200, random.uniform(0.01, 0.1)),
        get_field("twitter", 200, random.uniform(0.01, 0.1)),
    )
    info["winner"] = winner[0]

    both = yield all_of(get_field("p1", 1, 0.01), get_field("p2", 4, 0.02))
    info["pair"] = [value for _, value in both]

    try:
        info["slow"] = yield deadline(slow_answer(0.5), 0.2)
    except TimeoutError:
        info["slow"] = "Promise was rejected because it took so long"

    return info


async def main() -> None:
    configure_logging(level="INFO", json_logs=False)
    print(await run(post_information))


if __name__ == "__main__":
    asyncio.run(main())
