"""Fetch a post title with a generator instead of a callback chain.

The network call is simulated with asyncio.sleep so the example runs
offline. The body reads top to bottom; the driver waits on each yielded
operation and hands its result back in.
"""

import asyncio
import json

from cotask import run, wrap
from cotask.log_config import configure_logging, get_logger

logger = get_logger(__name__)

POST = {"userId": 1, "id": 1, "title": "sunt aut facere repellat provident", "body": "quia et"}


async def fetch(uri: str) -> str:
    """Pretend to GET ``uri`` and return the response body."""
    await asyncio.sleep(0.1)
    if not uri.startswith("https://"):
        msg = f"Refusing to fetch {uri}"
        raise ConnectionError(msg)
    return json.dumps(POST)


async def parse_json(body: str) -> dict:
    await asyncio.sleep(0)
    if not body:
        msg = "No length"
        raise ValueError(msg)
    return json.loads(body)


def fetch_title():
    uri = "https://jsonplaceholder.typicode.com/posts/1"
    body = yield fetch(uri)
    post = yield parse_json(body)
    return post["title"]


@wrap
def fetch_title_or_default(uri: str, default: str):
    try:
        body = yield fetch(uri)
    except ConnectionError as e:
        logger.warning("fetch_failed", uri=uri, error=str(e))
        return default
    post = yield parse_json(body)
    return post["title"]


async def main() -> None:
    configure_logging(level="INFO", json_logs=False)

    title = await run(fetch_title)
    print("Result is:", title)

    fallback = await fetch_title_or_default("http://insecure.example", "(untitled)")
    print("Fallback is:", fallback)


if __name__ == "__main__":
    asyncio.run(main())
