"""
Basic keepwire client example.

This example demonstrates the verb shortcuts, keep-alive reuse, redirect
following and the streaming request API.
"""

import asyncio
import logging

import keepwire
from keepwire import Client, ResponseError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def shortcuts(client: Client):
    """Demonstrate GET and POST with JSON decoding."""
    logger.info("Making GET request...")
    result = await client.get("/get", json=True)
    logger.info(f"Response status: {result.response.status_code}")
    logger.info(f"Decoded payload: {result.payload}")

    logger.info("Making POST request with a JSON body...")
    result = await client.post("/post", payload={"name": "keepwire"}, json=True)
    logger.info(f"Server saw: {result.payload.get('json')}")

    pool = client.agents.select(secure=False)
    logger.info(f"Pool metrics: {pool.metrics}")


async def redirects(client: Client):
    """Demonstrate redirect following with a hook."""

    def redirected(status_code, location, request):
        logger.info(f"Redirected with {status_code} to {location}")

    result = await client.get("/redirect/2", redirects=5, redirected=redirected)
    logger.info(f"Final status: {result.response.status_code}")


async def streaming(client: Client):
    """Demonstrate the request handle and reading the body separately."""

    async def chunks():
        for part in (b"Hello", b", ", b"World", b"!"):
            yield part

    handle = client.request("POST", "/anything", payload=chunks())
    response = await handle
    payload = await client.read(response, json="force", timeout=10)
    logger.info(f"Echoed body: {payload.get('data')}")


async def errors(client: Client):
    """Demonstrate status errors raised by the shortcuts."""
    try:
        await client.get("/status/404")
    except ResponseError as e:
        logger.info(f"Request failed: {e.message}")


async def main():
    """Run all examples against httpbin.org."""
    client = keepwire.defaults({
        "base_url": "http://httpbin.org",
        "headers": {"user-agent": "keepwire-example"},
        "timeout": 10,
        "gunzip": True,
    })
    async with client:
        await shortcuts(client)
        await redirects(client)
        await streaming(client)
        await errors(client)


if __name__ == "__main__":
    asyncio.run(main())
