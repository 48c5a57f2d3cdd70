"""Integration tests never reach a real redis server."""
import pytest_asyncio


@pytest_asyncio.fixture(autouse=True)
async def _isolated_redis(fake_redis):
    yield fake_redis
