from typing import AsyncGenerator

import aiohttp
import pytest_asyncio
from fake_provider import FakeProvider
from piapi_mcp.config import Settings
from piapi_mcp.task_client import PiAPITaskClient

BASE_URL_TEMPLATE = "http://localhost:{}"
API_KEY = "test-key"


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class RecordingProgress:
    def __init__(self):
        self.signals: list[tuple[float, float]] = []

    async def report(self, progress: float, total: float = 100) -> None:
        self.signals.append((progress, total))

    @property
    def values(self) -> list[float]:
        return [progress for progress, _ in self.signals]


class RecordingLogger:
    def __init__(self):
        self.records: list[tuple[str, str]] = []

    async def debug(self, message: str) -> None:
        self.records.append(("debug", message))

    async def info(self, message: str) -> None:
        self.records.append(("info", message))

    async def warning(self, message: str) -> None:
        self.records.append(("warning", message))

    async def error(self, message: str) -> None:
        self.records.append(("error", message))


@pytest_asyncio.fixture
async def start_provider(unused_tcp_port_factory):
    """Start FakeProvider instances on random ports; yields a factory."""
    runners = []

    async def start(**kwargs):
        port = unused_tcp_port_factory()
        provider = FakeProvider(**kwargs)
        runners.append(await provider.start(port=port))
        return provider, BASE_URL_TEMPLATE.format(port)

    try:
        yield start
    finally:
        for runner in runners:
            await runner.cleanup()


@pytest_asyncio.fixture
async def session() -> AsyncGenerator[aiohttp.ClientSession, None]:
    async with aiohttp.ClientSession() as client_session:
        yield client_session


@pytest_asyncio.fixture
async def make_client(start_provider, session):
    """Start a scripted provider and return (provider, client, sleep recorder)."""

    async def make(on_status_change=None, **provider_kwargs):
        provider, base_url = await start_provider(**provider_kwargs)
        sleep = RecordingSleep()
        client = PiAPITaskClient(
            Settings(api_key=API_KEY, base_url=base_url),
            session,
            sleep=sleep,
            on_status_change=on_status_change,
        )
        return provider, client, sleep

    return make
