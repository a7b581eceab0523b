import asyncio

import aiohttp
from fake_provider import FakeProvider
from piapi_mcp.config import Settings, configure_logging
from piapi_mcp.errors import MediaTaskError
from piapi_mcp.task_client import PiAPITaskClient
from piapi_mcp.tools import get_tool, run_tool


class PrintProgress:
    async def report(self, progress: float, total: float = 100) -> None:
        print(f"Progress: {progress:.0f}/{total:.0f}")


async def status_changed(snapshot):
    print(f"Status changed to: {snapshot.status.value}")
    print(f"Elapsed time: {snapshot.elapsed_time:.6f}s")


async def main():
    PORT = 8000
    configure_logging("INFO")
    provider = FakeProvider(
        statuses=[
            {"status": "pending"},
            {"status": "processing"},
            {
                "status": "completed",
                "output": {"image_urls": ["https://example.com/cat.png"]},
                "meta": {"usage": {"consume": "1"}},
            },
        ]
    )
    runner = await provider.start(port=PORT)
    print(f"Fake provider started on http://localhost:{PORT}")

    settings = Settings(api_key="demo-key", base_url=f"http://localhost:{PORT}")

    async with aiohttp.ClientSession() as session:
        client = PiAPITaskClient(settings, session, on_status_change=status_changed)
        try:
            blocks = await run_tool(
                get_tool("generate_image"),
                {"prompt": "a cat in a spacesuit", "width": "512"},
                client,
                PrintProgress(),
            )
            print("\n\n".join(blocks))
        except MediaTaskError as e:
            print(f"Generation failed: {e}")

    await runner.cleanup()


if __name__ == "__main__":
    asyncio.run(main())
