import itertools
from typing import Optional

from aiohttp import web
from loguru import logger


class FakeProvider:
    """A stand-in for the PiAPI task endpoints that replays scripted poll responses.

    Each entry of ``statuses`` is the ``data`` object returned by one status check;
    the last entry is repeated once the script runs out.
    """

    def __init__(
        self,
        statuses: Optional[list[dict]] = None,
        submit_code: int = 200,
        submit_message: str = "success",
        status_code: int = 200,
    ):
        self.statuses = statuses or [{"status": "pending", "output": None}]
        self.submit_code = submit_code
        self.submit_message = submit_message
        self.status_code = status_code
        self.submitted: list[dict] = []
        self.api_keys: list[Optional[str]] = []
        self.status_checks = 0
        self._ids = itertools.count(1)
        self.app = web.Application()
        self.app.router.add_post("/task", self.handle_create)
        self.app.router.add_get("/task/{task_id}", self.handle_status)
        self.logger = logger

    async def handle_create(self, request):
        self.api_keys.append(request.headers.get("X-API-Key"))
        self.submitted.append(await request.json())

        if self.submit_code != 200:
            self.logger.info("Rejecting task creation")
            return web.json_response(
                {"code": self.submit_code, "message": self.submit_message, "data": None}
            )

        task_id = f"t{next(self._ids)}"
        self.logger.info(f"Created task {task_id}")
        return web.json_response(
            {"code": 200, "message": "success", "data": {"task_id": task_id}}
        )

    async def handle_status(self, request):
        self.api_keys.append(request.headers.get("X-API-Key"))
        task_id = request.match_info["task_id"]
        index = min(self.status_checks, len(self.statuses) - 1)
        self.status_checks += 1

        if self.status_code != 200:
            return web.json_response(
                {"code": self.status_code, "message": "task not found", "data": None}
            )

        data = {"task_id": task_id, **self.statuses[index]}
        self.logger.info(f"Returning {data.get('status')} status for {task_id}")
        return web.json_response({"code": 200, "message": "success", "data": data})

    async def start(self, port: int = 8080):
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, "localhost", port)
        await site.start()
        self.logger.info(f"Fake provider started on port {port}")
        return runner
