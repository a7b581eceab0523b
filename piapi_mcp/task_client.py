import asyncio
from typing import Any, Awaitable, Callable, Optional

import aiohttp
from loguru import logger
from pydantic import ValidationError

from piapi_mcp.config import Settings
from piapi_mcp.errors import (
    EmptyOutputError,
    GenerationFailedError,
    StatusCheckError,
    SubmissionError,
    TaskTimeoutError,
)
from piapi_mcp.models import (
    SUCCESS_CODE,
    JobConfig,
    ProgressSignal,
    StatusEnvelope,
    StatusSnapshot,
    SubmitEnvelope,
    TaskData,
    TaskResult,
    TaskStatus,
)
from piapi_mcp.sinks import (
    LoguruTaskLogger,
    NullProgressReporter,
    ProgressReporter,
    TaskLogger,
)


class PiAPITaskClient:
    def __init__(
        self,
        settings: Settings,
        session: aiohttp.ClientSession,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_status_change: Optional[Callable[[StatusSnapshot], Awaitable[Any]]] = None,
    ):
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        self.headers = {"X-API-Key": settings.api_key, "Accept": "application/json"}
        self.request_timeout = aiohttp.ClientTimeout(
            total=settings.request_timeout_seconds
        )
        self.session = session
        self.sleep = sleep
        self.on_status_change = on_status_change
        self.logger = logger

    async def _request_json(
        self, method: str, url: str, payload: Optional[dict] = None
    ) -> Any:
        try:
            async with self.session.request(
                method,
                url,
                json=payload,
                headers=self.headers,
                timeout=self.request_timeout,
            ) as response:
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            self.logger.error(f"Request to {url} failed: {e}")
            raise

    async def submit(self, payload: dict) -> str:
        """Create a generation task and return its provider-assigned id"""
        url = f"{self.base_url}/task"
        try:
            data = await self._request_json("POST", url, payload)
            envelope = SubmitEnvelope.model_validate(data)
        except (ValidationError, ValueError) as e:
            raise SubmissionError(
                f"Task creation failed: unreadable response ({e})"
            ) from e

        if envelope.code != SUCCESS_CODE:
            message = envelope.message or "unknown error"
            raise SubmissionError(f"Task creation failed: {message}")
        if envelope.data is None or not envelope.data.task_id:
            raise SubmissionError("Task creation failed: no task_id returned")

        self.logger.info(f"Task created with ID: {envelope.data.task_id}")
        return envelope.data.task_id

    async def _get_status_once(self, task_id: str) -> tuple[TaskData, dict]:
        """Fetches the status of a task from the provider"""
        url = f"{self.base_url}/task/{task_id}"
        try:
            data = await self._request_json("GET", url)
            envelope = StatusEnvelope.model_validate(data)
        except (ValidationError, ValueError) as e:
            raise StatusCheckError(
                f"Status check failed: unreadable response ({e})", task_id
            ) from e

        if envelope.code != SUCCESS_CODE:
            message = envelope.message or "unknown error"
            raise StatusCheckError(f"Status check failed: {message}", task_id)
        return envelope.data or TaskData(), data

    async def _handle_status_change(
        self, snapshot: StatusSnapshot, last_status: Optional[TaskStatus]
    ) -> None:
        """Invoke the status change callback if the status has changed"""
        if last_status != snapshot.status and self.on_status_change is not None:
            self.logger.debug(
                f"Task {snapshot.task_id} status changed to {snapshot.status.value}"
            )
            await self.on_status_change(snapshot)

    async def _report(self, progress: ProgressReporter, fraction: float) -> None:
        signal = ProgressSignal(progress=fraction)
        await progress.report(signal.progress, signal.total)

    async def wait_for_result(
        self,
        task_id: str,
        config: JobConfig,
        progress: Optional[ProgressReporter] = None,
        log: Optional[TaskLogger] = None,
    ) -> TaskResult:
        """Poll the task until it completes or fails, within the attempt budget"""
        progress = progress or NullProgressReporter()
        log = log or LoguruTaskLogger(task_id)
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        last_status = None

        for attempt in range(config.max_attempts):
            if attempt > 0:
                await log.debug(
                    f"Task still running, waiting {config.poll_interval:.2f}s before next attempt"
                )
                await self.sleep(config.poll_interval)

            await self._report(progress, attempt / config.max_attempts * 100)
            await log.debug(f"Checking task status (attempt {attempt + 1})...")

            task, raw_response = await self._get_status_once(task_id)
            status = TaskStatus.parse(task.status)
            await log.debug(f"Task status: {task.status}")

            await self._handle_status_change(
                StatusSnapshot(
                    task_id=task_id,
                    status=status,
                    raw_response=raw_response,
                    elapsed_time=loop.time() - start_time,
                ),
                last_status,
            )
            last_status = status

            if status == TaskStatus.completed:
                if task.output is None:
                    raise EmptyOutputError("Task completed but no output found", task_id)
                await self._report(progress, 100)
                usage = task.usage_cost
                await log.info(f"Task completed (usage: {usage})")
                return TaskResult(
                    task_id=task_id, usage_cost=usage, raw_output=task.output
                )

            if status == TaskStatus.failed:
                message = task.error.message if task.error else None
                await log.error(f"Generation failed: {message}")
                raise GenerationFailedError(
                    f"Generation failed: {message or 'no error message provided'}",
                    task_id,
                )

        await log.error(f"Generation timed out after {config.max_attempts} attempts")
        raise TaskTimeoutError(config.timeout_seconds, task_id)

    async def run(
        self,
        payload: dict,
        config: JobConfig,
        progress: Optional[ProgressReporter] = None,
        log: Optional[TaskLogger] = None,
    ) -> TaskResult:
        """Submit a task and wait for its terminal outcome"""
        task_id = await self.submit(payload)
        return await self.wait_for_result(task_id, config, progress, log)
