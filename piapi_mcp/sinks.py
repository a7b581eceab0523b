from typing import Optional, Protocol

from loguru import logger


class TaskLogger(Protocol):
    async def debug(self, message: str) -> None: ...

    async def info(self, message: str) -> None: ...

    async def warning(self, message: str) -> None: ...

    async def error(self, message: str) -> None: ...


class ProgressReporter(Protocol):
    async def report(self, progress: float, total: float = 100) -> None: ...


class LoguruTaskLogger:
    """Task diagnostics routed to loguru, tagged with the task id once known"""

    def __init__(self, task_id: Optional[str] = None):
        self.logger = logger.bind(task_id=task_id) if task_id else logger

    async def debug(self, message: str) -> None:
        self.logger.debug(message)

    async def info(self, message: str) -> None:
        self.logger.info(message)

    async def warning(self, message: str) -> None:
        self.logger.warning(message)

    async def error(self, message: str) -> None:
        self.logger.error(message)


class NullProgressReporter:
    async def report(self, progress: float, total: float = 100) -> None:
        return None
