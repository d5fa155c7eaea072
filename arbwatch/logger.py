# arbwatch/logger.py
import asyncio
import aiofiles
from aiocsv import AsyncWriter
import logging
import sys
import os
from typing import List, Any, Optional

ROOT_LOGGER = "arbwatch"


class AsyncAuditLogger:
    """
    Non-blocking CSV writer for the opportunity audit trail.
    Callers only enqueue rows; a background task owns the file.
    """
    def __init__(self, filepath: str, header: Optional[List[str]] = None):
        self.filepath = filepath
        self.header = header
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker_task = None

    async def start(self):
        """
        Creates the directory and the file (with header when new), then starts the writer.
        """
        directory = os.path.dirname(self.filepath)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

        is_new = not os.path.exists(self.filepath) or os.path.getsize(self.filepath) == 0
        async with aiofiles.open(self.filepath, mode='a', newline='') as f:
            if is_new and self.header:
                writer = AsyncWriter(f, dialect='unix')
                await writer.writerow(self.header)
        self._worker_task = asyncio.create_task(self._writer_worker())

    async def log_row(self, data: List[Any]):
        await self._queue.put(data)

    async def stop(self):
        """Flushes pending rows, then stops the writer."""
        if self._worker_task is None:
            return
        await self._queue.join()
        self._worker_task.cancel()
        try:
            await self._worker_task
        except asyncio.CancelledError:
            pass
        self._worker_task = None

    async def _writer_worker(self):
        while True:
            row = await self._queue.get()
            try:
                async with aiofiles.open(self.filepath, mode='a', newline='') as f:
                    writer = AsyncWriter(f, dialect='unix')
                    await writer.writerow(row)
            except OSError as e:
                # reported, never raised into the sink worker
                print(f"AUDIT LOGGING FAILURE: {e}", file=sys.stderr)
            finally:
                self._queue.task_done()


def setup_console_logger(name: str = ROOT_LOGGER, level: str = "INFO"):
    """
    Sets up the standard Python logger for console output.
    Module loggers (`arbwatch.<module>`) propagate to it.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter('%(asctime)s | %(levelname)s | %(threadName)s | %(module)s | %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def get_logger(module: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{module}")
