# ABOUTME: Base agent class for background cache agents with periodic run loop lifecycle
# ABOUTME: Provides configuration, logging and start/stop handling shared by warming agents

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class BaseAgent(ABC):
    """Base class for background agents driving the cache."""

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """Initialize base agent with configuration."""
        self.config = config or {}
        self.logger = logging.getLogger(self.__class__.__name__)
        self._task: Optional["asyncio.Task[None]"] = None
        self._stopping: Optional[asyncio.Event] = None

    @abstractmethod
    async def process(self, data: Any) -> Any:
        """Process data according to agent's specific functionality."""
        pass

    @abstractmethod
    async def run_once(self) -> Any:
        """Run one unit of background work."""
        pass

    async def initialize(self) -> None:
        """Initialize agent resources."""
        pass

    async def cleanup(self) -> None:
        """Clean up agent resources."""
        await self.stop()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval: float) -> "asyncio.Task[None]":
        """Run run_once every interval seconds in a background task."""
        if interval <= 0:
            raise ValueError("interval must be positive")
        if self.running:
            raise RuntimeError(f"{self.__class__.__name__} is already running")

        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(interval, self._stopping))
        self.logger.info(f"Started with interval {interval}s")
        return self._task

    async def stop(self) -> None:
        """Stop the background loop and wait for it to finish."""
        if self._task is None:
            return
        if self._stopping is not None:
            self._stopping.set()
        try:
            await self._task
        finally:
            self._task = None
            self._stopping = None
        self.logger.info("Stopped")

    async def _loop(self, interval: float, stopping: asyncio.Event) -> None:
        while not stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                # A failed cycle never ends the loop
                self.logger.exception("Background cycle failed")
            try:
                await asyncio.wait_for(stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
