"""
Retention Sweeper - evicts preview workspaces past their maximum age.

Runs once at startup and then periodically in the background. Age is
the directory's last-modified time; workspaces with a build still in
progress are skipped regardless of age.
"""
import asyncio
import logging
import time
from typing import Optional

from preview_builder.config import PreviewConfig
from preview_builder.core.metrics import metrics
from preview_builder.core.workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class RetentionSweeper:
    """Deletes workspaces older than ``max_age_s``."""

    def __init__(self, config: PreviewConfig, workspaces: WorkspaceManager):
        self._config = config
        self._workspaces = workspaces
        self._task: Optional[asyncio.Task] = None

    def sweep_once(self, now: Optional[float] = None) -> int:
        """Remove expired workspaces. Returns the count actually deleted."""
        now = time.time() if now is None else now
        cutoff = now - self._config.max_age_s
        removed = 0

        for item in self._workspaces.list_workspaces():
            if self._workspaces.is_active(item.name):
                continue
            try:
                mtime = item.stat().st_mtime
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"sweep_stat_failed project_id={item.name} error={type(e).__name__}")
                continue

            if mtime >= cutoff:
                continue

            warnings = self._workspaces.destroy(item)
            if not item.exists():
                removed += 1
                logger.info(
                    f"preview_expired project_id={item.name} age_hours={round((now - mtime) / 3600)}",
                    extra={"project_id": item.name},
                )
            elif warnings:
                logger.warning(f"sweep_remove_failed project_id={item.name}")

        if removed > 0:
            metrics.inc("workspaces_swept_total", removed)
            logger.info(f"cleanup_workspaces deleted={removed}")
        return removed

    async def run_forever(self) -> None:
        """Sweep every ``cleanup_interval_s`` until cancelled."""
        while True:
            await asyncio.sleep(self._config.cleanup_interval_s)
            try:
                await asyncio.to_thread(self.sweep_once)
            except Exception:
                logger.exception("sweep_failed")

    def start(self) -> asyncio.Task:
        """Start the periodic sweep on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())
            logger.info(
                f"sweeper_started interval_minutes={self._config.cleanup_interval_s / 60:g} "
                f"max_age_hours={self._config.max_age_s / 3600:g}"
            )
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("sweeper_stopped")
