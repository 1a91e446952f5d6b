"""
Resource Guard - disk admission checks for preview builds.

Two point-in-time checks, no reservation between concurrent requests:
- ambient usage of the volume hosting the previews root (before staging)
- total byte size of a staged workspace (after staging, before build)
"""
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import psutil

from preview_builder.config import PreviewConfig
from preview_builder.core.errors import QuotaError

logger = logging.getLogger(__name__)

MB = 1024 * 1024


@dataclass(frozen=True)
class DiskSnapshot:
    """Free/used/total bytes of the previews volume."""
    free: int
    used: int
    total: int
    usage_percent: float

    def to_dict(self) -> dict:
        return {
            "free": self.free,
            "used": self.used,
            "total": self.total,
            "usagePercent": self.usage_percent,
        }


def measure_disk(path: Path) -> Optional[DiskSnapshot]:
    """
    Measure the volume holding ``path``.

    Returns None when the host cannot report usage; callers degrade
    instead of failing.
    """
    try:
        usage = psutil.disk_usage(str(path))
    except OSError as e:
        logger.warning(f"disk_usage_unavailable path={path} error={type(e).__name__}")
        return None

    if usage.total <= 0:
        return None

    # "free" is what unprivileged writers can use, so used includes reserved blocks
    used = usage.total - usage.free
    percent = round(used / usage.total * 100, 2)
    return DiskSnapshot(free=usage.free, used=used, total=usage.total, usage_percent=percent)


def directory_size(path: Path) -> int:
    """
    Sum file sizes below ``path``.

    Symbolic links are never followed: a link counts as its own lstat
    size, so a link to a large tree outside the workspace adds nothing.
    """
    total = 0
    for dirpath, dirnames, filenames in os.walk(path, followlinks=False):
        # os.walk lists symlinked directories in dirnames without descending
        for name in filenames + [d for d in dirnames if os.path.islink(os.path.join(dirpath, d))]:
            try:
                total += os.lstat(os.path.join(dirpath, name)).st_size
            except OSError:
                continue
    return total


class ResourceGuard:
    """Checks ambient disk usage and staged workspace size against limits."""

    def __init__(self, config: PreviewConfig):
        self._config = config

    def check_ambient_space(self) -> Optional[DiskSnapshot]:
        """
        Reject new builds when the previews volume is too full.

        Raises:
            QuotaError: If usage exceeds ``max_disk_usage_percent``
        """
        snapshot = measure_disk(self._config.previews_dir)
        if snapshot is None:
            return None

        if snapshot.usage_percent > self._config.max_disk_usage_percent:
            logger.warning(
                f"disk_quota_exceeded usage={snapshot.usage_percent} "
                f"limit={self._config.max_disk_usage_percent}",
                extra={"error_kind": "quota"},
            )
            raise QuotaError("Insufficient disk space", 507)
        return snapshot

    def check_staged_size(self, workspace_path: Path) -> int:
        """
        Return the staged workspace size in bytes.

        Raises:
            QuotaError: If the size exceeds ``max_project_bytes``
        """
        size = directory_size(workspace_path)
        limit = self._config.max_project_bytes
        if size > limit:
            raise QuotaError(
                f"Project too large: {size / MB:.1f}MB. Maximum: {limit / MB:.1f}MB",
                413,
            )
        return size
