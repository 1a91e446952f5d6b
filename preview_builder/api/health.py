"""
Health and statistics endpoints.
"""
import os
import time
from datetime import datetime, timezone

import psutil
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from preview_builder import __version__
from preview_builder.core.errors import ToolchainMissingError
from preview_builder.core.executor import check_build_tools
from preview_builder.core.resources import MB, measure_disk

router = APIRouter(tags=["health"])

# Disk usage above this marks the service degraded
DEGRADED_DISK_PERCENT = 95.0


def _process_stats() -> dict:
    proc = psutil.Process(os.getpid())
    mem = proc.memory_info()
    return {
        "memory": {
            "rss": round(mem.rss / MB),
            "vms": round(mem.vms / MB),
        },
        "uptime": {
            "process": round(time.time() - proc.create_time()),
            "system": round(time.time() - psutil.boot_time()),
        },
    }


@router.get("/")
def root():
    """Liveness banner."""
    return {
        "success": True,
        "message": "Preview build server running.",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
    }


@router.get("/health")
def health(request: Request):
    """
    Detailed health check.

    Degraded (503) when the previews or logs directory is missing, the
    build toolchain is unavailable or the disk is nearly full.
    """
    start = time.perf_counter()
    config = request.app.state.config

    checks: dict = {
        "directories": {
            "previews": config.previews_dir.is_dir(),
            "logs": config.logs_dir.is_dir(),
        },
    }

    snapshot = measure_disk(config.previews_dir)
    checks["diskSpace"] = snapshot.to_dict() if snapshot else None

    try:
        tools = check_build_tools(config)
        checks["buildTools"] = {"available": True, "tools": tools}
    except ToolchainMissingError as e:
        checks["buildTools"] = {"available": False, "error": e.message}

    checks.update(_process_stats())

    healthy = (
        checks["directories"]["previews"]
        and checks["directories"]["logs"]
        and checks["buildTools"]["available"]
        and (snapshot is None or snapshot.usage_percent < DEGRADED_DISK_PERCENT)
    )

    body = {
        "success": True,
        "status": "healthy" if healthy else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "responseTime": int((time.perf_counter() - start) * 1000),
        "checks": checks,
        "config": {
            "environment": config.environment,
            "packageManager": config.primary_package_manager,
            "fallbackPackageManager": config.fallback_package_manager,
            "maxFiles": config.max_files,
            "maxProjectSize": round(config.max_project_bytes / MB),
            "buildTimeout": config.build_timeout_s,
        },
    }
    return JSONResponse(status_code=200 if healthy else 503, content=body)


@router.get("/stats")
def stats(request: Request):
    """Preview and process statistics."""
    builder = request.app.state.builder
    return {
        "success": True,
        "data": {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server": _process_stats(),
            "previews": {
                "total": len(builder.workspaces.list_workspaces()),
                "building": builder.workspaces.active_count(),
            },
        },
    }
