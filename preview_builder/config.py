"""
Preview service configuration from environment variables.
All settings are optional with safe defaults.
"""
import os
from dataclasses import dataclass
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class PreviewConfig:
    """Preview service configuration (immutable)."""
    previews_dir: Path = PROJECT_ROOT / "previews"
    logs_dir: Path = PROJECT_ROOT / "logs"
    # Limits
    max_files: int = 100
    max_file_bytes: int = 1024 * 1024  # 1MB per text file
    max_project_bytes: int = 100 * 1024 * 1024  # 100MB staged
    max_disk_usage_percent: float = 90.0
    # Build
    build_timeout_s: float = 300.0  # per command
    primary_package_manager: str = "pnpm"
    fallback_package_manager: str = "npm"
    enable_corepack: bool = True
    inject_base_path: bool = True
    # Retention
    cleanup_interval_s: float = 3600.0
    max_age_s: float = 24 * 3600.0
    # Service
    log_level: str = "INFO"
    public_base_url: str = ""
    environment: str = "development"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


def get_config() -> PreviewConfig:
    """Load preview configuration from environment."""
    defaults = PreviewConfig()

    return PreviewConfig(
        previews_dir=Path(os.getenv("PREVIEWS_DIR") or defaults.previews_dir),
        logs_dir=Path(os.getenv("LOGS_DIR") or defaults.logs_dir),
        max_files=_env_int("MAX_FILES", defaults.max_files),
        max_file_bytes=_env_int("MAX_FILE_BYTES", defaults.max_file_bytes),
        max_project_bytes=_env_int("MAX_PROJECT_SIZE", defaults.max_project_bytes),
        max_disk_usage_percent=_env_float(
            "MAX_DISK_USAGE_PERCENT", defaults.max_disk_usage_percent
        ),
        # Durations are given in milliseconds
        build_timeout_s=_env_int("BUILD_TIMEOUT_MS", 300_000) / 1000,
        primary_package_manager=os.getenv("PACKAGE_MANAGER", defaults.primary_package_manager),
        fallback_package_manager=os.getenv(
            "FALLBACK_PACKAGE_MANAGER", defaults.fallback_package_manager
        ),
        enable_corepack=_env_bool("ENABLE_COREPACK", defaults.enable_corepack),
        inject_base_path=_env_bool("INJECT_BASE_PATH", defaults.inject_base_path),
        cleanup_interval_s=_env_int("CLEANUP_INTERVAL_MS", 3_600_000) / 1000,
        max_age_s=_env_int("PREVIEW_MAX_AGE_MS", 86_400_000) / 1000,
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "").rstrip("/"),
        environment=os.getenv("ENVIRONMENT", defaults.environment).lower(),
    )
