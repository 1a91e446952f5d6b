"""
Temporary base-path injection for Vite and Astro configs.

Previews are served from /preview/{project_id}/{out_dir}/, so asset
URLs must be built against that prefix. The config file is patched
for the duration of the build and restored afterwards.
"""
import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

PATCHABLE_CONFIGS = (
    "vite.config.js",
    "vite.config.ts",
    "vite.config.mjs",
    "astro.config.mjs",
    "astro.config.js",
)

DEFINE_CONFIG_PATTERN = re.compile(r"defineConfig\(\s*\{")
BASE_KEY_PATTERN = re.compile(r"(^|[\s,{])base\s*:", re.MULTILINE)


def preview_base(project_id: str, out_dir: str = "dist") -> str:
    return f"/preview/{project_id}/{out_dir}/"


def find_config(workspace: Path) -> Optional[Path]:
    for name in PATCHABLE_CONFIGS:
        path = workspace / name
        if path.is_file():
            return path
    return None


def inject_base(source: str, base: str) -> Optional[str]:
    """
    Insert ``base`` into the first ``defineConfig({`` call.

    Returns None when there is nothing to patch: no defineConfig call,
    or the config already declares its own base.
    """
    if BASE_KEY_PATTERN.search(source):
        return None
    match = DEFINE_CONFIG_PATTERN.search(source)
    if not match:
        return None
    insert_at = match.end()
    return f"{source[:insert_at]}\n  base: '{base}',{source[insert_at:]}"


@contextmanager
def patched_base_path(workspace: Path, base: str) -> Iterator[Optional[Path]]:
    """Patch the workspace's Vite/Astro config in place; restore on exit."""
    config_path = find_config(workspace)
    original = None
    if config_path is not None:
        try:
            original = config_path.read_text(encoding="utf-8")
            patched = inject_base(original, base)
            if patched is None:
                original = None
            else:
                config_path.write_text(patched, encoding="utf-8")
                logger.info(f"base_path_injected file={config_path.name} base={base}")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"base_path_skipped file={config_path.name} error={type(e).__name__}")
            original = None

    try:
        yield config_path if original is not None else None
    finally:
        if original is not None:
            try:
                config_path.write_text(original, encoding="utf-8")
            except OSError as e:
                logger.warning(f"base_path_restore_failed file={config_path.name} error={e}")
