"""
Project Classifier - best-effort framework label for a staged project.

Purely descriptive: the label is returned to the caller and never
changes how the project is built.
"""
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class ProjectType(str, Enum):
    """Detected front-end framework family."""
    REACT = "react"
    VUE = "vue"
    SVELTE = "svelte"
    ASTRO = "astro"
    VITE = "vite"
    GENERIC = "generic"


# Dependency name -> type, highest priority first
DEPENDENCY_PRIORITY: list[tuple[str, ProjectType]] = [
    ("react", ProjectType.REACT),
    ("vue", ProjectType.VUE),
    ("svelte", ProjectType.SVELTE),
    ("astro", ProjectType.ASTRO),
    ("vite", ProjectType.VITE),
]

# Root config file -> type, used when there is no readable manifest
CONFIG_FILES: list[tuple[str, ProjectType]] = [
    ("astro.config.mjs", ProjectType.ASTRO),
    ("astro.config.js", ProjectType.ASTRO),
    ("svelte.config.js", ProjectType.SVELTE),
    ("vue.config.js", ProjectType.VUE),
    ("vite.config.ts", ProjectType.VITE),
    ("vite.config.js", ProjectType.VITE),
    ("vite.config.mjs", ProjectType.VITE),
]

DEPENDENCY_SECTIONS = ("dependencies", "devDependencies", "peerDependencies")


def _manifest_dependencies(workspace: Path) -> Optional[set[str]]:
    """Declared dependency names from package.json, or None if unavailable."""
    manifest = workspace / "package.json"
    if not manifest.is_file():
        return None

    pkg = json.loads(manifest.read_text(encoding="utf-8"))
    names: set[str] = set()
    for section in DEPENDENCY_SECTIONS:
        deps = pkg.get(section)
        if isinstance(deps, dict):
            names.update(deps)
    return names


def classify(workspace: Path) -> ProjectType:
    """
    Label the project's framework family.

    Never raises: unreadable manifests fall through to config-file
    detection, and anything unexpected yields ``generic``.
    """
    try:
        try:
            deps = _manifest_dependencies(workspace)
        except (OSError, ValueError, AttributeError) as e:
            logger.info(f"manifest_unreadable error={type(e).__name__}")
            deps = None

        if deps:
            for name, project_type in DEPENDENCY_PRIORITY:
                if name in deps:
                    return project_type

        for filename, project_type in CONFIG_FILES:
            if (workspace / filename).is_file():
                return project_type
    except Exception as e:
        logger.warning(f"classify_failed error={type(e).__name__}")

    return ProjectType.GENERIC
