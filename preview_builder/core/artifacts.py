"""
Artifact Resolver - locate the build output directory of a workspace.
"""
import logging
from pathlib import Path
from typing import Sequence

from preview_builder.core.errors import NoArtifactError

logger = logging.getLogger(__name__)

# First match wins: dist-style names, then alternates, then framework defaults
OUTPUT_DIR_CANDIDATES: tuple[str, ...] = (
    "dist",
    "build",
    "out",
    ".output/public",
    "_site",
)


def resolve_output_dir(
    workspace: Path,
    candidates: Sequence[str] = OUTPUT_DIR_CANDIDATES,
) -> str:
    """
    Return the first candidate that exists as a directory in ``workspace``.

    Raises:
        NoArtifactError: If the build produced none of the candidates
    """
    for name in candidates:
        if (workspace / name).is_dir():
            return name

    logger.warning(f"no_artifact workspace={workspace.name}")
    raise NoArtifactError(
        "Build finished but no output directory was found "
        f"(looked for: {', '.join(candidates)})"
    )
