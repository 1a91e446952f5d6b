"""
Workspace Manager - isolated on-disk directories for preview builds.

Each build request gets its own directory under the previews root,
named by a fresh project id. Files are written only after the whole
file set has been validated, so a rejected path never leaves a
partially staged workspace behind.

Security:
- No absolute paths, no ".." segments
- Every resolved target must stay inside the workspace root
- Project ids are validated before being joined to the root
"""
import errno
import json
import logging
import os
import re
import shutil
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from preview_builder.config import PreviewConfig
from preview_builder.core.errors import StagingError, ValidationError

logger = logging.getLogger(__name__)

PROJECT_ID_PATTERN = re.compile(r"^[a-f0-9]{32}$")

FileContent = Union[str, Mapping[str, Any], list]


@dataclass
class Workspace:
    """A staged project directory owned by one build request."""
    project_id: str
    path: Path
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: str = ""
    file_count: int = 0


def _is_safe_path(path: str) -> bool:
    """Check if a path is safe (relative, no traversal, already normalized)."""
    if not path or "\x00" in path:
        return False
    if path.startswith("/") or path.startswith("\\") or os.path.isabs(path):
        return False
    if ".." in re.split(r"[\\/]", path):
        return False
    # Rejects "a//b", "./a", "a/./b" and trailing slashes
    normalized = os.path.normpath(path)
    return normalized == path and normalized != "."


def serialize_content(content: FileContent) -> str:
    """Text is written verbatim; structured values become key-ordered JSON."""
    if isinstance(content, str):
        return content
    return json.dumps(content, indent=2, sort_keys=True, ensure_ascii=False)


def validate_file_set(
    files: Mapping[str, FileContent],
    max_files: int,
    max_file_bytes: int,
) -> dict[str, bytes]:
    """
    Validate a file set and return it encoded, ready to write.

    Raises:
        ValidationError: On an empty or oversized set, an unsafe path or
            a file over the per-file byte limit
    """
    if not files:
        raise ValidationError("Project must contain at least one file")

    if len(files) > max_files:
        raise ValidationError(f"Too many files: {len(files)}. Maximum allowed: {max_files}")

    encoded: dict[str, bytes] = {}
    for path, content in files.items():
        if not isinstance(path, str) or not _is_safe_path(path):
            raise ValidationError(f"Invalid path: {path!r}")

        data = serialize_content(content).encode("utf-8")
        if len(data) > max_file_bytes:
            raise ValidationError(
                f"File too large: {path} ({len(data)} > {max_file_bytes} bytes)"
            )
        encoded[path] = data

    return encoded


class WorkspaceManager:
    """Manages isolated workspaces for preview builds."""

    def __init__(self, config: PreviewConfig):
        self._config = config
        self._base_dir = Path(config.previews_dir)
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._active: set[str] = set()
        self._lock = threading.Lock()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    # ------------------------------------------------------------------
    # Active build tracking
    # ------------------------------------------------------------------

    def mark_active(self, project_id: str) -> None:
        with self._lock:
            self._active.add(project_id)

    def release(self, project_id: str) -> None:
        with self._lock:
            self._active.discard(project_id)

    def is_active(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._active

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _allocate(self) -> tuple[str, Path]:
        """Create a fresh, uniquely named directory."""
        while True:
            project_id = uuid.uuid4().hex
            path = self._base_dir / project_id
            try:
                path.mkdir(parents=True, exist_ok=False)
            except FileExistsError:
                continue
            except OSError as e:
                raise StagingError(f"Failed to create workspace: {e.strerror or e}")
            return project_id, path

    def stage(
        self,
        files: Mapping[str, FileContent],
        request_id: str = "",
    ) -> Workspace:
        """
        Validate the file set, then write it into a new workspace.

        The workspace is marked active on creation; the caller must
        ``release`` it once the build is over. Partial writes are not
        rolled back here: on StagingError the caller destroys the
        workspace it gets from ``StagingError.workspace``.

        Raises:
            ValidationError: Before any directory is created
            StagingError: If creating or writing files fails
        """
        encoded = validate_file_set(
            files, self._config.max_files, self._config.max_file_bytes
        )

        project_id, root = self._allocate()
        self.mark_active(project_id)
        workspace = Workspace(project_id=project_id, path=root, request_id=request_id)
        resolved_root = root.resolve()
        rel_path = ""

        try:
            for rel_path, data in encoded.items():
                target = (root / rel_path).resolve()
                if resolved_root not in target.parents:
                    raise StagingError(f"Path escapes workspace: {rel_path}")
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
                workspace.file_count += 1
        except StagingError as e:
            e.workspace = workspace
            raise
        except OSError as e:
            status = 507 if e.errno == errno.ENOSPC else None
            error = StagingError(f"Failed to write {rel_path}: {e.strerror or e}", status)
            error.workspace = workspace
            raise error from e

        logger.info(
            f"workspace_staged project_id={project_id} files={workspace.file_count}",
            extra={"project_id": project_id, "request_id": request_id},
        )
        return workspace

    def get_workspace(self, project_id: str) -> Optional[Path]:
        """Get workspace path if the id is well-formed and the directory exists."""
        if not PROJECT_ID_PATTERN.match(project_id):
            return None
        path = self._base_dir / project_id
        if path.is_dir():
            return path
        return None

    def list_workspaces(self) -> list[Path]:
        """All top-level workspace directories."""
        try:
            return [item for item in self._base_dir.iterdir() if item.is_dir()]
        except FileNotFoundError:
            return []

    def destroy(self, target: Union[Workspace, Path, str]) -> list[str]:
        """
        Remove a workspace tree. Idempotent and best-effort.

        Returns a list of warnings for anything that could not be
        removed; never raises on removal failure.
        """
        if isinstance(target, Workspace):
            path = target.path
        elif isinstance(target, Path):
            path = target
        else:
            path = self._base_dir / target

        warnings: list[str] = []
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return warnings
        except OSError as e:
            warnings.append(f"{path.name}: {e.strerror or e}")
            shutil.rmtree(path, ignore_errors=True)

        if warnings:
            logger.warning(
                f"workspace_cleanup_incomplete project_id={path.name} warnings={len(warnings)}",
                extra={"project_id": path.name, "error_kind": "cleanup"},
            )
        else:
            logger.info(
                f"workspace_removed project_id={path.name}",
                extra={"project_id": path.name},
            )
        return warnings
