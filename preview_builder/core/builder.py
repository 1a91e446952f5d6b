"""
Preview Builder - end-to-end build of one submitted project.

Flow: ambient disk check -> stage files -> staged size check ->
classify -> install + build -> resolve output directory.

Any failure destroys the workspace before the error propagates; only
successful builds leave a workspace behind for the retention sweeper.
Workspace removal problems are logged and never replace the original
error.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Mapping, Optional

from preview_builder.config import PreviewConfig
from preview_builder.core.artifacts import resolve_output_dir
from preview_builder.core.base_path import patched_base_path, preview_base
from preview_builder.core.classifier import ProjectType, classify
from preview_builder.core.errors import BuildTimeoutError, PreviewError, StagingError
from preview_builder.core.executor import BuildExecutor, ExecutionReport
from preview_builder.core.metrics import metrics
from preview_builder.core.resources import ResourceGuard
from preview_builder.core.workspace import FileContent, Workspace, WorkspaceManager

logger = logging.getLogger(__name__)


@dataclass
class BuildOutcome:
    """Result of a successful preview build."""
    project_id: str
    project_type: ProjectType
    output_dir_name: str
    build_duration_ms: int
    file_count: int
    workspace_size_bytes: int
    installer: str = ""
    report: Optional[ExecutionReport] = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "projectId": self.project_id,
            "projectType": self.project_type.value,
            "outputDirName": self.output_dir_name,
            "buildDurationMs": self.build_duration_ms,
            "fileCount": self.file_count,
            "workspaceSizeBytes": self.workspace_size_bytes,
        }


class PreviewBuilder:
    """Orchestrates staging, building and cleanup for preview requests."""

    def __init__(
        self,
        config: PreviewConfig,
        workspaces: Optional[WorkspaceManager] = None,
        guard: Optional[ResourceGuard] = None,
        executor: Optional[BuildExecutor] = None,
    ):
        self.config = config
        self.workspaces = workspaces or WorkspaceManager(config)
        self.guard = guard or ResourceGuard(config)
        self.executor = executor or BuildExecutor(config)

    def _discard(self, workspace: Workspace) -> list[str]:
        """Release and remove a failed build's workspace. Never raises."""
        self.workspaces.release(workspace.project_id)
        try:
            return self.workspaces.destroy(workspace)
        except Exception as e:
            logger.error(
                f"workspace_cleanup_failed project_id={workspace.project_id} error={e}",
                extra={"project_id": workspace.project_id, "error_kind": "cleanup"},
            )
            return [str(e)]

    async def build(
        self,
        files: Mapping[str, FileContent],
        request_id: str = "",
        client_ip: str = "",
    ) -> BuildOutcome:
        """
        Stage and build a project.

        Raises:
            ValidationError, QuotaError, StagingError, ToolchainMissingError,
            BuildError, BuildTimeoutError, NoArtifactError
        """
        start = time.monotonic()
        workspace: Optional[Workspace] = None
        metrics.inc("builds_started_total")
        logger.info(
            f"build_requested files={len(files)} client_ip={client_ip}",
            extra={"request_id": request_id, "client_ip": client_ip},
        )

        try:
            await asyncio.to_thread(self.guard.check_ambient_space)

            try:
                workspace = await asyncio.to_thread(self.workspaces.stage, files, request_id)
            except StagingError as e:
                workspace = e.workspace
                raise

            size = await asyncio.to_thread(self.guard.check_staged_size, workspace.path)
            project_type = classify(workspace.path)
            logger.info(
                f"build_start project_id={workspace.project_id} type={project_type.value} "
                f"size_bytes={size}",
                extra={"project_id": workspace.project_id, "request_id": request_id},
            )

            if self.config.inject_base_path:
                with patched_base_path(workspace.path, preview_base(workspace.project_id)):
                    report = await self.executor.execute(workspace.path)
            else:
                report = await self.executor.execute(workspace.path)

            output_dir = resolve_output_dir(workspace.path)

        except BaseException as e:
            metrics.inc("builds_failed_total")
            if isinstance(e, BuildTimeoutError):
                metrics.inc("builds_timed_out_total")
            duration_ms = int((time.monotonic() - start) * 1000)
            project_id = workspace.project_id if workspace else None
            kind = e.kind if isinstance(e, PreviewError) else "internal"
            logger.error(
                f"build_failed project_id={project_id} kind={kind} duration_ms={duration_ms} "
                f"error={e}",
                extra={
                    "project_id": project_id,
                    "request_id": request_id,
                    "error_kind": kind,
                    "duration_ms": duration_ms,
                },
            )
            if workspace is not None:
                self._discard(workspace)
            raise

        self.workspaces.release(workspace.project_id)
        duration_ms = int((time.monotonic() - start) * 1000)
        metrics.inc("builds_succeeded_total")
        logger.info(
            f"build_done project_id={workspace.project_id} out_dir={output_dir} "
            f"duration_ms={duration_ms}",
            extra={
                "project_id": workspace.project_id,
                "request_id": request_id,
                "duration_ms": duration_ms,
            },
        )

        return BuildOutcome(
            project_id=workspace.project_id,
            project_type=project_type,
            output_dir_name=output_dir,
            build_duration_ms=duration_ms,
            file_count=workspace.file_count,
            workspace_size_bytes=size,
            installer=report.installer,
            report=report,
        )

    def remove(self, project_id: str) -> Optional[list[str]]:
        """
        Destroy a finished preview on request.

        Returns None when the workspace is unknown or still building.
        """
        path = self.workspaces.get_workspace(project_id)
        if path is None or self.workspaces.is_active(project_id):
            return None
        return self.workspaces.destroy(path)
