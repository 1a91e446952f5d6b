"""
Build Executor - supervised install + build for a staged workspace.

Runs predefined package-manager commands only. NO arbitrary shell
commands, no shell=True anywhere.

Policy:
- Every command gets its own wall-clock timeout (``build_timeout_s``);
  install and build do not share one budget
- On timeout the whole process group is killed, so child processes the
  toolchain spawned (esbuild, node workers) die with it
- Install tries the primary package manager once, then the fallback
  once; build always runs through the fallback package manager
- Exit code 0 is the only success signal
"""
import asyncio
import logging
import os
import shutil
import signal
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from preview_builder.config import PreviewConfig
from preview_builder.core.errors import (
    BuildError,
    BuildTimeoutError,
    PreviewError,
    ToolchainMissingError,
)
from preview_builder.core.metrics import metrics

logger = logging.getLogger(__name__)

# Package managers that ship through corepack
COREPACK_MANAGERS = {"pnpm", "yarn"}


@dataclass
class CommandResult:
    """Result of a subprocess command."""
    command: list[str]
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def error_detail(self) -> str:
        return (self.stderr or self.stdout).strip()


@dataclass
class ExecutionReport:
    """Commands run for one build, in order."""
    installer: str = ""
    commands: list[CommandResult] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def stdout(self) -> str:
        return "\n".join(r.stdout for r in self.commands if r.stdout)

    @property
    def stderr(self) -> str:
        return "\n".join(r.stderr for r in self.commands if r.stderr)


def _build_env(env_override: Optional[dict] = None) -> dict:
    """Environment for toolchain subprocesses."""
    env = dict(os.environ)
    env["CI"] = "true"
    env["NO_UPDATE_NOTIFIER"] = "1"
    env["FORCE_COLOR"] = "0"
    if env_override:
        env.update(env_override)
    return env


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """SIGKILL the process group led by ``process``."""
    try:
        os.killpg(os.getpgid(process.pid), signal.SIGKILL)
    except (ProcessLookupError, PermissionError, OSError):
        try:
            process.kill()
        except ProcessLookupError:
            pass


# Grace period for draining pipes once the process has exited
DRAIN_GRACE_S = 2.0
READ_CHUNK_BYTES = 64 * 1024


async def _collect(stream: asyncio.StreamReader, chunks: list[bytes]) -> None:
    """Append everything read from ``stream`` to ``chunks`` until EOF."""
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            return
        chunks.append(chunk)


async def _wait_exit(process: asyncio.subprocess.Process, interval: float = 0.05) -> int:
    """
    Wait for the process itself to exit.

    ``Process.wait()`` also waits for every pipe to close, which a
    detached grandchild can hold open indefinitely. The return code is
    set as soon as the child watcher reaps the process.
    """
    while process.returncode is None:
        await asyncio.sleep(interval)
    return process.returncode


async def _drain(process: asyncio.subprocess.Process, readers: list[asyncio.Task]) -> None:
    """Give the readers a bounded window to reach EOF, then close the pipes."""
    _, pending = await asyncio.wait(readers, timeout=DRAIN_GRACE_S)
    if not pending:
        return
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    # Pipes still held open by a process outside the group
    transport = getattr(process, "_transport", None)
    if transport is not None:
        transport.close()
    logger.warning(f"command_pipes_closed pid={process.pid} pending_readers={len(pending)}")


async def run_command(
    cmd: list[str],
    cwd: Path,
    timeout: float,
    env_override: Optional[dict] = None,
) -> CommandResult:
    """
    Execute a command with no shell, racing its exit against a timeout.

    The subprocess leads its own session so a timeout can kill the
    entire tree. The timer races process exit, not pipe EOF, and output
    is collected by reader tasks so whatever was printed before a kill
    is still returned.

    Raises:
        ToolchainMissingError: If the executable cannot be started
    """
    if not isinstance(cmd, list) or not cmd:
        raise ValueError("Command must be a non-empty list")

    start = time.monotonic()
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd),
            env=_build_env(env_override),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except FileNotFoundError:
        raise ToolchainMissingError(f"Executable not found: {cmd[0]}")
    except PermissionError:
        raise ToolchainMissingError(f"Executable not runnable: {cmd[0]}")

    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []
    readers = [
        asyncio.create_task(_collect(process.stdout, stdout_chunks)),
        asyncio.create_task(_collect(process.stderr, stderr_chunks)),
    ]

    timed_out = False
    try:
        try:
            await asyncio.wait_for(_wait_exit(process), timeout=timeout)
        except asyncio.TimeoutError:
            timed_out = True
            _kill_process_group(process)
            await _wait_exit(process)
            logger.warning(f"command_timeout cmd={cmd[0]} timeout={timeout}")
        await _drain(process, readers)
    except asyncio.CancelledError:
        _kill_process_group(process)
        for task in readers:
            task.cancel()
        transport = getattr(process, "_transport", None)
        if transport is not None:
            transport.close()
        raise

    duration_ms = int((time.monotonic() - start) * 1000)
    exit_code = process.returncode if process.returncode is not None else -1

    return CommandResult(
        command=cmd,
        exit_code=exit_code,
        stdout=b"".join(stdout_chunks).decode("utf-8", errors="replace"),
        stderr=b"".join(stderr_chunks).decode("utf-8", errors="replace"),
        duration_ms=duration_ms,
        timed_out=timed_out,
    )


def check_result(result: CommandResult, timeout: float) -> CommandResult:
    """
    Turn a failed command into a typed error.

    Raises:
        BuildTimeoutError: If the command was killed on timeout
        BuildError: On any non-zero exit, signals included
    """
    label = " ".join(result.command)
    if result.timed_out:
        raise BuildTimeoutError(
            f"Command timed out after {timeout:g}s: {label}",
            timeout_s=timeout,
            elapsed_ms=result.duration_ms,
            command=result.command,
        )
    if result.exit_code != 0:
        raise BuildError(
            f"Command failed with exit code {result.exit_code}: {label}",
            exit_code=result.exit_code,
            stderr=result.error_detail,
            command=result.command,
        )
    return result


def check_build_tools(config: PreviewConfig) -> dict[str, Optional[str]]:
    """
    Locate the package managers.

    Returns a mapping of executable name -> resolved path (None when
    missing). Only the fallback manager is required, since it runs
    every build.

    Raises:
        ToolchainMissingError: If the fallback package manager is missing
    """
    tools = {
        config.primary_package_manager: shutil.which(config.primary_package_manager),
        config.fallback_package_manager: shutil.which(config.fallback_package_manager),
    }
    if not tools[config.fallback_package_manager]:
        raise ToolchainMissingError(
            f"Required build tool not found: {config.fallback_package_manager}"
        )
    return tools


class BuildExecutor:
    """Runs dependency install then build against a workspace."""

    def __init__(self, config: PreviewConfig):
        self._config = config

    @property
    def timeout(self) -> float:
        return self._config.build_timeout_s

    async def _run_checked(
        self, cmd: list[str], workspace: Path, report: ExecutionReport
    ) -> CommandResult:
        result = await run_command(cmd, cwd=workspace, timeout=self.timeout)
        report.commands.append(result)
        if result.succeeded:
            logger.info(f"command_ok cmd={' '.join(cmd)} duration_ms={result.duration_ms}")
        else:
            logger.error(
                f"command_failed cmd={' '.join(cmd)} exit_code={result.exit_code} "
                f"timed_out={result.timed_out}"
            )
            logger.debug(f"command_output stderr={result.stderr} stdout={result.stdout}")
        return check_result(result, self.timeout)

    async def _install_with_primary(self, workspace: Path, report: ExecutionReport) -> None:
        primary = self._config.primary_package_manager
        if (
            self._config.enable_corepack
            and Path(primary).name in COREPACK_MANAGERS
            and shutil.which("corepack")
        ):
            await self._run_checked(["corepack", "enable"], workspace, report)
        await self._run_checked([primary, "install"], workspace, report)

    async def install(self, workspace: Path, report: ExecutionReport) -> str:
        """
        Install dependencies, falling back once to the secondary manager.

        Returns the package manager that succeeded. When both attempts
        fail, the fallback's error is raised with the primary's chained
        as its ``__cause__``.
        """
        primary = self._config.primary_package_manager
        fallback = self._config.fallback_package_manager

        try:
            await self._install_with_primary(workspace, report)
            return primary
        except PreviewError as first_error:
            if primary == fallback:
                raise
            logger.warning(
                f"install_fallback primary={primary} fallback={fallback} "
                f"error_kind={first_error.kind}"
            )
            metrics.inc("install_fallback_total")
            primary_error = first_error

        try:
            await self._run_checked([fallback, "install"], workspace, report)
        except PreviewError as second_error:
            raise second_error from primary_error
        return fallback

    async def build(self, workspace: Path, report: ExecutionReport) -> CommandResult:
        """Run the project's build script through the fallback manager."""
        return await self._run_checked(
            [self._config.fallback_package_manager, "run", "build"], workspace, report
        )

    async def execute(self, workspace: Path) -> ExecutionReport:
        """
        Install dependencies, then build.

        Raises:
            BuildError, BuildTimeoutError, ToolchainMissingError
        """
        check_build_tools(self._config)
        report = ExecutionReport()
        start = time.monotonic()
        try:
            report.installer = await self.install(workspace, report)
            await self.build(workspace, report)
        finally:
            report.duration_ms = int((time.monotonic() - start) * 1000)
        return report
