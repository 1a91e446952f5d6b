"""
Tests for the build executor.

Tests cover:
- Command execution and output capture
- Timeout handling (distinct from non-zero exit)
- Missing executables
- Primary/fallback install policy
- Build always using the fallback manager
"""
import shutil
import time

import pytest

from conftest import read_calls, write_tool
from preview_builder.core.errors import BuildError, BuildTimeoutError, ToolchainMissingError
from preview_builder.core.executor import (
    BuildExecutor,
    CommandResult,
    ExecutionReport,
    check_build_tools,
    check_result,
    run_command,
)


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "ws"
    path.mkdir()
    (path / "package.json").write_text('{"name": "demo"}')
    return path


# =============================================================================
# run_command Tests
# =============================================================================

class TestRunCommand:
    """Tests for supervised subprocess execution."""

    @pytest.mark.asyncio
    async def test_captures_output(self, workspace):
        result = await run_command(
            ["sh", "-c", "echo out; echo err >&2"], cwd=workspace, timeout=5
        )
        assert result.exit_code == 0
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.timed_out is False
        assert result.succeeded

    @pytest.mark.asyncio
    async def test_runs_in_workspace(self, workspace):
        result = await run_command(["sh", "-c", "ls"], cwd=workspace, timeout=5)
        assert "package.json" in result.stdout

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, workspace):
        result = await run_command(["sh", "-c", "exit 3"], cwd=workspace, timeout=5)
        assert result.exit_code == 3
        assert result.timed_out is False
        assert not result.succeeded

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, workspace):
        """Test that a command over the timeout is killed near the deadline."""
        start = time.monotonic()
        result = await run_command(["sh", "-c", "sleep 30"], cwd=workspace, timeout=0.5)
        elapsed = time.monotonic() - start

        assert result.timed_out is True
        assert elapsed < 5
        assert result.duration_ms >= 450

    @pytest.mark.asyncio
    async def test_timeout_kills_child_processes(self, workspace):
        """Test that grandchildren in the process group die with the command."""
        script = "sleep 30 & echo $! > child.pid; wait"
        result = await run_command(["sh", "-c", script], cwd=workspace, timeout=0.5)
        assert result.timed_out is True

        pid = int((workspace / "child.pid").read_text().strip())
        # Give the kernel a moment to reap
        deadline = time.monotonic() + 2
        alive = True
        while time.monotonic() < deadline:
            try:
                with open(f"/proc/{pid}/stat") as fh:
                    alive = fh.read().split()[2] != "Z"
            except FileNotFoundError:
                alive = False
            if not alive:
                break
            time.sleep(0.05)
        assert alive is False

    @pytest.mark.asyncio
    async def test_timeout_keeps_output_printed_before_kill(self, workspace):
        """Test that output written before the hang survives a timeout."""
        result = await run_command(
            ["sh", "-c", "echo before-hang; echo err-before >&2; sleep 30"],
            cwd=workspace,
            timeout=0.5,
        )
        assert result.timed_out is True
        assert "before-hang" in result.stdout
        assert "err-before" in result.stderr

    @pytest.mark.asyncio
    @pytest.mark.skipif(shutil.which("setsid") is None, reason="setsid not available")
    async def test_detached_child_does_not_hold_command_open(self, workspace):
        """Test that a child outside the process group cannot stall a finished command."""
        start = time.monotonic()
        result = await run_command(
            ["sh", "-c", "setsid sleep 8 & echo started"], cwd=workspace, timeout=0.5
        )
        elapsed = time.monotonic() - start

        assert result.timed_out is False
        assert result.exit_code == 0
        assert "started" in result.stdout
        assert elapsed < 5

    @pytest.mark.asyncio
    @pytest.mark.skipif(shutil.which("setsid") is None, reason="setsid not available")
    async def test_timeout_is_bounded_with_detached_child(self, workspace):
        """Test that a hung command with a detached child still returns near the deadline."""
        start = time.monotonic()
        result = await run_command(
            ["sh", "-c", "setsid sleep 8 & echo started; sleep 30"],
            cwd=workspace,
            timeout=0.5,
        )
        elapsed = time.monotonic() - start

        assert result.timed_out is True
        assert "started" in result.stdout
        assert elapsed < 5

    @pytest.mark.asyncio
    async def test_fast_command_is_not_killed_later(self, workspace):
        """Test that the timer does not fire after a normal completion."""
        result = await run_command(["sh", "-c", "exit 0"], cwd=workspace, timeout=0.2)
        assert result.succeeded
        time.sleep(0.3)
        assert result.timed_out is False

    @pytest.mark.asyncio
    async def test_missing_executable(self, workspace):
        with pytest.raises(ToolchainMissingError) as exc_info:
            await run_command(["definitely-not-a-real-tool-xyz"], cwd=workspace, timeout=5)
        assert exc_info.value.kind == "toolchain_missing"

    @pytest.mark.asyncio
    async def test_rejects_string_command(self, workspace):
        with pytest.raises(ValueError):
            await run_command("echo hi", cwd=workspace, timeout=5)


class TestCheckResult:
    """Tests for mapping command results to errors."""

    def test_success_passes_through(self):
        result = CommandResult(["npm", "install"], 0, "ok", "", 10)
        assert check_result(result, 5) is result

    def test_timeout_is_distinct_error(self):
        result = CommandResult(["npm", "run", "build"], -9, "", "", 5000, timed_out=True)
        with pytest.raises(BuildTimeoutError) as exc_info:
            check_result(result, 5)
        assert not isinstance(exc_info.value, BuildError)
        assert exc_info.value.status_code == 504
        assert exc_info.value.elapsed_ms == 5000

    def test_failure_carries_stderr(self):
        result = CommandResult(["npm", "install"], 1, "stdout text", "boom", 10)
        with pytest.raises(BuildError) as exc_info:
            check_result(result, 5)
        assert exc_info.value.exit_code == 1
        assert exc_info.value.stderr == "boom"

    def test_failure_falls_back_to_stdout(self):
        result = CommandResult(["npm", "install"], 2, "only stdout", "", 10)
        with pytest.raises(BuildError) as exc_info:
            check_result(result, 5)
        assert exc_info.value.stderr == "only stdout"

    def test_signal_termination_is_failure(self):
        result = CommandResult(["npm", "run", "build"], -15, "", "", 10)
        with pytest.raises(BuildError):
            check_result(result, 5)


# =============================================================================
# Install / Build Policy Tests
# =============================================================================

class TestFallbackPolicy:
    """Tests for primary/fallback package manager selection."""

    @pytest.mark.asyncio
    async def test_primary_success_skips_fallback_install(self, fake_tools, workspace, calls_log):
        report = await BuildExecutor(fake_tools).execute(workspace)

        assert report.installer == fake_tools.primary_package_manager
        assert read_calls(calls_log) == ["pnpm install", "npm run build"]
        assert (workspace / "dist" / "index.html").exists()

    @pytest.mark.asyncio
    async def test_fallback_attempted_exactly_once(self, tmp_path, make_config, workspace, calls_log):
        pnpm = write_tool(tmp_path / "bin", "pnpm", calls_log, install="exit 1")
        npm = write_tool(tmp_path / "bin", "npm", calls_log)
        config = make_config(primary_package_manager=str(pnpm), fallback_package_manager=str(npm))

        report = await BuildExecutor(config).execute(workspace)

        assert report.installer == str(npm)
        assert read_calls(calls_log) == ["pnpm install", "npm install", "npm run build"]
        assert [r.exit_code for r in report.commands] == [1, 0, 0]

    @pytest.mark.asyncio
    async def test_missing_primary_falls_back(self, tmp_path, make_config, workspace, calls_log):
        npm = write_tool(tmp_path / "bin", "npm", calls_log)
        config = make_config(
            primary_package_manager=str(tmp_path / "bin" / "no-such-pnpm"),
            fallback_package_manager=str(npm),
        )

        report = await BuildExecutor(config).execute(workspace)

        assert report.installer == str(npm)
        assert read_calls(calls_log) == ["npm install", "npm run build"]

    @pytest.mark.asyncio
    async def test_missing_fallback_fails_before_install(
        self, tmp_path, make_config, workspace, calls_log
    ):
        """Test that the toolchain is checked before any command runs."""
        pnpm = write_tool(tmp_path / "bin", "pnpm", calls_log)
        config = make_config(
            primary_package_manager=str(pnpm),
            fallback_package_manager=str(tmp_path / "bin" / "no-such-npm"),
        )

        with pytest.raises(ToolchainMissingError):
            await BuildExecutor(config).execute(workspace)

        assert read_calls(calls_log) == []

    @pytest.mark.asyncio
    async def test_both_installs_fail_reports_fallback_error(
        self, tmp_path, make_config, workspace, calls_log
    ):
        """Test that the fallback's failure is raised, chained to the primary's."""
        pnpm = write_tool(tmp_path / "bin", "pnpm", calls_log, install="echo pnpm-broke >&2; exit 1")
        npm = write_tool(tmp_path / "bin", "npm", calls_log, install="echo npm-broke >&2; exit 2")
        config = make_config(primary_package_manager=str(pnpm), fallback_package_manager=str(npm))

        with pytest.raises(BuildError) as exc_info:
            await BuildExecutor(config).execute(workspace)

        error = exc_info.value
        assert error.exit_code == 2
        assert "npm-broke" in error.stderr
        assert isinstance(error.__cause__, BuildError)
        assert "pnpm-broke" in error.__cause__.stderr
        # No build after a failed install, no third attempt
        assert read_calls(calls_log) == ["pnpm install", "npm install"]

    @pytest.mark.asyncio
    async def test_build_failure(self, tmp_path, make_config, workspace, calls_log):
        pnpm = write_tool(tmp_path / "bin", "pnpm", calls_log)
        npm = write_tool(tmp_path / "bin", "npm", calls_log, build="echo 'syntax error' >&2; exit 1")
        config = make_config(primary_package_manager=str(pnpm), fallback_package_manager=str(npm))

        with pytest.raises(BuildError) as exc_info:
            await BuildExecutor(config).execute(workspace)

        assert "syntax error" in exc_info.value.stderr
        assert exc_info.value.command[-2:] == ["run", "build"]

    @pytest.mark.asyncio
    async def test_build_timeout(self, tmp_path, make_config, workspace, calls_log):
        pnpm = write_tool(tmp_path / "bin", "pnpm", calls_log)
        npm = write_tool(tmp_path / "bin", "npm", calls_log, build="sleep 30")
        config = make_config(
            primary_package_manager=str(pnpm),
            fallback_package_manager=str(npm),
            build_timeout_s=0.5,
        )

        with pytest.raises(BuildTimeoutError) as exc_info:
            await BuildExecutor(config).execute(workspace)

        assert exc_info.value.timeout_s == 0.5
        assert 450 <= exc_info.value.elapsed_ms < 5000

    @pytest.mark.asyncio
    async def test_timeout_is_per_command(self, tmp_path, make_config, workspace, calls_log):
        """Test that install and build each get the full timeout."""
        pnpm = write_tool(tmp_path / "bin", "pnpm", calls_log, install="sleep 0.6")
        npm = write_tool(
            tmp_path / "bin", "npm", calls_log,
            build='sleep 0.6; mkdir -p dist',
        )
        config = make_config(
            primary_package_manager=str(pnpm),
            fallback_package_manager=str(npm),
            build_timeout_s=1.0,
        )

        report = await BuildExecutor(config).execute(workspace)
        assert all(r.succeeded for r in report.commands)
        assert report.duration_ms >= 1000


class TestCheckBuildTools:
    """Tests for toolchain availability checks."""

    def test_fallback_required(self, make_config):
        config = make_config(fallback_package_manager="no-such-npm-xyz")
        with pytest.raises(ToolchainMissingError):
            check_build_tools(config)

    def test_primary_optional(self, fake_tools, make_config):
        config = make_config(
            primary_package_manager="no-such-pnpm-xyz",
            fallback_package_manager=fake_tools.fallback_package_manager,
        )
        tools = check_build_tools(config)
        assert tools["no-such-pnpm-xyz"] is None
        assert tools[fake_tools.fallback_package_manager]


class TestExecutionReport:
    def test_joins_output(self):
        report = ExecutionReport(commands=[
            CommandResult(["a"], 0, "one", "", 1),
            CommandResult(["b"], 0, "two", "warn", 1),
        ])
        assert report.stdout == "one\ntwo"
        assert report.stderr == "warn"
