"""
Typed errors raised by the preview build engine.

Every error carries a machine-readable ``kind`` and an HTTP-like
``status_code`` so the API layer can translate it without inspecting
messages.
"""
from typing import Optional


class PreviewError(Exception):
    """Base error for preview build operations."""
    kind = "internal"
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(PreviewError):
    """Malformed file set (bad path, too many files, oversized content)."""
    kind = "validation"
    status_code = 400


class QuotaError(PreviewError):
    """Ambient disk usage or staged project size over the configured limit."""
    kind = "quota"
    status_code = 507


class StagingError(PreviewError):
    """Writing the file set to the workspace failed."""
    kind = "staging"
    status_code = 500
    # Partially staged workspace the caller must destroy
    workspace = None


class ToolchainMissingError(PreviewError):
    """A required package-manager executable is not available."""
    kind = "toolchain_missing"
    status_code = 503


class BuildError(PreviewError):
    """Install or build command exited non-zero."""
    kind = "build_failed"
    status_code = 422

    def __init__(
        self,
        message: str,
        exit_code: int,
        stderr: str = "",
        command: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr
        self.command = command or []

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["exit_code"] = self.exit_code
        if self.command:
            data["command"] = " ".join(self.command)
        return data


class BuildTimeoutError(PreviewError):
    """A command exceeded the wall-clock timeout and was killed."""
    kind = "timeout"
    status_code = 504

    def __init__(
        self,
        message: str,
        timeout_s: float,
        elapsed_ms: int,
        command: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.timeout_s = timeout_s
        self.elapsed_ms = elapsed_ms
        self.command = command or []


class NoArtifactError(PreviewError):
    """Build succeeded but produced no recognized output directory."""
    kind = "no_artifact"
    status_code = 422


class CleanupError(PreviewError):
    """Best-effort workspace removal failed. Logged, never propagated."""
    kind = "cleanup"
    status_code = 500
