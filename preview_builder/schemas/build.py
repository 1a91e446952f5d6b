"""
Pydantic schemas for the preview build API.
"""
import os
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, field_validator

# Extensions accepted in a submitted project ("" = no extension, e.g. LICENSE)
ALLOWED_EXTENSIONS = frozenset([
    ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs", ".json", ".html", ".css",
    ".scss", ".sass", ".vue", ".svelte", ".astro", ".md", ".mdx", ".txt",
    ".env", ".gitignore", ".yml", ".yaml", ".toml", ".xml", ".svg", ".ico",
    ".png", ".jpg", ".jpeg", ".gif", ".webp", ".woff", ".woff2", ".ttf", ".eot",
    "",
])

# At least one of these must be present at the project root
MAIN_CONFIG_FILES = frozenset([
    "package.json",
    "vite.config.js",
    "vite.config.ts",
    "astro.config.mjs",
    "astro.config.js",
])


def file_extension(path: str) -> str:
    name = os.path.basename(path)
    # Dotfiles like ".env" / ".gitignore" are their own extension
    if name.startswith(".") and name.count(".") == 1:
        return name.lower()
    return os.path.splitext(name)[1].lower()


class BuildRequest(BaseModel):
    """Request body for POST /build."""

    files: dict[str, Union[str, dict[str, Any], list[Any]]] = Field(
        ...,
        description="Map of relative file path -> content (text or JSON value)",
        min_length=1,
    )

    @field_validator("files")
    @classmethod
    def validate_files(cls, v: dict) -> dict:
        for path in v:
            if ".." in path.replace("\\", "/").split("/") or os.path.isabs(path):
                raise ValueError(f"Unsafe file path: {path}")
            if os.path.normpath(path) != path:
                raise ValueError(f"File path must be normalized: {path}")
            if file_extension(path) not in ALLOWED_EXTENSIONS:
                raise ValueError(f"File extension not allowed: {file_extension(path)}")

        if not MAIN_CONFIG_FILES.intersection(v):
            raise ValueError(
                "Project must contain a main configuration file "
                f"({', '.join(sorted(MAIN_CONFIG_FILES))})"
            )
        return v


class BuildData(BaseModel):
    """Successful build summary."""
    projectId: str
    url: str
    projectType: str
    outputDirName: str
    buildDurationMs: int
    fileCount: int
    workspaceSizeBytes: int


class BuildResponse(BaseModel):
    success: bool = True
    data: BuildData


class ErrorDetail(BaseModel):
    kind: str
    message: str
    request_id: str
    timestamp: str
    exit_code: Optional[int] = None
    command: Optional[str] = None
    stack: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorDetail
