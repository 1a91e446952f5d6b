"""
Preview build API routes.

Endpoints:
- POST /build - Stage, install and build a project; returns the preview URL
- DELETE /build/{project_id} - Remove a finished preview immediately
"""
import logging

from fastapi import APIRouter, HTTPException, Request

from preview_builder.core.builder import PreviewBuilder
from preview_builder.core.errors import CleanupError
from preview_builder.core.request_context import get_request_id
from preview_builder.core.request_logging import get_client_ip
from preview_builder.schemas.build import BuildData, BuildRequest, BuildResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["build"])


def get_builder(request: Request) -> PreviewBuilder:
    return request.app.state.builder


def get_base_url(request: Request) -> str:
    """PUBLIC_BASE_URL if configured, otherwise derived from the request."""
    builder = get_builder(request)
    if builder.config.public_base_url:
        return builder.config.public_base_url
    scheme = request.headers.get("x-forwarded-proto", request.url.scheme)
    host = request.headers.get("x-forwarded-host", request.headers.get("host", ""))
    return f"{scheme}://{host}"


@router.post("/build", response_model=BuildResponse)
async def create_build(payload: BuildRequest, request: Request) -> BuildResponse:
    """
    Build a submitted project and return where its preview is served.

    Errors are raised as typed PreviewError subclasses and rendered by
    the application's exception handler.
    """
    builder = get_builder(request)
    outcome = await builder.build(
        payload.files,
        request_id=get_request_id(),
        client_ip=get_client_ip(request),
    )

    url = f"{get_base_url(request)}/preview/{outcome.project_id}/{outcome.output_dir_name}/"
    return BuildResponse(data=BuildData(url=url, **outcome.to_dict()))


@router.delete("/build/{project_id}")
async def delete_build(project_id: str, request: Request) -> dict:
    """Remove a preview before the retention sweeper would."""
    builder = get_builder(request)
    if builder.workspaces.is_active(project_id):
        raise HTTPException(status_code=409, detail="Build still in progress")

    warnings = builder.remove(project_id)
    if warnings is None:
        raise HTTPException(status_code=404, detail="Preview not found")
    if warnings:
        # Partial removal fails an explicit delete
        raise CleanupError(f"Preview only partially removed: {'; '.join(warnings)}")

    return {"success": True, "projectId": project_id}
