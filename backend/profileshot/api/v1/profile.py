import logging

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from profileshot.api.deps import get_profile_fetcher
from profileshot.schemas.profile import ErrorResponse, ProfileScreenshotRequest
from profileshot.services.profile import ProfileFetcher

router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or invalid profile URL"},
    404: {"model": ErrorResponse, "description": "Profile not found or unavailable"},
    500: {"model": ErrorResponse, "description": "Login, challenge or capture failure"},
}


async def _screenshot(request: ProfileScreenshotRequest, fetcher: ProfileFetcher):
    result = await fetcher.fetch_profile_screenshot(request.profile_url)
    result.raise_for_error()
    media_type = "image/jpeg" if result.screenshot_path.endswith(".jpeg") else "image/png"
    return FileResponse(result.screenshot_path, media_type=media_type)


@router.post(
    "/profile/screenshot",
    summary="Screenshot a LinkedIn profile",
    description="Capture a full-page screenshot of the given LinkedIn profile using the shared "
    "authenticated browser session. Requests are spaced by PROFILE_REQUEST_DELAY_MS, so a "
    "call may wait before it starts. If LinkedIn shows a verification challenge the request "
    "blocks until an operator completes it in the visible browser window or the wait budget "
    "runs out. Returns the image bytes on success.",
    response_class=FileResponse,
    responses=_ERROR_RESPONSES,
)
async def profile_screenshot(
    request: ProfileScreenshotRequest,
    fetcher: ProfileFetcher = Depends(get_profile_fetcher),
):
    return await _screenshot(request, fetcher)


@router.post(
    "/screenshot",
    summary="Screenshot a LinkedIn profile (legacy path)",
    description="Alias of POST /api/profile/screenshot kept for existing clients.",
    response_class=FileResponse,
    responses=_ERROR_RESPONSES,
)
async def legacy_screenshot(
    request: ProfileScreenshotRequest,
    fetcher: ProfileFetcher = Depends(get_profile_fetcher),
):
    return await _screenshot(request, fetcher)
