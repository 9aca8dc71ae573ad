from fastapi import Request

from profileshot.services.profile import ProfileFetcher
from profileshot.services.session import SessionManager


def get_profile_fetcher(request: Request) -> ProfileFetcher:
    """The process-wide fetcher created in the app lifespan."""
    return request.app.state.profile_fetcher


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.profile_fetcher.session
