import os
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Response
from google_auth_oauthlib.flow import Flow

from api.dependencies import (
    DEFAULT_USER_ID,
    get_calendar_sync_service,
    get_current_user_id,
    get_google_auth_store,
    get_planner_store,
)
from calendar_sync.errors import CalendarApiError
from calendar_sync.service import CalendarSyncService
from integration.calendar_integration import CalendarIntegration
from storage.google_auth import GoogleAuthStore

router = APIRouter()
logger = logging.getLogger(__name__)

# Google Auth Configuration
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
GOOGLE_REDIRECT_URI = os.getenv(
    "GOOGLE_REDIRECT_URI", "http://localhost:8000/auth/google/callback"
)
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

OAUTH_SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]


def _flow() -> Flow:
    return Flow.from_client_config(
        {
            "web": {
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": "https://oauth2.googleapis.com/token",
            }
        },
        scopes=OAUTH_SCOPES,
        redirect_uri=GOOGLE_REDIRECT_URI,
    )


def _redirect(query: str) -> Response:
    return Response(
        status_code=307,
        headers={"Location": f"{FRONTEND_URL}/day-planner?{query}"},
    )


@router.get("/auth/google/login")
async def google_login(user_id: str = Depends(get_current_user_id)):
    """Initiates the OAuth2 flow - redirects to Google."""
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise HTTPException(status_code=500, detail="Google credentials not configured")

    # the user id rides along in `state` and comes back on the callback
    authorization_url, _ = _flow().authorization_url(
        access_type="offline",
        include_granted_scopes="true",
        prompt="consent",
        state=user_id,
    )
    return Response(status_code=307, headers={"Location": authorization_url})


@router.get("/auth/google/callback")
async def google_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    google_auth_store: Optional[GoogleAuthStore] = Depends(get_google_auth_store),
    service: CalendarSyncService = Depends(get_calendar_sync_service),
):
    """Handles the OAuth2 callback: stores the tokens and enables sync."""
    if error or not code:
        logger.error(f"OAuth error: {error or 'missing code'}")
        return _redirect("error=" + quote(error or "missing_code"))

    if google_auth_store is None:
        return _redirect("error=configuration_error")

    user_id = state or DEFAULT_USER_ID
    try:
        flow = _flow()
        flow.fetch_token(code=code)
        credentials = flow.credentials

        try:
            session = flow.authorized_session()
            email = session.get("https://www.googleapis.com/userinfo/v2/me").json().get("email")
        except Exception as e:
            logger.error(f"Failed to fetch user email: {e}")
            email = None

        await google_auth_store.save_credentials(user_id, credentials, email)

        time_zone = None
        try:
            calendar = await CalendarIntegration(credentials).get_calendar("primary")
            time_zone = calendar.get("timeZone")
        except CalendarApiError as e:
            logger.warning(f"Could not read calendar time zone for user {user_id}: {e}")

        await service.connect(user_id, email, calendar_id="primary", time_zone=time_zone)
        return _redirect("connected=true")

    except Exception as e:
        logger.error(f"OAuth callback failed: {e}")
        return _redirect("error=" + quote(str(e)))


@router.get("/auth/google/status")
async def google_status(
    user_id: str = Depends(get_current_user_id),
    google_auth_store: Optional[GoogleAuthStore] = Depends(get_google_auth_store),
    planner_store=Depends(get_planner_store),
) -> dict:
    """Check if user is connected."""
    if not google_auth_store or not planner_store:
        return {"connected": False, "error": "Auth store not initialized"}

    try:
        account = await planner_store.get_account(user_id)
        creds = await google_auth_store.get_credentials(user_id)
        if account is None:
            return {"connected": False, "email": None}
        return {
            "connected": creds is not None and account.is_connected,
            "email": account.account_email,
            "calendar_id": account.calendar_id,
            "time_zone": account.time_zone,
            "sync_direction": account.sync_direction.value,
            "preferences": account.preferences.model_dump(),
            "last_sync_at": account.last_sync_at.isoformat() if account.last_sync_at else None,
        }
    except Exception as e:
        logger.error(f"Error checking status: {e}")
        return {"connected": False, "error": str(e)}
