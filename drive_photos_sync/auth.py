"""
OAuth 2.0 credential acquisition for the Drive and Photos Library APIs.
"""
import os
import sys
import logging
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse, parse_qs

from google.auth.exceptions import GoogleAuthError, RefreshError
from google.auth.transport.requests import AuthorizedSession, Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from drive_photos_sync.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

SCOPES = [
    'https://www.googleapis.com/auth/drive.readonly',
    'https://www.googleapis.com/auth/photoslibrary.appendonly',
    'https://www.googleapis.com/auth/photoslibrary.readonly.appcreateddata',
]


def get_token_file_path() -> Path:
    """
    Determine where to store the OAuth token file.

    The token holds a refresh token, so it lives in a per-user config
    directory and is written with owner-only permissions.
    """
    xdg_config_home = os.environ.get('XDG_CONFIG_HOME')
    base_dir = Path(xdg_config_home) if xdg_config_home else (Path.home() / '.config')
    token_dir = base_dir / 'drive-photos-sync'
    token_dir.mkdir(parents=True, exist_ok=True)
    return token_dir / 'token.json'


def is_headless_environment() -> bool:
    """Check if we're running without a display to open a browser on."""
    if sys.platform == 'darwin':
        return bool(os.environ.get('SSH_CLIENT')) and not os.environ.get('DISPLAY')
    if sys.platform.startswith('linux'):
        return not os.environ.get('DISPLAY') and not os.environ.get('WAYLAND_DISPLAY')
    return False


def _console_flow(flow: InstalledAppFlow) -> Credentials:
    flow.redirect_uri = 'http://localhost:8080/'
    auth_url, _ = flow.authorization_url(prompt='consent', access_type='offline')
    logger.info("=" * 60)
    logger.info("Running in headless mode - Manual authorization required")
    logger.info("=" * 60)
    logger.info("Please visit this URL to authorize the application:")
    logger.info(auth_url)
    logger.info("After authorizing, copy the ENTIRE redirect URL (http://localhost:8080/?code=...)")
    authorization_response = input("Enter the authorization response URL: ").strip()
    params = parse_qs(urlparse(authorization_response).query)
    code = params['code'][0] if 'code' in params else authorization_response
    flow.fetch_token(code=code)
    return flow.credentials


def get_credentials(credentials_file: str, token_file: Optional[Path] = None,
                    scopes: Optional[List[str]] = None) -> Credentials:
    """
    Load cached credentials, refreshing or re-authorizing when needed.

    Args:
        credentials_file: OAuth client secrets JSON from the Google Cloud Console
        token_file: Token cache location (defaults to the per-user config dir)
        scopes: OAuth scopes (defaults to ``SCOPES``)

    Returns:
        Valid user credentials.

    Raises:
        AuthenticationError: If no valid credentials can be obtained
    """
    scopes = scopes or SCOPES
    token_file = token_file or get_token_file_path()
    creds = None

    if token_file.exists():
        try:
            creds = Credentials.from_authorized_user_file(str(token_file), scopes)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable token file {token_file}: {e}")

    if creds and creds.valid:
        return creds

    try:
        if creds and creds.expired and creds.refresh_token:
            try:
                creds.refresh(Request())
            except RefreshError as e:
                logger.warning(f"Token refresh failed ({e}); re-authorization required")
                creds = None

        if not creds or not creds.valid:
            if not Path(credentials_file).exists():
                raise AuthenticationError(f"Credentials file not found: {credentials_file}")
            flow = InstalledAppFlow.from_client_secrets_file(credentials_file, scopes)
            if is_headless_environment():
                creds = _console_flow(flow)
            else:
                creds = flow.run_local_server(port=0)
    except GoogleAuthError as e:
        raise AuthenticationError(f"Google authentication failed: {e}") from e

    with open(token_file, 'w') as token:
        token.write(creds.to_json())
    try:
        os.chmod(token_file, 0o600)
    except OSError as e:
        logger.warning(f"Could not restrict permissions on {token_file}: {e}")

    logger.info("Successfully authenticated with Google")
    return creds


def build_drive_service(creds: Credentials):
    """Drive v3 resource for listing and downloading."""
    return build('drive', 'v3', credentials=creds, cache_discovery=False)


def build_photos_session(creds: Credentials) -> AuthorizedSession:
    """HTTP session that signs Photos Library API requests."""
    return AuthorizedSession(creds)
