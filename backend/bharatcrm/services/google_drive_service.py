# backend/bharatcrm/services/google_drive_service.py
"""
Google Drive access for call recordings.

- OAuth refresh-token exchange (the only token lifecycle step handled here)
- Listing audio/video files in the user's chosen folder
- Downloading file content for transcription
- Phone/date extraction from recorder file names
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from bharatcrm.config import settings
from bharatcrm.utils.logger import logger
from bharatcrm.utils.phone import normalize_phone
from bharatcrm.utils.retry_logic import RETRYABLE_STATUSES, retry_async

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"

# Call recorders save in many formats, and mime types are often wrong
AUDIO_EXTENSIONS = (
    "mp3", "m4a", "wav", "ogg", "mpeg", "mpg", "3gp",
    "amr", "aac", "flac", "wma", "opus", "webm",
)

FILE_FIELDS = "nextPageToken, files(id, name, mimeType, size, createdTime, modifiedTime, webViewLink, webContentLink)"

PHONE_PATTERNS = [
    re.compile(r"\+?\d{1,3}[-\s]?\d{10}"),      # +919876543210, +91-9876543210
    re.compile(r"\b[6-9]\d{9}\b"),              # 9876543210
    re.compile(r"\b91[_-]?[6-9]\d{9}\b"),       # 91_9876543210
    re.compile(r"\b\d{10,15}\b"),               # any 10-15 digit number
]

DATE_PATTERNS = [
    (re.compile(r"(\d{4})[-_](\d{2})[-_](\d{2})"), "ymd"),   # 2024-01-15
    (re.compile(r"(\d{2})[-_](\d{2})[-_](\d{4})"), "dmy"),   # 15-01-2024
    (re.compile(r"(\d{4})(\d{2})(\d{2})"), "ymd"),           # 20240115
]

_EXTENSION = re.compile(r"\.[^/.]+$")
_PHONE_SEPARATORS = re.compile(r"[-\s_]")


class GoogleDriveError(Exception):
    """Google OAuth or Drive API failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


async def refresh_access_token(refresh_token: str) -> str:
    """
    Exchange a refresh token for a new access token.

    Raises:
        GoogleDriveError: the token endpoint refused the refresh
    """
    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(
                GOOGLE_TOKEN_URL,
                data={
                    "client_id": settings.GOOGLE_CLIENT_ID or "",
                    "client_secret": settings.GOOGLE_CLIENT_SECRET or "",
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
    except httpx.HTTPError as e:
        raise GoogleDriveError(f"Token refresh request failed: {e}") from e

    if response.status_code >= 400:
        logger.warning(f"[Drive] Token refresh rejected: {response.status_code} {response.text[:200]}")
        raise GoogleDriveError("Token refresh rejected", status_code=response.status_code)

    access_token = response.json().get("access_token")
    if not access_token:
        raise GoogleDriveError("Token refresh returned no access token")
    return access_token


def build_recording_query(folder_id: str, since: Optional[datetime] = None) -> str:
    """Drive `q` for audio/video-like files directly inside the folder."""
    clauses = ["mimeType contains 'audio/'", "mimeType contains 'video/'"]
    clauses.extend(f"name contains '.{ext}'" for ext in AUDIO_EXTENSIONS)

    query = f"'{folder_id}' in parents and trashed=false and ({' or '.join(clauses)})"
    if since:
        query += f" and modifiedTime > '{since.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')}'"
    return query


class GoogleDriveService:
    """Drive v3 calls with a user's OAuth access token."""

    def __init__(self, access_token: str):
        self.access_token = access_token

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def list_recording_files(self, folder_id: str, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """All matching files in the folder, newest first (follows nextPageToken)."""
        files: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {
            "q": build_recording_query(folder_id, since),
            "fields": FILE_FIELDS,
            "orderBy": "createdTime desc",
            "pageSize": 100,
        }

        while True:
            response = await self._get(DRIVE_FILES_URL, params=params)
            if response.status_code >= 400:
                raise GoogleDriveError(
                    f"Drive listing failed: {response.text[:200]}",
                    status_code=response.status_code,
                )
            data = response.json()
            files.extend(data.get("files") or [])

            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token

        logger.info(f"[Drive] Folder {folder_id}: {len(files)} recording files")
        return files

    async def download_file(self, file_id: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=settings.AI_REQUEST_TIMEOUT_SECONDS) as client:
                response = await client.get(
                    f"{DRIVE_FILES_URL}/{file_id}",
                    params={"alt": "media"},
                    headers=self._headers,
                )
        except httpx.HTTPError as e:
            raise GoogleDriveError(f"Drive download failed: {e}") from e

        if response.status_code >= 400:
            raise GoogleDriveError(
                f"Drive download failed: {response.status_code}",
                status_code=response.status_code,
            )
        return response.content

    @retry_async(max_retries=2, base_delay=0.5, max_delay=5.0, retry_statuses=RETRYABLE_STATUSES)
    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.get(url, params=params, headers=self._headers)


# ==================== File name parsing ====================

def extract_phone_from_filename(filename: str) -> Optional[str]:
    """
    Phone number embedded in a recorder file name, normalized.

    "Call_+919876543210_2024-01-15.mp3" -> "+919876543210"
    """
    name = _EXTENSION.sub("", filename or "")
    for pattern in PHONE_PATTERNS:
        match = pattern.search(name)
        if match:
            return normalize_phone(_PHONE_SEPARATORS.sub("", match.group(0))) or None
    return None


def extract_date_from_filename(filename: str, fallback: Optional[str]) -> Optional[datetime]:
    """Recording date from the file name, else the Drive createdTime."""
    for pattern, order in DATE_PATTERNS:
        for match in pattern.finditer(filename or ""):
            a, b, c = match.groups()
            year, month, day = (a, b, c) if order == "ymd" else (c, b, a)
            try:
                return datetime(int(year), int(month), int(day), tzinfo=timezone.utc)
            except ValueError:
                continue

    return parse_drive_timestamp(fallback)


def parse_drive_timestamp(value: Optional[str]) -> Optional[datetime]:
    """RFC 3339 timestamp from the Drive API ("2024-01-15T10:20:30.000Z")."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"[Drive] Unparseable timestamp: {value}")
        return None
