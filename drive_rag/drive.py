"""
Google Drive source.

Lists supported documents under a folder tree and downloads their bytes.
Google Docs are exported as .docx so they go through the Word extractor.
"""

from dataclasses import dataclass

import google_auth_httplib2
import httplib2
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from .config import (
    DRIVE_PAGE_SIZE,
    DRIVE_SCOPES,
    MIME_DOCX,
    MIME_GOOGLE_DOC,
    MIME_GOOGLE_FOLDER,
    SUPPORTED_MIME_TYPES,
    DriveSettings,
)
from .errors import ConfigurationError, UpstreamAPIError
from .logging_config import logger

FILE_FIELDS = "id, name, mimeType, modifiedTime, size, webViewLink"
TOKEN_URI = "https://oauth2.googleapis.com/token"


@dataclass
class SourceFile:
    """A file as listed by the source."""

    id: str
    name: str
    mime_type: str
    modified_time: str | None
    size: int | None = None
    url: str | None = None

    @classmethod
    def from_api(cls, item: dict) -> "SourceFile":
        size = item.get("size")
        return cls(
            id=item["id"],
            name=item["name"],
            mime_type=item.get("mimeType", ""),
            modified_time=item.get("modifiedTime"),
            size=int(size) if size is not None else None,
            url=item.get("webViewLink"),
        )


def _credentials(settings: DriveSettings):
    if settings.has_service_account:
        path = settings.google_service_account_file
        if not path.exists():
            raise ConfigurationError(f"Service account file not found: {path}")
        creds = service_account.Credentials.from_service_account_file(
            str(path), scopes=DRIVE_SCOPES
        )
        logger.info(f"✅ Google Drive auth: service account {creds.service_account_email}")
        return creds

    if settings.has_oauth:
        logger.info("✅ Google Drive auth: OAuth2 refresh token")
        return Credentials(
            None,
            refresh_token=settings.google_refresh_token,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            token_uri=TOKEN_URI,
            scopes=DRIVE_SCOPES,
        )

    raise ConfigurationError(
        "No valid authentication method configured. Please set "
        "GOOGLE_SERVICE_ACCOUNT_FILE or OAuth credentials."
    )


class DriveSource:
    """Read-only Google Drive client."""

    def __init__(self, service):
        self.service = service

    @classmethod
    def from_settings(cls, settings: DriveSettings, timeout: float = 60.0) -> "DriveSource":
        """Build an authorised Drive v3 client with a bounded socket timeout."""
        http = google_auth_httplib2.AuthorizedHttp(
            _credentials(settings), http=httplib2.Http(timeout=timeout)
        )
        service = build("drive", "v3", http=http, cache_discovery=False)
        return cls(service)

    def _list_all(self, query: str, fields: str) -> list[dict]:
        items = []
        page_token = None

        while True:
            response = (
                self.service.files()
                .list(
                    q=query,
                    fields=f"nextPageToken, files({fields})",
                    pageSize=DRIVE_PAGE_SIZE,
                    pageToken=page_token,
                )
                .execute()
            )
            items.extend(response.get("files", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                return items

    def _walk(self, folder_id: str, visited: set[str]) -> list[SourceFile]:
        visited.add(folder_id)
        parent = f"'{folder_id}' in parents and trashed=false"

        mime_clause = " or ".join(f"mimeType='{m}'" for m in SUPPORTED_MIME_TYPES)
        files = [
            SourceFile.from_api(item)
            for item in self._list_all(f"{parent} and ({mime_clause})", FILE_FIELDS)
        ]
        logger.info(f"  └─ Found {len(files)} file(s) in folder {folder_id}")

        subfolders = self._list_all(
            f"{parent} and mimeType='{MIME_GOOGLE_FOLDER}'", "id, name"
        )
        for folder in subfolders:
            if folder["id"] in visited:
                continue
            logger.info(f"  📁 Entering subfolder: {folder['name']}")
            files.extend(self._walk(folder["id"], visited))

        return files

    def list_files_recursive(self, folder_id: str | None = None) -> list[SourceFile]:
        """
        List every supported file under a folder, descending into subfolders.

        Args:
            folder_id: Root folder id; None means the drive's root folder.

        Raises:
            UpstreamAPIError: If any listing call fails.
        """
        root = folder_id or "root"
        logger.info(f"🔍 Starting recursive file scan from {root}...")

        try:
            files = self._walk(root, set())
        except Exception as e:
            logger.error(f"❌ Error listing files: {e}")
            raise UpstreamAPIError(
                "Failed to list Drive files",
                service="drive",
                details={"folderId": root, "originalError": str(e)},
            ) from e

        logger.info(f"✅ Scan complete! Found {len(files)} total file(s)")
        return files

    def fetch_bytes(self, file: SourceFile) -> bytes:
        """Download a file's content, exporting Google Docs to .docx."""
        try:
            if file.mime_type == MIME_GOOGLE_DOC:
                request = self.service.files().export(fileId=file.id, mimeType=MIME_DOCX)
            else:
                request = self.service.files().get_media(fileId=file.id)
            data = request.execute()
        except Exception as e:
            logger.error(f"❌ Error downloading file {file.name}: {e}")
            raise UpstreamAPIError(
                f"Failed to download {file.name}",
                service="drive",
                details={"fileId": file.id, "originalError": str(e)},
            ) from e

        logger.info(f"📥 Downloaded file: {file.name} ({len(data) / 1024:.1f} KB)")
        return data
