"""Remote markdown document stored as a file in a GitHub repository."""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx

from ..config import DocumentConfig
from ..errors import PersistenceConflict, PersistenceError, PromptLoadError
from ..pipeline.record import Record, format_entry, format_timestamp

logger = logging.getLogger(__name__)

# Status codes GitHub uses when the supplied sha no longer matches the file
CONFLICT_STATUSES = (409, 412)


@dataclass(frozen=True)
class RemoteDocument:
    """Document content at one revision."""
    path: str
    content: str
    version: str


def decode_content(encoded: str) -> str:
    cleaned = encoded.replace("\n", "").replace("\r", "")
    return base64.b64decode(cleaned).decode("utf-8")


def encode_content(content: str) -> str:
    return base64.b64encode(content.encode("utf-8")).decode("ascii")


class DocumentStore:
    """Fetches and conditionally rewrites files through the GitHub contents API."""

    def __init__(self, config: DocumentConfig, client: Optional[httpx.Client] = None):
        self.config = config
        self.file_path = config.file_path
        self.branch = config.branch
        self._client = client or httpx.Client(timeout=config.timeout)

    def _url(self, path: str) -> str:
        base = self.config.api_url.rstrip("/")
        return f"{base}/repos/{self.config.owner}/{self.config.repo}/contents/{path.lstrip('/')}"

    def _headers(self) -> dict:
        if not self.config.token:
            raise PersistenceError("GitHub token missing")
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
        }

    def fetch(self, path: Optional[str] = None) -> RemoteDocument:
        """Fetch a file's decoded content and its version token (blob sha)."""
        path = path or self.file_path
        try:
            resp = self._client.get(
                self._url(path),
                headers=self._headers(),
                params={"ref": self.branch},
            )
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch {path}: {e}")
            raise PersistenceError(str(e) or type(e).__name__) from e

        if resp.is_error:
            raise PersistenceError(f"HTTP {resp.status_code}: {resp.text}")

        try:
            payload = resp.json()
            content = decode_content(payload["content"])
            version = payload["sha"]
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Invalid response for {path}: {e}") from e

        return RemoteDocument(path=path, content=content, version=version)

    def update(self, path: str, content: str, version: str, message: str) -> str:
        """
        Write new content conditioned on ``version``.

        Returns:
            URL of the resulting commit

        Raises:
            PersistenceConflict: If the file changed since ``version``
            PersistenceError: On any other transport or API failure
        """
        body = {
            "message": message,
            "content": encode_content(content),
            "sha": version,
            "branch": self.branch,
        }
        try:
            resp = self._client.put(self._url(path), headers=self._headers(), json=body)
        except httpx.HTTPError as e:
            logger.error(f"Failed to update {path}: {e}")
            raise PersistenceError(str(e) or type(e).__name__) from e

        if resp.status_code in CONFLICT_STATUSES:
            raise PersistenceConflict(f"HTTP {resp.status_code}: {resp.text}")
        if resp.is_error:
            raise PersistenceError(f"HTTP {resp.status_code}: {resp.text}")

        try:
            commit = resp.json()["commit"]
            return commit.get("html_url") or commit["sha"]
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Invalid update response: {e}") from e

    def append_record(self, record: Record, timestamp: datetime) -> str:
        """Append a formatted entry for ``record`` and return the commit ref."""
        document = self.fetch(self.file_path)
        updated = document.content + format_entry(record, timestamp)
        message = f"Add memo: {record.type.value} - {format_timestamp(timestamp)}"
        commit_ref = self.update(document.path, updated, document.version, message)
        logger.info(f"Memo appended to {document.path}: {commit_ref}")
        return commit_ref

    def fetch_prompt(self) -> str:
        """Load the remote classification prompt."""
        try:
            return self.fetch(self.config.prompt_path).content
        except PersistenceError as e:
            raise PromptLoadError(str(e)) from e

    def close(self) -> None:
        self._client.close()
