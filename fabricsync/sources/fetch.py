"""Raw document retrieval over HTTP or from local files."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path

import httpx

from fabricsync.canonical.dates import to_naive_utc
from fabricsync.errors import SourceUnavailable

logger = logging.getLogger(__name__)


@dataclass
class RawDocument:
    """Document bytes plus a content-type hint."""

    content: bytes
    content_type: str | None = None
    source: str = ""
    last_modified: datetime | None = None

    def text(self) -> str:
        """Decode as text, honouring a declared charset.

        Russian supplier sites still serve windows-1251 without declaring it.
        """
        charset = None
        if self.content_type and "charset=" in self.content_type:
            charset = self.content_type.split("charset=")[-1].split(";")[0].strip()
        for encoding in filter(None, [charset, "utf-8", "cp1251"]):
            try:
                return self.content.decode(encoding)
            except (UnicodeDecodeError, LookupError):
                continue
        return self.content.decode("utf-8", errors="replace")


def _last_modified(response: httpx.Response) -> datetime | None:
    header = response.headers.get("last-modified")
    if not header:
        return None
    try:
        return to_naive_utc(parsedate_to_datetime(header))
    except (TypeError, ValueError):
        return None


async def fetch_document(
    url: str,
    *,
    timeout: float,
    user_agent: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> RawDocument:
    """Download a supplier document.

    Args:
        url: Document URL
        timeout: Seconds before connect/read gives up
        user_agent: Optional User-Agent header
        transport: Custom httpx transport (tests use ``httpx.MockTransport``)

    Raises:
        SourceUnavailable: On timeout, connection failure or HTTP error status
    """
    headers = {"Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"}
    if user_agent:
        headers["User-Agent"] = user_agent

    logger.info(f"Fetching {url} (timeout {timeout}s)")

    async with httpx.AsyncClient(
        timeout=timeout,
        headers=headers,
        follow_redirects=True,
        transport=transport,
    ) as client:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise SourceUnavailable(url, f"timed out after {timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise SourceUnavailable(
                url, f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise SourceUnavailable(url, f"request failed: {exc}") from exc

    return RawDocument(
        content=response.content,
        content_type=response.headers.get("content-type"),
        source=url,
        last_modified=_last_modified(response),
    )


def read_local_document(path: str | Path, content_type: str | None = None) -> RawDocument:
    """Load an uploaded or downloaded attachment from disk.

    Raises:
        SourceUnavailable: If the file is missing, unreadable or empty
    """
    file_path = Path(path)
    try:
        content = file_path.read_bytes()
    except OSError as exc:
        raise SourceUnavailable(str(file_path), f"cannot read file: {exc}") from exc

    if not content:
        raise SourceUnavailable(str(file_path), "file is empty")

    if content_type is None:
        content_type, _ = mimetypes.guess_type(file_path.name)

    return RawDocument(
        content=content,
        content_type=content_type,
        source=str(file_path),
        last_modified=to_naive_utc(
            datetime.fromtimestamp(file_path.stat().st_mtime, tz=timezone.utc)
        ),
    )
