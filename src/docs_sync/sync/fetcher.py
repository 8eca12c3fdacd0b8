"""Revision-aware retrieval of documentation sources from the content host."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

from docs_sync.exceptions import TransportError

if TYPE_CHECKING:
    from docs_sync.config import UpstreamConfig
    from docs_sync.sources import SourceDescriptor

logger = logging.getLogger(__name__)

COLLECTION_ID = "<collection>"


@dataclass(frozen=True)
class Fetched:
    """New content was transferred."""

    content: str
    revision: str
    size: int
    validator: str | None = None


@dataclass(frozen=True)
class NotModified:
    """Upstream confirmed the cached copy is current."""


@dataclass(frozen=True)
class NotFound:
    """The source no longer exists upstream."""


FetchOutcome = Fetched | NotModified | NotFound


class ConditionalFetcher:
    """Fetches single files through the GitHub contents API.

    Sends ``If-None-Match`` with the last transport validator so unchanged
    files cost a 304 and no body. Holds no cache state of its own.
    """

    def __init__(self, config: UpstreamConfig, client: httpx.AsyncClient | None = None) -> None:
        """Initialize fetcher.

        Args:
            config: Upstream repository settings.
            client: Optional shared client; a short-lived one is used per
                request otherwise.
        """
        self._config = config
        self._client = client
        self._repo_url = f"{config.api_base_url.rstrip('/')}/repos/{config.owner}/{config.repo}"

    def _headers(self, validator: str | None = None) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": self._config.user_agent,
        }
        if self._config.token:
            headers["Authorization"] = f"Bearer {self._config.token}"
        if validator:
            headers["If-None-Match"] = validator
        return headers

    async def _get(self, url: str, headers: dict[str, str], params: dict[str, Any] | None = None) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, headers=headers, params=params)
        async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
            return await client.get(url, headers=headers, params=params)

    async def fetch(self, source: SourceDescriptor, validator: str | None = None) -> FetchOutcome:
        """Retrieve the latest content of ``source``.

        Raises:
            TransportError: The request failed or the body could not be decoded.
        """
        url = f"{self._repo_url}/contents/{source.path.lstrip('/')}"
        try:
            response = await self._get(url, self._headers(validator), params={"ref": self._config.branch})
        except httpx.HTTPError as e:
            raise TransportError(source.id, e) from e

        if response.status_code == 304:
            logger.debug("%s: not modified", source.id)
            return NotModified()
        if response.status_code == 404:
            logger.warning("%s: not found upstream (%s)", source.id, source.path)
            return NotFound()
        if response.is_error:
            raise TransportError(source.id, f"HTTP {response.status_code} from {url}")

        try:
            data = response.json()
            content = base64.b64decode(data["content"]).decode("utf-8")
            revision = str(data["sha"])
            size = int(data.get("size", len(content.encode("utf-8"))))
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            raise TransportError(source.id, f"undecodable response: {e}") from e

        return Fetched(
            content=content,
            revision=revision,
            size=size,
            validator=response.headers.get("etag"),
        )

    async def latest_collection_revision(self) -> str:
        """Return the head commit SHA of the configured branch."""
        url = f"{self._repo_url}/commits/{self._config.branch}"
        try:
            response = await self._get(url, self._headers())
            response.raise_for_status()
            return str(response.json()["sha"])
        except httpx.HTTPError as e:
            raise TransportError(COLLECTION_ID, e) from e
        except (ValueError, KeyError, TypeError) as e:
            raise TransportError(COLLECTION_ID, f"undecodable response: {e}") from e
