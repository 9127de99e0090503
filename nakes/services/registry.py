"""
Fetch package metadata from the remote registry.

The registry serves one JSON document per package at ``<base_url>/<name>/json``.
Only the fields the resolver needs are decoded:

    {
      "info": {"version": "<latest>"},
      "releases": {
        "<version>": {"hash": "...", "dependencies": [{"name": ..., "version": ...}]},
        "<version>": [{"digests": {"sha256": "..."}, "dependencies": ["name==1.0"]}]
      }
    }

A release is either an object carrying the hash directly, or a list of
distribution files of which the first one is used.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from nakes.core.errors import InvalidPackageSchema, RequestError
from nakes.domain.models import Dependency, PackageMetadata

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_URL = "https://pypi.org/pypi"


class PackageSource(Protocol):
    """Anything the resolver can ask for package metadata."""

    async def fetch(self, name: str, version: str) -> PackageMetadata:
        ...


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class RegistryRelease(BaseModel):
    hash: str = Field(validation_alias=AliasChoices("hash", "sha256", "digest"))
    dependencies: List[Dependency] = Field(default_factory=list)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _parse_pinned_requirements(cls, value: Any) -> Any:
        """Accept ``"name==version"`` strings next to ``{name, version}`` objects."""
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        items = []
        for item in value:
            if isinstance(item, str):
                name, sep, version = item.partition("==")
                if not sep or not name.strip() or not version.strip():
                    raise ValueError(f"dependency {item!r} is not pinned as name==version")
                items.append({"name": name.strip(), "version": version.strip()})
            else:
                items.append(item)
        return items


class RegistryInfo(BaseModel):
    version: Optional[str] = None


class RegistryDocument(BaseModel):
    info: Optional[RegistryInfo] = None
    releases: Optional[Dict[str, Any]] = None


def _release_from_raw(raw: Any) -> Dict[str, Any]:
    """Normalize the file-list release form into the object form."""
    if isinstance(raw, list):
        if not raw:
            raise InvalidPackageSchema("release has no files")
        first = raw[0]
        if not isinstance(first, dict):
            raise InvalidPackageSchema("release file entry is not an object")
        digests = first.get("digests") or {}
        return {
            "hash": digests.get("sha256") if isinstance(digests, dict) else None,
            "dependencies": first.get("dependencies") or [],
        }
    if isinstance(raw, dict):
        return raw
    raise InvalidPackageSchema("release is neither an object nor a file list")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RegistryClient:
    """
    Async HTTP client for the package registry.

    Transport failures (connection refused, timeouts, ...) are retried
    ``retries`` times with a linear backoff. Error statuses and malformed
    documents are reported immediately.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_REGISTRY_URL,
        timeout: float = 30.0,
        retries: int = 2,
        backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        self._http()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def package_url(self, name: str) -> str:
        return f"{self.base_url}/{name}/json"

    async def _get(self, url: str) -> httpx.Response:
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = await self._http().get(url)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                raise RequestError(f"{url} returned HTTP {e.response.status_code}") from e
            except httpx.TransportError as e:
                if attempt >= attempts:
                    raise RequestError(f"{url}: {e!r}") from e
                logger.warning(f"Registry request failed (attempt {attempt}/{attempts}): {e!r}. Retrying...")
                await asyncio.sleep(self.backoff * attempt)
        raise RequestError(f"{url}: no attempt made")

    async def get_document(self, name: str) -> RegistryDocument:
        """
        Download and decode the registry document of a package.
        """
        url = self.package_url(name)
        logger.debug(f"Fetching registry document {url}")
        response = await self._get(url)

        try:
            payload = response.json()
        except ValueError as e:
            raise InvalidPackageSchema(f"{url} did not return JSON") from e

        try:
            return RegistryDocument.model_validate(payload)
        except PydanticValidationError as e:
            raise InvalidPackageSchema(str(e)) from e

    async def fetch(self, name: str, version: str) -> PackageMetadata:
        """
        Get the content hash and pinned dependencies of ``name==version``.

        Raises:
            RequestError: the registry could not be reached or returned an error status.
            InvalidPackageSchema: the document lacks the release or its required fields.
        """
        document = await self.get_document(name)
        if document.releases is None:
            raise InvalidPackageSchema(f"{name} has no 'releases' map")
        if version not in document.releases:
            raise InvalidPackageSchema(f"{name} has no release {version!r}")

        try:
            release = RegistryRelease.model_validate(_release_from_raw(document.releases[version]))
        except PydanticValidationError as e:
            raise InvalidPackageSchema(f"{name}=={version}: {e}") from e

        logger.info(f"Fetched {name}=={version} ({len(release.dependencies)} dependencies)")
        return PackageMetadata(
            name=name,
            version=version,
            hash=release.hash,
            dependencies=release.dependencies,
        )

    async def latest_version(self, name: str) -> str:
        """Get the version the registry advertises as current for ``name``."""
        document = await self.get_document(name)
        if document.info is None or not document.info.version:
            raise InvalidPackageSchema(f"{name} has no 'info.version'")
        return document.info.version
