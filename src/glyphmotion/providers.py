# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Remote document providers.

``ResourceProvider`` is the key → document fetch contract used by the cache
tier and the catalog.  ``HttpProvider`` implements it over a shared
``httpx.AsyncClient``.  Returned documents are raw JSON; validation happens
in ``schemas.py``.
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any, Protocol, runtime_checkable

import httpx

from .config import PipelineConfig
from .errors import ProviderError

logger = logging.getLogger(__name__)

_USER_AGENT = "glyphmotion/0.3"


@runtime_checkable
class ResourceProvider(Protocol):
    """Interface for the metadata and animation endpoints."""

    async def fetch_metadata(self) -> Any: ...

    async def fetch_resource(self, key: str) -> Any: ...


class HttpProvider:
    """httpx-backed provider.

    Usage::

        async with HttpProvider(config) as provider:
            doc = await provider.fetch_resource("1f600")
    """

    def __init__(self, config: PipelineConfig | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self._config = config or PipelineConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(self._config.http_timeout),
            headers={"User-Agent": _USER_AGENT, "Accept": "application/json"},
            follow_redirects=True,
            limits=httpx.Limits(
                max_connections=self._config.max_concurrent_fetches + 2,
                max_keepalive_connections=self._config.max_concurrent_fetches,
            ),
        )

    async def __aenter__(self) -> HttpProvider:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_metadata(self) -> Any:
        return await self._get_json(self._config.metadata_url, key="")

    async def fetch_resource(self, key: str) -> Any:
        return await self._get_json(self._config.resource_url(key), key=key)

    async def _get_json(self, url: str, *, key: str) -> Any:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise ProviderError(f"request failed for {url}: {e}", key=key) from e

        if response.status_code != 200:
            raise ProviderError(
                f"unexpected status {response.status_code} for {url}",
                key=key,
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"non-JSON body from {url}", key=key, status=response.status_code) from e
