"""
Resolve the required modules of a feed against this feed, the host
application and the external feeds they point at.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Union

import httpx

from depfeed.domain.entities import FeedDocument
from depfeed.domain.errors import FeedError, VersionError
from depfeed.domain.models import DependencyResult, Feed, RepositoryConfig
from depfeed.domain.validation import is_absolute_url
from depfeed.domain.versions import satisfies
from depfeed.services.feed_fetcher import fetch_feed, make_client

logger = logging.getLogger(__name__)


class DependencyResolver:
    def __init__(self, config: Optional[RepositoryConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or RepositoryConfig()
        self._client = client
        self._remote: Dict[str, Union[Feed, str]] = {}

    async def _load_remote(self, client: httpx.AsyncClient, url: str) -> None:
        try:
            raw = await fetch_feed(url, retries=self.config.fetch_retries, client=client)
            self._remote[url] = Feed.parse(raw)
        except FeedError as e:
            logger.warning(f"Could not load dependency feed {url}: {e}")
            self._remote[url] = str(e)

    async def resolve(self, doc: FeedDocument) -> List[DependencyResult]:
        entries = doc.required_modules()

        urls = {
            entry.get("feed")
            for _, _, entry in entries
            if entry.get("moduleName") not in doc.feed.modules and is_absolute_url(entry.get("feed"))
        }
        urls = [u for u in sorted(urls) if u not in self._remote]
        if urls:
            client = self._client or make_client(self.config.fetch_timeout_seconds)
            try:
                await asyncio.gather(*(self._load_remote(client, url) for url in urls))
            finally:
                if self._client is None:
                    await client.aclose()

        results = [self._resolve_entry(doc, ns, channel, entry) for ns, channel, entry in entries]
        logger.info(
            f"Resolved {len(results)} required modules of feed {doc.feed_id}: "
            f"{sum(r.status in ('missing', 'outdated', 'unreachable', 'invalid') for r in results)} problems"
        )
        return results

    def _resolve_entry(self, doc: FeedDocument, namespace: str, channel: str, entry: dict) -> DependencyResult:
        module_name = entry.get("moduleName")
        required = entry.get("version")
        result = DependencyResult(
            namespace=namespace,
            channel=channel,
            module_name=module_name if isinstance(module_name, str) else "",
            required_version=required,
            feed_url=entry.get("feed"),
            status="invalid",
        )
        if not module_name:
            result.detail = "Required module has no moduleName"
            return result

        local = doc.feed.modules.get(module_name)
        if local is not None:
            default = local.default_channel()
            result.available_version = default[1].version if default else None
            result.status = "local"
            return self._compare(result)

        feed_url = entry.get("feed")
        if feed_url:
            if not is_absolute_url(feed_url):
                result.detail = f"Feed URL {feed_url!r} is not absolute"
                return result
            remote = self._remote.get(feed_url)
            if remote is None or isinstance(remote, str):
                result.status = "unreachable"
                result.detail = remote
                return result
            found = remote.find_record(module_name)
            if found is None:
                result.status = "missing"
                result.detail = f"{module_name} is not published by {feed_url}"
                return result
            default = found[1].default_channel()
            result.available_version = default[1].version if default else None
            result.status = "ok"
            return self._compare(result)

        if module_name in self.config.host_modules:
            result.status = "host"
            return result

        result.status = "missing"
        result.detail = f"{module_name} is not published by this feed and no feed is given"
        return result

    @staticmethod
    def _compare(result: DependencyResult) -> DependencyResult:
        if not result.required_version or not result.available_version:
            return result
        try:
            if not satisfies(result.available_version, result.required_version):
                result.status = "outdated"
                result.detail = f"{result.required_version} required, {result.available_version} available"
        except VersionError as e:
            result.status = "invalid"
            result.detail = str(e)
        return result
