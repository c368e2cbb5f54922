"""
Verify that the files a feed advertises match their published SHA-1 checksums.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import httpx

from depfeed.domain.entities import FeedDocument
from depfeed.domain.errors import FeedNotFoundError
from depfeed.domain.models import ChecksumResult, RepositoryConfig
from depfeed.domain.templates import contains_placeholder
from depfeed.services.feed_fetcher import make_client

logger = logging.getLogger(__name__)


def sha1_of_file(path: Path) -> str:
    h = hashlib.sha1()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


class ChecksumVerifier:
    """
    Downloads every non-deleted file of a feed and compares its SHA-1 with
    the advertised `sha1`. Downloads run concurrently, bounded by
    `max_concurrent_downloads`.
    """

    def __init__(self, config: Optional[RepositoryConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or RepositoryConfig()
        self._client = client

    def _targets(
        self,
        doc: FeedDocument,
        namespace: Optional[str],
        channel: Optional[str],
    ) -> List[Tuple[str, str, dict]]:
        resolved = doc.resolved()
        targets = []
        found = namespace is None
        for section, record_ns, _ in doc.feed.iter_records():
            if namespace is not None and record_ns != namespace:
                continue
            found = True
            for channel_name, channel_data in (resolved[section][record_ns].get("channels") or {}).items():
                if channel is not None and channel_name != channel:
                    continue
                for entry in channel_data.get("files") or []:
                    if entry.get("delete"):
                        continue
                    targets.append((record_ns, channel_name, entry))
        if not found:
            raise FeedNotFoundError(f"No macro or module named {namespace!r}")
        return targets

    async def verify(
        self,
        doc: FeedDocument,
        namespace: Optional[str] = None,
        channel: Optional[str] = None,
    ) -> List[ChecksumResult]:
        targets = self._targets(doc, namespace, channel)
        if not targets:
            return []

        semaphore = asyncio.Semaphore(self.config.max_concurrent_downloads)
        client = self._client or make_client(self.config.fetch_timeout_seconds)
        try:
            results = await asyncio.gather(
                *(self._verify_one(client, semaphore, ns, ch, entry) for ns, ch, entry in targets)
            )
        finally:
            if self._client is None:
                await client.aclose()

        bad = [r for r in results if r.status != "ok"]
        logger.info(f"Verified {len(results)} files of feed {doc.feed_id}: {len(bad)} problems")
        return list(results)

    async def _verify_one(
        self,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        namespace: str,
        channel: str,
        entry: dict,
    ) -> ChecksumResult:
        url = entry.get("url") or ""
        expected = entry.get("sha1")
        result = ChecksumResult(
            namespace=namespace,
            channel=channel,
            file_name=entry.get("name"),
            url=url,
            expected_sha1=expected,
            status="error",
        )

        if not url or contains_placeholder(url):
            result.detail = "File URL is missing or contains unresolved placeholders"
            return result
        if not expected:
            result.detail = "No sha1 advertised"
            return result

        async with semaphore:
            try:
                h = hashlib.sha1()
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    async for chunk in response.aiter_bytes():
                        h.update(chunk)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                logger.warning(f"Download of {url} failed: {e}")
                result.detail = str(e) or type(e).__name__
                return result

        result.actual_sha1 = h.hexdigest()
        if result.actual_sha1.lower() == expected.lower():
            result.status = "ok"
        else:
            result.status = "mismatch"
            result.detail = f"Expected {expected.lower()}, got {result.actual_sha1}"
        return result
