"""
Download DependencyControl feeds over HTTP.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import aiofiles
import httpx

from depfeed.domain.errors import FeedFetchError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_RETRIES = 3
USER_AGENT = "depfeed"


def make_client(
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        follow_redirects=True,
        timeout=timeout,
        headers={"User-Agent": USER_AGENT},
        transport=transport,
    )


async def fetch_feed(
    url: str,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    client: Optional[httpx.AsyncClient] = None,
) -> bytes:
    """
    Download a feed and return its exact bytes.

    Args:
        url: Feed URL
        timeout: Per-request timeout in seconds
        retries: Number of attempts before giving up
        client: Optional shared client (a temporary one is created otherwise)

    Returns:
        The response body, unmodified
    """
    last_error: Exception | None = None
    for attempt in range(1, retries + 1):
        try:
            if client is not None:
                response = await client.get(url)
            else:
                async with make_client(timeout) as own_client:
                    response = await own_client.get(url)
            response.raise_for_status()
            logger.debug(f"Fetched {url} ({len(response.content)} bytes)")
            return response.content
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            last_error = e
            if attempt < retries:
                logger.warning(f"Fetching {url} failed (attempt {attempt}/{retries}): {e}. Retrying...")
                await asyncio.sleep(0.5 * attempt)

    raise FeedFetchError(f"Failed to fetch {url} after {retries} attempts: {last_error}")


async def download_feed(
    url: str,
    dest: Path,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = DEFAULT_RETRIES,
    client: Optional[httpx.AsyncClient] = None,
) -> Path:
    """
    Stream a feed to `dest`.

    The body is written to a temporary file next to `dest` first so a failed
    download never leaves a partial feed behind.
    """
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = dest.with_name(dest.name + ".tmp")

    last_error: Exception | None = None
    for attempt in range(1, retries + 1):
        own_client = client is None
        active = make_client(timeout) if own_client else client
        try:
            async with active.stream("GET", url) as response:
                response.raise_for_status()
                async with aiofiles.open(tmp_path, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        await f.write(chunk)
            tmp_path.replace(dest)
            logger.info(f"Downloaded {url} to {dest}")
            return dest
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            last_error = e
            tmp_path.unlink(missing_ok=True)
            if attempt < retries:
                logger.warning(f"Download of {url} failed (attempt {attempt}/{retries}): {e}. Retrying...")
                await asyncio.sleep(0.5 * attempt)
        finally:
            if own_client:
                await active.aclose()

    raise FeedFetchError(f"Failed to download {url} after {retries} attempts: {last_error}")
