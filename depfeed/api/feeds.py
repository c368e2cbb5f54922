from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from depfeed.core.dependencies import get_repository
from depfeed.domain.entities import FeedDocument, FeedRepository
from depfeed.domain.errors import FeedFetchError, FeedNotFoundError, FeedParseError, VersionError
from depfeed.domain.validation import FeedValidator
from depfeed.services.checksums import ChecksumVerifier
from depfeed.services.dependencies import DependencyResolver
from depfeed.services.feed_fetcher import fetch_feed

logger = logging.getLogger(__name__)
router = APIRouter()


class ImportRequest(BaseModel):
    feed_id: str = Field(description="ID to store the feed under.")
    url: str = Field(description="URL of the DependencyControl feed to import.")


def _require_feed(repo: FeedRepository, feed_id: str) -> FeedDocument:
    doc = repo.get_feed(feed_id)
    if doc is None:
        raise HTTPException(status_code=404, detail="Feed not found")
    return doc


# ---------------------------------------------------------------------------
# Feeds
# ---------------------------------------------------------------------------

@router.get("/feeds")
async def list_feeds(repo: FeedRepository = Depends(get_repository)) -> dict:
    return {"Data": [doc.summary() for doc in repo.get_all_feeds()]}


@router.get("/feeds/{feed_id}")
async def get_feed(feed_id: str, repo: FeedRepository = Depends(get_repository)) -> Response:
    """
    Serve the feed exactly as it was stored.
    """
    doc = _require_feed(repo, feed_id)
    return Response(content=doc.raw, media_type="application/json")


@router.put("/feeds/{feed_id}")
async def put_feed(feed_id: str, request: Request, repo: FeedRepository = Depends(get_repository)) -> dict:
    raw = await request.body()
    try:
        doc = repo.db.save_feed(feed_id, raw)
    except FeedParseError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return {"Data": doc.summary()}


@router.delete("/feeds/{feed_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_feed(feed_id: str, repo: FeedRepository = Depends(get_repository)) -> Response:
    _require_feed(repo, feed_id)
    repo.db.delete_feed(feed_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/feeds/import")
async def import_feed(body: ImportRequest, repo: FeedRepository = Depends(get_repository)) -> dict:
    """
    Fetch a published feed and store it under `feed_id`.
    """
    config = repo.db.get_repository_config()
    try:
        raw = await fetch_feed(
            body.url,
            timeout=config.fetch_timeout_seconds,
            retries=config.fetch_retries,
        )
    except FeedFetchError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    try:
        doc = repo.db.save_feed(body.feed_id, raw)
    except FeedParseError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"Imported feed {body.feed_id} from {body.url}")
    return {"Data": doc.summary()}


@router.get("/feeds/{feed_id}/resolved")
async def get_resolved_feed(feed_id: str, repo: FeedRepository = Depends(get_repository)) -> dict:
    doc = _require_feed(repo, feed_id)
    return {"Data": doc.resolved()}


@router.get("/feeds/{feed_id}/validation")
async def get_validation(feed_id: str, repo: FeedRepository = Depends(get_repository)) -> dict:
    doc = _require_feed(repo, feed_id)
    return {"Data": doc.validate().to_payload()}


# ---------------------------------------------------------------------------
# Macros and modules
# ---------------------------------------------------------------------------

@router.get("/feeds/{feed_id}/scripts/{namespace}")
async def get_script(
    feed_id: str,
    namespace: str,
    channel: Optional[str] = Query(default=None),
    repo: FeedRepository = Depends(get_repository),
) -> dict:
    doc = _require_feed(repo, feed_id)
    try:
        return {"Data": doc.get_record(namespace, channel=channel)}
    except FeedNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/feeds/{feed_id}/scripts/{namespace}/changelog")
async def get_changelog(
    feed_id: str,
    namespace: str,
    since: Optional[str] = Query(default=None, description="Only list versions newer than this one."),
    repo: FeedRepository = Depends(get_repository),
) -> dict:
    doc = _require_feed(repo, feed_id)
    try:
        return {"Data": doc.changelog(namespace, since=since)}
    except FeedNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except VersionError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.post("/feeds/{feed_id}/checksums")
async def verify_checksums(
    feed_id: str,
    namespace: Optional[str] = Query(default=None),
    channel: Optional[str] = Query(default=None),
    repo: FeedRepository = Depends(get_repository),
) -> dict:
    doc = _require_feed(repo, feed_id)
    verifier = ChecksumVerifier(repo.db.get_repository_config())
    try:
        results = await verifier.verify(doc, namespace=namespace, channel=channel)
    except FeedNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "Data": [r.model_dump() for r in results],
        "Valid": all(r.status == "ok" for r in results),
    }


@router.get("/feeds/{feed_id}/dependencies")
async def get_dependencies(feed_id: str, repo: FeedRepository = Depends(get_repository)) -> dict:
    doc = _require_feed(repo, feed_id)
    resolver = DependencyResolver(repo.db.get_repository_config())
    results = await resolver.resolve(doc)
    return {"Data": [r.model_dump() for r in results]}


# ---------------------------------------------------------------------------
# Search and ad-hoc validation
# ---------------------------------------------------------------------------

@router.get("/search")
async def search(
    q: str = Query(description="Keyword matched against namespace, name, author and description."),
    match_type: Optional[str] = Query(default=None, alias="matchType"),
    repo: FeedRepository = Depends(get_repository),
) -> Response:
    results = repo.search(q, match_type)
    if not results:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return JSONResponse(status_code=status.HTTP_200_OK, content={"Data": results})


@router.post("/validate")
async def validate(request: Request, repo: FeedRepository = Depends(get_repository)) -> dict:
    """
    Validate a posted feed without storing it.
    """
    raw = await request.body()
    report = FeedValidator(repo.db.get_repository_config()).validate(raw)
    return {"Data": report.to_payload()}
