"""Image search proxy route: keeps the search API key on the server."""

from fastapi import APIRouter, Depends, Query

from imagefy_backend.api.deps import get_image_search
from imagefy_backend.features.images.service import MAX_PER_PAGE, ImageSearchClient


router = APIRouter(tags=["images"])


@router.get("/search-images")
async def search_images(
    query: str = Query(..., min_length=1),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=MAX_PER_PAGE),
    client: ImageSearchClient = Depends(get_image_search),
):
    """
    Errors:
        422: Missing query
        502/504: Upstream failed or timed out
        503: Image search not configured
    """
    return await client.search(query, page=page, per_page=per_page)
