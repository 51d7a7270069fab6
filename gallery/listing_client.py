"""Client for the paged image-listing API (picsum ``/v2/list``)."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from gallery.errors import ListingError
from gallery.schemas import ImageRecord
from gallery.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)
LIST_ENDPOINT = "/v2/list"


async def fetch_image_page(
    *,
    page: int,
    limit: int | None = None,
    settings: Settings | None = None,
    client: httpx.AsyncClient | None = None,
) -> list[ImageRecord]:
    """Fetch one page of image records.

    Parameters
    ----------
    page:
        1-based page number.
    limit:
        Page size; defaults to the configured ``GALLERY_PAGE_SIZE``.
    settings:
        Optional settings override; defaults to the global settings singleton.
    client:
        Optional ``httpx.AsyncClient`` (useful for tests). When omitted, a client
        is created for the duration of this call.
    """

    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")

    cfg = settings or get_settings()
    page_size = limit or cfg.listing.page_size
    endpoint = f"{cfg.listing.base_url.rstrip('/')}{LIST_ENDPOINT}"
    params = {"page": page, "limit": page_size}

    owns_client = client is None
    http_client = client or httpx.AsyncClient(timeout=cfg.listing.timeout_seconds, follow_redirects=True)
    try:
        LOGGER.debug("Fetching listing page %s (limit=%s)", page, page_size)
        response = await http_client.get(endpoint, params=params)
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPStatusError as exc:
        raise ListingError(f"listing request failed: status={exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise ListingError(f"listing request failed: {exc}") from exc
    except ValueError as exc:
        raise ListingError("listing response was not valid JSON") from exc
    finally:
        if owns_client:
            await http_client.aclose()

    return _parse_records(payload)


def _parse_records(payload: Any) -> list[ImageRecord]:
    if not isinstance(payload, list):
        raise ListingError("listing response must be a JSON array")

    records: list[ImageRecord] = []
    for row in payload:
        try:
            records.append(ImageRecord.model_validate(row))
        except ValidationError as exc:
            LOGGER.warning("Skipping malformed listing row %r: %s", row, exc)
    return records
