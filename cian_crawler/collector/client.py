"""Typed client for the CIAN map-search API behind the challenge gate."""
from __future__ import annotations

import logging
from typing import List, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..antibot.gate import ChallengeGate
from ..errors import ResponseDecodeError, UnexpectedStatusError
from ..models import (
    Cluster,
    ClustersRequest,
    ClustersResponse,
    GeoBounds,
    ListingRecord,
    OffersRequest,
    OffersResponse,
    SearchQuery,
)

CLUSTERS_PATH = "/search-offers-index-map/v1/get-clusters-for-map/"
OFFERS_PATH = "/search-offers/v1/get-offers-by-ids-desktop/"
MAX_OFFERS_PER_REQUEST = 28
MAP_ZOOM = 15

LOGGER = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _decode(response: httpx.Response, model: Type[M]) -> M:
    if response.status_code != 200:
        raise UnexpectedStatusError(response.status_code, response.text, str(response.request.url))
    try:
        return model.model_validate_json(response.content)
    except ValidationError as exc:
        raise ResponseDecodeError(
            f"can't parse response body: {exc.error_count()} error(s), {response.text[:200]}"
        ) from exc


class CianClient:
    """Issue cluster and offer queries for one search through a shared gate."""

    def __init__(self, gate: ChallengeGate, query: SearchQuery) -> None:
        self.gate = gate
        self.query = query

    async def get_clusters(self, bounds: GeoBounds) -> List[Cluster]:
        """Return map clusters found inside ``bounds``."""
        body = ClustersRequest(
            zoom=MAP_ZOOM,
            bbox=[bounds.to_cian()],
            jsonQuery=self.query.to_json_query(),
        )
        response = await self.gate.request(
            "POST", CLUSTERS_PATH, json=body.model_dump(mode="json", by_alias=True)
        )
        clusters = _decode(response, ClustersResponse).filtered
        LOGGER.debug("Cell %s: %d clusters", bounds, len(clusters))
        return clusters

    async def get_offers(self, ids: Sequence[int]) -> List[ListingRecord]:
        """Return listing records for at most 28 ``ids``."""
        if len(ids) > MAX_OFFERS_PER_REQUEST:
            raise ValueError(
                f"at most {MAX_OFFERS_PER_REQUEST} offer ids per request, got {len(ids)}"
            )
        body = OffersRequest(cianOfferIds=list(ids), jsonQuery=self.query.to_json_query())
        response = await self.gate.request(
            "POST", OFFERS_PATH, json=body.model_dump(mode="json", by_alias=True)
        )
        offers = _decode(response, OffersResponse).offers_serialized
        LOGGER.debug("Fetched %d offers for %d ids", len(offers), len(ids))
        return offers
