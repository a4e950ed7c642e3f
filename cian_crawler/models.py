"""Pydantic models for CIAN map-search payloads and listing records."""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Scalar = Union[bool, int, float, str]


class _CianModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _null_as_default(cls, data: Any) -> Any:
        # JSON null falls back to the field default instead of failing.
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class Coordinates(_CianModel):
    lat: float
    lng: float


class CianBounds(_CianModel):
    """Bounding box in the shape the CIAN map API expects."""

    top_left: Coordinates = Field(alias="topLeft")
    bottom_right: Coordinates = Field(alias="bottomRight")


class GeoBounds(BaseModel):
    """Immutable geographic bounding box (WGS84 degrees)."""

    model_config = ConfigDict(frozen=True)

    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    @property
    def width(self) -> float:
        return self.max_lng - self.min_lng

    @property
    def height(self) -> float:
        return self.max_lat - self.min_lat

    def to_cian(self) -> CianBounds:
        return CianBounds(
            topLeft=Coordinates(lat=self.max_lat, lng=self.min_lng),
            bottomRight=Coordinates(lat=self.min_lat, lng=self.max_lng),
        )


class Cluster(_CianModel):
    """Server-side aggregation bucket returned by the map endpoint."""

    coordinates: Optional[Coordinates] = None
    geohash: str = ""
    count: int = 0
    min_price: Optional[float] = Field(default=None, alias="minPrice")
    max_price: Optional[float] = Field(default=None, alias="maxPrice")
    subdomain: str = ""
    cluster_offer_ids: List[int] = Field(default_factory=list, alias="clusterOfferIds")


class Address(_CianModel):
    full_name: str = Field(default="", alias="fullName")
    geo_type: str = Field(default="", alias="geoType")


class Geo(_CianModel):
    address: List[Address] = Field(default_factory=list)


class BargainTerms(_CianModel):
    price_rur: Optional[float] = Field(default=None, alias="priceRur")


class ListingRecord(_CianModel):
    """Listing fields needed downstream; everything else is dropped."""

    geo: Geo = Field(default_factory=Geo)
    category: str = ""
    rooms_count: Optional[int] = Field(default=None, alias="roomsCount")
    total_area: Optional[str] = Field(default=None, alias="totalArea")
    bargain_terms: BargainTerms = Field(default_factory=BargainTerms, alias="bargainTerms")

    @field_validator("total_area", mode="before")
    @classmethod
    def _area_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def price(self) -> Optional[float]:
        return self.bargain_terms.price_rur

    @property
    def total_area_value(self) -> float:
        """Parse ``totalArea``; raises ``ValueError`` when it is not numeric."""
        if self.total_area is None:
            raise ValueError("totalArea is missing")
        return float(self.total_area)


# -- jsonQuery filters --------------------------------------------------------


class TermFilter(BaseModel):
    type: Literal["term"] = "term"
    value: Scalar


class TermsFilter(BaseModel):
    type: Literal["terms"] = "terms"
    value: List[Scalar]


class RangeValue(BaseModel):
    gte: Optional[Union[int, float]] = None
    lte: Optional[Union[int, float]] = None


class RangeFilter(BaseModel):
    type: Literal["range"] = "range"
    value: RangeValue


class RawFilter(BaseModel):
    """Filter with a type this client does not know; passed through as is."""

    type: str
    value: Any = None


FilterItem = Union[TermFilter, TermsFilter, RangeFilter, RawFilter]

_FILTER_TYPES: Dict[str, type] = {
    "term": TermFilter,
    "terms": TermsFilter,
    "range": RangeFilter,
}


def parse_filter(data: Any) -> FilterItem:
    """Build the tagged filter model matching ``data['type']``."""
    if isinstance(data, BaseModel):
        return data  # type: ignore[return-value]
    if not isinstance(data, dict) or "type" not in data:
        raise ValueError(f"filter must be a mapping with 'type' and 'value': {data!r}")
    model = _FILTER_TYPES.get(data["type"], RawFilter)
    return model.model_validate(data)


class SearchQuery(BaseModel):
    """Search type discriminator plus opaque filter terms."""

    search_type: str
    filters: Dict[str, FilterItem] = Field(default_factory=dict)

    @field_validator("filters", mode="before")
    @classmethod
    def _parse_filters(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ValueError("filters must be a mapping")
        return {key: parse_filter(item) for key, item in value.items()}

    def to_json_query(self) -> Dict[str, Any]:
        query: Dict[str, Any] = {
            key: item.model_dump(mode="json", exclude_none=True)
            for key, item in self.filters.items()
        }
        query["_type"] = self.search_type
        return query


# -- request / response bodies ------------------------------------------------


class ClustersRequest(_CianModel):
    zoom: int = 15
    bbox: List[CianBounds]
    json_query: Dict[str, Any] = Field(alias="jsonQuery")


class ClustersResponse(_CianModel):
    filtered: List[Cluster] = Field(default_factory=list)


class OffersRequest(_CianModel):
    cian_offer_ids: List[int] = Field(alias="cianOfferIds")
    json_query: Dict[str, Any] = Field(alias="jsonQuery")


class OffersResponse(_CianModel):
    offers_serialized: List[ListingRecord] = Field(default_factory=list, alias="offersSerialized")
