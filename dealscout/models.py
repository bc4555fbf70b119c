from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ShowType(str, Enum):
    ALL = "all"
    RESTAURANTS = "restaurants"
    DEALS = "deals"


class SortBy(str, Enum):
    RELEVANCE = "relevance"
    RATING = "rating"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class EntityType(str, Enum):
    RESTAURANT = "restaurant"
    DEAL = "deal"


class Coordinates(BaseModel):
    """WGS84 point. Immutable; NaN/inf and out-of-range values are rejected."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class FilterState(BaseModel):
    """What the user picked in the filter sheet, before it becomes a request.

    Cuisine and dietary filters only make sense for deals and the distance
    filter only for restaurants; the UI enforces that, nothing here does.
    """

    model_config = ConfigDict(validate_assignment=True)

    distance_km: Optional[float] = None
    cuisine_ids: set[int] = Field(default_factory=set)
    dietary_ids: set[int] = Field(default_factory=set)
    show_type: ShowType = ShowType.ALL
    sort_by: SortBy = SortBy.RELEVANCE
    query: str = ""


class WireModel(BaseModel):
    """Shape of data coming from the deals API (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


def _loose_float(value: Any) -> Optional[float]:
    # The API sends coordinates as numbers, numeric strings or empty strings.
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


class Located(WireModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def _parse_coordinate(cls, value: Any) -> Optional[float]:
        return _loose_float(value)


class Tag(WireModel):
    id: int
    name: str


class Partner(WireModel):
    id: int
    business_name: str = ""


class Restaurant(Located):
    id: int
    name: str
    description: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    phone: Optional[str] = None
    rating_avg: Optional[float] = None
    rating_count: Optional[int] = None
    image_url: Optional[str] = None
    is_bookmarked: Optional[bool] = None

    @property
    def rating(self) -> Optional[float]:
        return self.rating_avg


class DealRestaurant(Located):
    id: int
    name: str
    street_address: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    rating_avg: Optional[float] = None
    rating_count: Optional[int] = None
    image_url: Optional[str] = None


class Deal(WireModel):
    id: int
    title: str
    description: Optional[str] = None
    status: str = "active"
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    restaurant: DealRestaurant
    partner: Optional[Partner] = None
    cuisines: List[Tag] = Field(default_factory=list)
    dietary_preferences: List[Tag] = Field(default_factory=list)
    is_bookmarked: Optional[bool] = None
    created_at: Optional[str] = None

    @property
    def rating(self) -> Optional[float]:
        return self.restaurant.rating_avg


class Pagination(WireModel):
    page: int = 1
    limit: int = 20
    total: int = 0
    total_pages: int = 0


class SearchPagination(WireModel):
    restaurants: Optional[Pagination] = None
    deals: Optional[Pagination] = None


class SearchPayload(WireModel):
    restaurants: List[Restaurant] = Field(default_factory=list)
    deals: List[Deal] = Field(default_factory=list)
    pagination: SearchPagination = Field(default_factory=SearchPagination)


class SearchEnvelope(WireModel):
    success: bool
    data: Optional[SearchPayload] = None
    error: Optional[str] = None
    message: Optional[str] = None


EntityT = TypeVar("EntityT", Restaurant, Deal)


class RankedResult(BaseModel, Generic[EntityT]):
    entity: EntityT
    distance_km: Optional[float] = None
    is_bookmarked: bool = False

    @property
    def id(self) -> int:
        return self.entity.id


class SearchResultSet(BaseModel):
    restaurants: List[RankedResult[Restaurant]] = Field(default_factory=list)
    deals: List[RankedResult[Deal]] = Field(default_factory=list)
    pagination: SearchPagination = Field(default_factory=SearchPagination)
    # True when served from cache because the network call failed.
    stale: bool = False

    @property
    def results(self) -> list:
        return [*self.restaurants, *self.deals]

    def __len__(self) -> int:
        return len(self.restaurants) + len(self.deals)


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


class SearchRequestDescriptor(BaseModel):
    """Normalized search request; doubles as the cache key."""

    model_config = ConfigDict(frozen=True)

    query: Optional[str] = None
    show_type: ShowType = ShowType.ALL
    sort_by: SortBy = SortBy.RELEVANCE
    sort_order: SortOrder = SortOrder.DESC
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    distance_km: Optional[float] = None
    cuisine_ids: Tuple[int, ...] = ()
    dietary_ids: Tuple[int, ...] = ()
    page: int = 1
    limit: int = 20
    has_active_deals: bool = False

    def to_params(self) -> Dict[str, str]:
        params: Dict[str, str] = {
            "showType": self.show_type.value,
            "sortBy": self.sort_by.value,
            "sortOrder": self.sort_order.value,
            "page": str(self.page),
            "limit": str(self.limit),
        }
        if self.query:
            params["query"] = self.query
        if self.latitude is not None and self.longitude is not None:
            params["latitude"] = _number(self.latitude)
            params["longitude"] = _number(self.longitude)
        if self.distance_km is not None:
            params["distance"] = _number(self.distance_km)
        if self.cuisine_ids:
            params["cuisineIds"] = ",".join(str(i) for i in self.cuisine_ids)
        if self.dietary_ids:
            params["dietaryPreferenceIds"] = ",".join(str(i) for i in self.dietary_ids)
        if self.has_active_deals:
            params["hasActiveDeals"] = "true"
        return params

    def canonical(self) -> str:
        return json.dumps(self.to_params(), sort_keys=True, separators=(",", ":"))

    def cache_key(self) -> str:
        return "search:" + hashlib.sha256(self.canonical().encode("utf-8")).hexdigest()


class BookmarkEvent(WireModel):
    model_config = ConfigDict(frozen=True)

    entity_id: int
    entity_type: EntityType
    is_bookmarked: bool
