from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class GeoSample(BaseModel):
    """One timestamped position reading. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    speed_mps: Optional[float] = Field(default=None, ge=0)
    captured_at_ms: int


Route = List[GeoSample]


def route_from_docs(docs) -> Route:
    return [GeoSample.model_validate(d) for d in docs or []]


def route_to_docs(route: Route) -> list:
    return [s.model_dump() for s in route]
