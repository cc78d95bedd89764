"""Geodesic distance helpers built on pyproj."""

from __future__ import annotations

from typing import Callable, TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from pyproj import Geod

from .config import GEODESIC_ELLIPSOID

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .models import Point

DistanceFn = Callable[["Point", "Point"], float]
MetricArray = NDArray[np.float64]

_GEOD = Geod(ellps=GEODESIC_ELLIPSOID)


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the ellipsoidal distance in metres between two coordinates."""

    _, _, dist = _GEOD.inv(lon1, lat1, lon2, lat2)
    return float(dist)


def geodesic_distance(first: "Point", second: "Point") -> float:
    """Distance between two points; 0.0 when either lacks usable coordinates."""

    if not (first.has_coordinates and second.has_coordinates):
        return 0.0
    return distance_m(
        float(first.latitude),  # type: ignore[arg-type]
        float(first.longitude),  # type: ignore[arg-type]
        float(second.latitude),  # type: ignore[arg-type]
        float(second.longitude),  # type: ignore[arg-type]
    )


def pairwise_distances(
    lats1: MetricArray,
    lons1: MetricArray,
    lats2: MetricArray,
    lons2: MetricArray,
) -> MetricArray:
    """Vectorised distance for aligned coordinate arrays.

    Rows where any coordinate is NaN yield 0.0, matching ``geodesic_distance``.
    """

    valid = ~(np.isnan(lats1) | np.isnan(lons1) | np.isnan(lats2) | np.isnan(lons2))
    out = np.zeros(lats1.shape[0], dtype=float)
    if valid.any():
        _, _, dist = _GEOD.inv(lons1[valid], lats1[valid], lons2[valid], lats2[valid])
        out[valid] = dist
    return out


__all__ = ["DistanceFn", "distance_m", "geodesic_distance", "pairwise_distances"]
