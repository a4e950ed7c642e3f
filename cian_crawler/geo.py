"""Split a search polygon into a grid of bounded-size query cells."""
from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Sequence

from pyproj import Transformer
from shapely.errors import GEOSException, ShapelyError
from shapely.geometry import box, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union
from shapely.prepared import prep

from .errors import GeometryError
from .models import GeoBounds

LOGGER = logging.getLogger(__name__)

# Web Mercator is only defined up to this latitude.
MAX_MERCATOR_LAT = 85.05112878

_TO_MERCATOR = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)
_TO_WGS84 = Transformer.from_crs("EPSG:3857", "EPSG:4326", always_xy=True)


def load_geometry(geojson: str | dict) -> BaseGeometry:
    """Parse GeoJSON (geometry, Feature or FeatureCollection) into a shapely geometry."""
    try:
        data: Any = json.loads(geojson) if isinstance(geojson, str) else geojson
    except ValueError as exc:
        raise GeometryError(f"can't parse geojson: {exc}") from exc
    if not isinstance(data, dict):
        raise GeometryError("can't parse geojson: top-level value must be an object")

    kind = data.get("type")
    try:
        if kind == "FeatureCollection":
            parts = [shape(feature["geometry"]) for feature in data.get("features") or []]
            geometry = unary_union(parts) if parts else None
        elif kind == "Feature":
            geometry = shape(data["geometry"]) if data.get("geometry") else None
        else:
            geometry = shape(data)
    except (
        KeyError, IndexError, TypeError, ValueError, AttributeError, ShapelyError, GEOSException
    ) as exc:
        raise GeometryError(f"can't parse geojson: {exc}") from exc

    if geometry is None or geometry.is_empty:
        raise GeometryError("geojson geometry is empty")

    min_lng, min_lat, max_lng, max_lat = geometry.bounds
    if min_lng < -180 or max_lng > 180 or min_lat < -MAX_MERCATOR_LAT or max_lat > MAX_MERCATOR_LAT:
        raise GeometryError(
            f"geometry bounds {geometry.bounds} are outside the projectable WGS84 range"
        )
    return geometry


def _cell_geometry(bounds: GeoBounds) -> BaseGeometry:
    return box(bounds.min_lng, bounds.min_lat, bounds.max_lng, bounds.max_lat)


def _grid_edges(start: float, stop: float, cell_size: float) -> List[float]:
    """Equal-width edges from ``start`` to ``stop``, each step <= ``cell_size``."""
    count = max(1, math.ceil(abs(stop - start) / cell_size))
    step = (stop - start) / count
    edges = [start + step * i for i in range(count)]
    edges.append(stop)
    return edges


def _lng_edges(xs: Sequence[float], min_lng: float, max_lng: float) -> List[float]:
    lngs = [_TO_WGS84.transform(x, 0.0)[0] for x in xs]
    lngs[0], lngs[-1] = min_lng, max_lng
    return lngs


def _lat_edges(ys: Sequence[float], min_lat: float, max_lat: float) -> List[float]:
    lats = [_TO_WGS84.transform(0.0, y)[1] for y in ys]
    lats[0], lats[-1] = max_lat, min_lat
    return lats


def partition(geometry: BaseGeometry, cell_size_meters: float) -> List[GeoBounds]:
    """Cover ``geometry`` with cells no larger than ``cell_size_meters`` in Web Mercator.

    Parameters
    ----------
    geometry : BaseGeometry
        Search area in WGS84 (lng/lat) coordinates
    cell_size_meters : float
        Maximum cell side in projected meters

    Returns
    -------
    list[GeoBounds]
        Cells intersecting the geometry, ordered top-to-bottom, left-to-right
    """
    if not cell_size_meters or cell_size_meters <= 0 or math.isnan(cell_size_meters):
        raise GeometryError(f"cell size must be positive, got {cell_size_meters}")
    if geometry.is_empty:
        raise GeometryError("geometry is empty")

    min_lng, min_lat, max_lng, max_lat = geometry.bounds
    if min_lng == max_lng or min_lat == max_lat:
        LOGGER.debug("Degenerate geometry bounds %s, using a single cell", geometry.bounds)
        return [GeoBounds(min_lat=min_lat, min_lng=min_lng, max_lat=max_lat, max_lng=max_lng)]

    min_x, min_y = _TO_MERCATOR.transform(min_lng, min_lat)
    max_x, max_y = _TO_MERCATOR.transform(max_lng, max_lat)
    if not all(math.isfinite(value) for value in (min_x, min_y, max_x, max_y)):
        raise GeometryError(f"can't project bounds {geometry.bounds} to Web Mercator")

    lngs = _lng_edges(_grid_edges(min_x, max_x, cell_size_meters), min_lng, max_lng)
    # Rows run from the top edge down.
    lats = _lat_edges(_grid_edges(max_y, min_y, cell_size_meters), min_lat, max_lat)

    prepared = prep(geometry)
    cells: List[GeoBounds] = []
    candidates = 0
    for top, bottom in zip(lats, lats[1:]):
        for left, right in zip(lngs, lngs[1:]):
            candidates += 1
            cell = GeoBounds(min_lat=bottom, min_lng=left, max_lat=top, max_lng=right)
            if prepared.intersects(_cell_geometry(cell)):
                cells.append(cell)

    LOGGER.info(
        "Partitioned area into %d cells (%d candidates, cell size %.0fm)",
        len(cells),
        candidates,
        cell_size_meters,
    )
    return cells


def partition_geojson(geojson: str | dict, cell_size_meters: float) -> List[GeoBounds]:
    """Parse GeoJSON and partition it in one step."""
    return partition(load_geometry(geojson), cell_size_meters)
