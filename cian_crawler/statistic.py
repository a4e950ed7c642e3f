"""Median price per square meter grouped by category, location and rooms."""
from __future__ import annotations

import logging
import statistics
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

from .models import Address, ListingRecord

LOGGER = logging.getLogger(__name__)

LOCATION_GEO_TYPES = ("location", "district")


@dataclass(frozen=True)
class FlatStatistic:
    location: str
    category: str
    rooms_count: int
    median_price: float
    offers: int

    def to_dict(self) -> dict:
        return asdict(self)


def location_string(addresses: Sequence[Address]) -> str:
    """Join the city/district part of an address."""
    return ", ".join(
        address.full_name for address in addresses if address.geo_type in LOCATION_GEO_TYPES
    )


def flat_statistic(records: Iterable[ListingRecord]) -> List[FlatStatistic]:
    """Group records and compute the lower median of price per meter per group."""
    grouped: Dict[Tuple[str, str, int], List[float]] = defaultdict(list)
    skipped = 0
    for record in records:
        try:
            area = record.total_area_value
        except ValueError as exc:
            LOGGER.warning("can't parse flat area %r: %s", record.total_area, exc)
            skipped += 1
            continue
        if area <= 0 or record.price is None:
            skipped += 1
            continue
        key = (record.category, location_string(record.geo.address), record.rooms_count or 0)
        grouped[key].append(record.price / area)

    if skipped:
        LOGGER.info("Skipped %d records without usable area or price", skipped)

    result = [
        FlatStatistic(
            location=location,
            category=category,
            rooms_count=rooms,
            median_price=statistics.median_low(values),
            offers=len(values),
        )
        for (category, location, rooms), values in grouped.items()
    ]
    result.sort(key=lambda item: (item.category, item.location, item.rooms_count))
    return result
