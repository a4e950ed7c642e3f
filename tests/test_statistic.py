from cian_crawler.models import Address, ListingRecord
from cian_crawler.statistic import flat_statistic, location_string


def _record(price, area, rooms=2, category="flatSale", city="Москва", district="Арбат"):
    return ListingRecord.model_validate(
        {
            "category": category,
            "roomsCount": rooms,
            "totalArea": area,
            "bargainTerms": {"priceRur": price},
            "geo": {
                "address": [
                    {"fullName": city, "geoType": "location"},
                    {"fullName": district, "geoType": "district"},
                    {"fullName": "Новый Арбат", "geoType": "street"},
                ]
            },
        }
    )


def test_location_string_keeps_city_and_district():
    addresses = [
        Address(fullName="Москва", geoType="location"),
        Address(fullName="Хамовники", geoType="district"),
        Address(fullName="Остоженка", geoType="street"),
        Address(fullName="12", geoType="house"),
    ]
    assert location_string(addresses) == "Москва, Хамовники"


def test_groups_use_lower_median_of_price_per_meter():
    records = [
        _record(10_000_000, "50"),
        _record(12_000_000, "50"),
        _record(9_000_000, "30", rooms=1),
        _record(20_000_000, "50"),
        _record(11_000_000, "50"),
    ]

    rows = flat_statistic(records)

    assert [(row.rooms_count, row.offers) for row in rows] == [(1, 1), (2, 4)]
    two_rooms = rows[1]
    assert two_rooms.location == "Москва, Арбат"
    assert two_rooms.median_price == 220_000
    assert rows[0].median_price == 300_000


def test_unusable_records_are_skipped():
    records = [
        _record(10_000_000, "50"),
        _record(10_000_000, "n/a"),
        _record(10_000_000, "0"),
        _record(None, "40"),
        ListingRecord(category="flatSale", roomsCount=2),
    ]
    rows = flat_statistic(records)
    assert len(rows) == 1
    assert rows[0].offers == 1


def test_missing_rooms_count_is_grouped_as_zero():
    records = [_record(6_000_000, "20", rooms=None)]
    assert flat_statistic(records)[0].rooms_count == 0


def test_rows_are_sorted_and_serializable():
    rows = flat_statistic(
        [
            _record(10_000_000, "50", category="flatSale", district="Тверской"),
            _record(10_000_000, "50", category="flatSale", district="Арбат"),
            _record(50_000, "50", category="flatRent"),
        ]
    )
    assert [(row.category, row.location) for row in rows] == [
        ("flatRent", "Москва, Арбат"),
        ("flatSale", "Москва, Арбат"),
        ("flatSale", "Москва, Тверской"),
    ]
    assert rows[0].to_dict() == {
        "location": "Москва, Арбат",
        "category": "flatRent",
        "rooms_count": 2,
        "median_price": 1000,
        "offers": 1,
    }
