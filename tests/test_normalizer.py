from __future__ import annotations

import pytest

from weathercache.models import LocationMode, Query, ReportKind, UnitSystem
from weathercache.normalizer import normalize


def _city(name: str, **kw) -> Query:
    return Query(location_mode=LocationMode.CITY, name=name, **kw)


def _coords(lat: float, lon: float, **kw) -> Query:
    return Query(location_mode=LocationMode.COORDS, lat=lat, lon=lon, **kw)


class TestCityKeys:
    def test_key_format(self):
        assert normalize(_city("London, GB")) == "current:city:london, gb:metric"

    @pytest.mark.parametrize("name", ["london, gb", "  LONDON, GB ", "London, Gb\t"])
    def test_case_and_whitespace_collapse(self, name):
        assert normalize(_city(name)) == normalize(_city("London, GB"))

    def test_inner_whitespace_is_significant(self):
        assert normalize(_city("New York")) != normalize(_city("NewYork"))


class TestCoordinateKeys:
    def test_rounds_to_two_places(self):
        a = _coords(51.50849, -0.12571)
        b = _coords(51.5085, -0.1257)
        assert normalize(a) == "current:coords:51.51,-0.13:metric"
        assert normalize(a) == normalize(b)

    def test_always_two_decimals(self):
        assert normalize(_coords(10, 20)) == "current:coords:10.00,20.00:metric"

    def test_nearby_fixes_share_a_key(self):
        assert normalize(_coords(48.8566, 2.3522)) == normalize(_coords(48.8581, 2.3549))

    def test_distinct_places_differ(self):
        assert normalize(_coords(48.85, 2.35)) != normalize(_coords(48.86, 2.35))

    def test_negative_zero_folds_to_zero(self):
        assert normalize(_coords(-0.001, 0.001)) == normalize(_coords(0.001, -0.001))
        assert normalize(_coords(-0.001, 0.001)) == "current:coords:0.00,0.00:metric"


class TestZipKeys:
    def test_trimmed(self):
        q = Query(location_mode=LocationMode.ZIP, postal_code=" 94040,us ")
        assert normalize(q) == "current:zip:94040,us:metric"

    def test_case_preserved(self):
        a = Query(location_mode=LocationMode.ZIP, postal_code="SW1A,GB")
        b = Query(location_mode=LocationMode.ZIP, postal_code="sw1a,gb")
        assert normalize(a) != normalize(b)


class TestKeyComponents:
    def test_units_in_key(self):
        metric = _city("Oslo", units=UnitSystem.METRIC)
        imperial = _city("Oslo", units=UnitSystem.IMPERIAL)
        assert normalize(imperial) == "current:city:oslo:imperial"
        assert normalize(metric) != normalize(imperial)

    def test_report_kind_in_key(self):
        forecast = _city("Oslo", kind=ReportKind.FORECAST)
        assert normalize(forecast) == "forecast:city:oslo:metric"

    def test_modes_never_collide(self):
        keys = {
            normalize(_city("94040")),
            normalize(Query(location_mode=LocationMode.ZIP, postal_code="94040")),
        }
        assert len(keys) == 2

    def test_deterministic(self):
        q = _coords(40.7128, -74.006, units=UnitSystem.IMPERIAL, kind=ReportKind.FORECAST)
        assert normalize(q) == normalize(q.model_copy())
