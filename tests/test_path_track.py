"""Tests for the travelled path."""
from captur.geo.location import LocationFix
from captur.geo.path_track import LocationPath


def test_history_then_live_fixes():
    path = LocationPath()
    path.extend([LocationFix(latitude=1.0, longitude=2.0), LocationFix(latitude=float("nan"), longitude=0.0)])
    path.add_fix(LocationFix(latitude=3.0, longitude=4.0))
    path.add_fix(LocationFix(latitude=100.0, longitude=4.0))

    assert path.coordinates == [(2.0, 1.0), (4.0, 3.0)]
    feature = path.to_geojson()
    assert feature["geometry"] == {"type": "LineString", "coordinates": [[2.0, 1.0], [4.0, 3.0]]}
