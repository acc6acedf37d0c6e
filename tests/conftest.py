import sys
from pathlib import Path

import pytest

# Ensure the `zonescraper` package is importable when running pytest from the repository root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from zonescraper.models import Zone  # noqa: E402


@pytest.fixture
def zone_factory():
    def build(**overrides):
        values = {
            "id": "z1",
            "code": "NYC_UWS",
            "display_name": "Upper West Side",
            "latitude": 40.787,
            "longitude": -73.975,
            "radius_meters": 3000,
            "priority": 2,
            "search_terms": ("restaurant",),
            "cuisine_focus": (),
            "notes": "",
            "population": None,
            "city": "New York",
            "state": "NY",
            "country": "US",
        }
        values.update(overrides)
        return Zone(**values)

    return build
