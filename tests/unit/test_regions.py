from __future__ import annotations

import json

from common.region_store import load_custom_region_profiles, map_region_entry
from common.regions import build_region_profile, build_region_registry, get_default_region_profile, normalize_region_code


def test_normalize_region_code():
    assert normalize_region_code("  my ") == "MY"


def test_build_profile_overlays_base_and_defaults_country_to_code():
    profile = build_region_profile({"code": "my", "name": "Malaysia", "currency_code": "MYR"})
    assert profile.code == "MY"
    assert profile.country == "MY"
    assert profile.currency_code == "MYR"
    assert profile.api_base == get_default_region_profile().api_base


def test_registry_merges_custom_over_builtin():
    registry = build_region_registry(
        [{"code": "sg", "apv": "9.9.9"}, {"code": "th", "api_base": "https://th.example"}, {"code": " "}]
    )
    assert set(registry) == {"SG", "TH"}
    assert registry["SG"].apv == "9.9.9"
    assert registry["SG"].name == "Singapore"
    assert registry["TH"].name == "TH"
    assert registry["TH"].api_base == "https://th.example"


def test_map_region_entry_coerces_leniently():
    mapped = map_region_entry(
        {
            "code": "MY",
            "defaultLatitude": "3.139",
            "saleType": "2",
            "isTakeaway": "true",
            "currencyCode": "",
            "apiBase": 42,
            "bogus": "x",
        }
    )
    assert mapped == {"code": "MY", "default_latitude": 3.139, "sale_type": 2, "is_takeaway": True}
    assert map_region_entry({"name": "no code"}) is None
    assert map_region_entry("MY") is None


def test_load_custom_profiles_accepts_array_or_wrapper(tmp_path):
    path = tmp_path / "regions.json"
    assert load_custom_region_profiles(path) == []

    path.write_text(json.dumps({"regions": [{"code": "MY"}, {"nope": 1}]}))
    assert load_custom_region_profiles(path) == [{"code": "MY"}]

    path.write_text(json.dumps([{"code": "TH", "name": "Thailand"}]))
    assert load_custom_region_profiles(path) == [{"code": "TH", "name": "Thailand"}]

    path.write_text("not json")
    assert load_custom_region_profiles(path) == []


def test_load_custom_profiles_tolerates_undecodable_file(tmp_path):
    path = tmp_path / "regions.json"
    path.write_bytes(b"\xff\xfe[]")
    assert load_custom_region_profiles(path) == []
