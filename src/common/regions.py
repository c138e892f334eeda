from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


DEFAULT_REGION_CODE = "SG"


class RegionProfile(BaseModel):
    """
    Per-region API profile: endpoint, locale headers and order channel constants.

    Custom profiles in `regions.json` use the camelCase field names
    (e.g. "apiBase", "defaultPhoneCode").
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    code: str
    name: str
    api_base: str
    country: str
    default_phone_code: str
    default_latitude: float
    default_longitude: float
    language: str
    accept_language: str
    timezone_offset: str
    device_time_zone_region: str
    time_zone: str
    currency_symbol: str
    currency_code: str
    channel_code: str
    store_channel: str
    sale_type: int
    sale_channel: int
    trade_channel: str
    source: str
    delivery_type: int
    business_type: int
    user_type: int
    app_id: str
    aid: str
    apv: str
    is_takeaway: bool


_DEFAULT_PROFILE = RegionProfile(
    code=DEFAULT_REGION_CODE,
    name="Singapore",
    api_base="https://api-sea.chagee.com",
    country="SG",
    default_phone_code="+65",
    default_latitude=1.3521,
    default_longitude=103.8198,
    language="en-us",
    accept_language="en-US",
    timezone_offset="480",
    device_time_zone_region="Asia/Singapore",
    time_zone="Asia/Singapore",
    currency_symbol="$",
    currency_code="SGD",
    channel_code="H5",
    store_channel="H5",
    sale_type=1,
    sale_channel=8,
    trade_channel="10",
    source="10",
    delivery_type=1,
    business_type=1,
    user_type=3,
    app_id="wx4f4f6e46fc890118",
    aid="100001",
    apv="3.22.0",
    is_takeaway=False,
)

_BUILTIN_PROFILES = (_DEFAULT_PROFILE,)


def normalize_region_code(code: str) -> str:
    return code.strip().upper()


def get_default_region_profile() -> RegionProfile:
    return _DEFAULT_PROFILE


def get_builtin_region_profiles() -> list[RegionProfile]:
    return list(_BUILTIN_PROFILES)


def build_region_profile(overrides: Dict[str, Any], base: Optional[RegionProfile] = None) -> RegionProfile:
    """Overlay `overrides` (snake_case keys, must include "code") on `base`.

    When the override does not name a country, the region code is used.
    """
    fallback = base or _DEFAULT_PROFILE
    code = normalize_region_code(str(overrides["code"]))
    merged = fallback.model_dump()
    merged.update({k: v for k, v in overrides.items() if v is not None})
    merged["code"] = code
    if "country" not in overrides:
        merged["country"] = code or fallback.country
    return RegionProfile.model_validate(merged)


def build_region_registry(custom_profiles: Iterable[Dict[str, Any]]) -> Dict[str, RegionProfile]:
    """Return built-in profiles keyed by code, with custom overrides merged on top.

    An unknown code starts from the default profile, renamed to the code itself.
    """
    registry: Dict[str, RegionProfile] = {p.code: p for p in _BUILTIN_PROFILES}
    for overrides in custom_profiles:
        code = normalize_region_code(str(overrides.get("code") or ""))
        if not code:
            continue
        base = registry.get(code) or build_region_profile({"code": code, "name": code, "country": code})
        registry[code] = build_region_profile({**overrides, "code": code}, base)
    return registry


__all__ = [
    "DEFAULT_REGION_CODE",
    "RegionProfile",
    "build_region_profile",
    "build_region_registry",
    "get_builtin_region_profiles",
    "get_default_region_profile",
    "normalize_region_code",
]
