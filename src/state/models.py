from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from common.regions import get_default_region_profile


class Phase(str, Enum):
    """Where the user is in the auth -> browse -> cart -> order -> payment flow."""

    UNAUTH = "UNAUTH"
    AUTH_NO_STORE = "AUTH_NO_STORE"
    READY = "READY"
    CART_DIRTY = "CART_DIRTY"
    QUOTED = "QUOTED"
    ORDER_CREATED = "ORDER_CREATED"
    ORDER_PAID = "ORDER_PAID"
    ORDER_CANCELED = "ORDER_CANCELED"
    PAYMENT_PENDING = "PAYMENT_PENDING"


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class SessionConfig(_CamelModel):
    mode: Literal["dry-run", "live"] = "dry-run"
    json_output: bool = False
    region: str
    latitude: float
    longitude: float
    location_source: str = "default"
    store_pinned: bool = False


class AuthInfo(_CamelModel):
    user_id: str
    # Never written to the session document; see state.session_store.
    token: Optional[str] = None


def default_session() -> SessionConfig:
    region = get_default_region_profile()
    return SessionConfig(
        region=region.code,
        latitude=region.default_latitude,
        longitude=region.default_longitude,
    )


class AppState(_CamelModel):
    """
    Full mutable application snapshot owned by the shell.

    Notes
    - `phase` is not a field: it is always recomputed with `derive_phase`.
    - API payloads (stores, menu, cart lines, quote, order, payment) are kept
      as plain dicts; they are advisory snapshots, not validated beyond shape.
    - `cart_version` only increases. Use `bump_cart_version` after any cart
      mutation so a stale quote can never be submitted.
    """

    session: SessionConfig = Field(default_factory=default_session)
    auth: Optional[AuthInfo] = None
    selected_store: Optional[Dict[str, Any]] = None
    stores_cache: List[Dict[str, Any]] = Field(default_factory=list)
    menu_cache: List[Dict[str, Any]] = Field(default_factory=list)
    menu_cache_by_store: Dict[str, Any] = Field(default_factory=dict)
    cart: List[Dict[str, Any]] = Field(default_factory=list)
    cart_version: int = 0
    quote: Optional[Dict[str, Any]] = None
    pending_create_payload: Optional[Dict[str, Any]] = None
    order: Optional[Dict[str, Any]] = None
    payment: Optional[Dict[str, Any]] = None
    pending_login_phone: Optional[str] = None


def create_initial_state() -> AppState:
    return AppState()


def bump_cart_version(state: AppState) -> None:
    """Advance the cart version and drop artifacts computed for the old cart."""
    state.cart_version += 1
    state.quote = None
    state.pending_create_payload = None


def reset_for_store_switch(state: AppState) -> None:
    """Clear everything scoped to the previously selected store."""
    state.cart = []
    bump_cart_version(state)
    state.order = None
    state.payment = None


def derive_phase(state: AppState) -> Phase:
    """Project the current phase from state. First match wins."""
    if state.auth is None:
        return Phase.UNAUTH
    if state.selected_store is None:
        return Phase.AUTH_NO_STORE
    if state.payment is not None and state.payment.get("status") == "pending":
        return Phase.PAYMENT_PENDING
    if state.order is not None:
        status = state.order.get("status")
        if status == "paid":
            return Phase.ORDER_PAID
        if status == "canceled":
            return Phase.ORDER_CANCELED
        return Phase.ORDER_CREATED
    if state.quote is not None:
        return Phase.QUOTED
    if state.cart:
        return Phase.CART_DIRTY
    return Phase.READY


__all__ = [
    "AppState",
    "AuthInfo",
    "Phase",
    "SessionConfig",
    "bump_cart_version",
    "create_initial_state",
    "default_session",
    "derive_phase",
    "reset_for_store_switch",
]
