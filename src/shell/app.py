from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, TextIO

import click
import structlog

from common.chagee import ChageeClient, ChageeError, extract_token, extract_user_id, require_ok
from common.config import StoragePaths
from common.format import format_table, mask_phone, to_num
from common.parser import parse_bool, parse_key_value_tokens, parse_num, tokenize
from common.region_store import load_custom_region_profiles
from common.regions import RegionProfile, build_region_registry, get_default_region_profile, normalize_region_code
from state.models import (
    AppState,
    AuthInfo,
    Phase,
    bump_cart_version,
    create_initial_state,
    derive_phase,
    reset_for_store_switch,
)
from state.session_store import SessionStore, SessionStoreError
from state.token_store import CredentialStoreError


logger = structlog.get_logger(__name__)

HELP_TEXT = """Commands
  status                          Show phase, store, cart and order
  mode <dry-run|live>             Dry-run never creates or cancels real orders
  json <on|off>                   Toggle JSON output
  region list | region set <CODE>
  location <lat> <lng>            Override store search coordinates
  login send <phone>              Request a verification code
  login verify <code> [phone=..]  Log in with the code
  logout
  stores [page=N]                 List nearby stores
  store use <storeNo>             Select a store (clears cart and order)
  menu                            Show the selected store's menu
  cart show | cart add <skuId> [qty=N] | cart remove <skuId> | cart clear
  quote                           Price the current cart
  order create | order status | order cancel
                                  Live create/cancel need --yolo
  exit | quit"""

_PAID_STATUSES = {"paid", "success", "succeeded", "1"}


class CommandError(Exception):
    """A command was malformed or not allowed in the current phase."""


class App:
    """
    Owns the live `AppState` for one process.

    Lifecycle: `init()` once (load persisted state, merge over defaults),
    `execute(line)` per command, `shutdown()` before exit. Commands that
    change state save it before returning.
    Live order create and cancel are refused unless `yolo` is set.
    """

    def __init__(
        self,
        *,
        paths: Optional[StoragePaths] = None,
        store: Optional[SessionStore] = None,
        api: Optional[ChageeClient] = None,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
        yolo: bool = False,
    ) -> None:
        self._paths = paths or StoragePaths.from_env()
        self._store = store or SessionStore.from_paths(self._paths)
        self._out = out
        self._err = err
        self._yolo = yolo
        self.state: AppState = create_initial_state()
        self._regions: Dict[str, RegionProfile] = build_region_registry([])
        self._api = api or ChageeClient(self._token, self.region)
        self._commands: Dict[str, Callable[[List[str], Dict[str, str]], None]] = {
            "help": self._cmd_help,
            "status": self._cmd_status,
            "mode": self._cmd_mode,
            "json": self._cmd_json,
            "region": self._cmd_region,
            "location": self._cmd_location,
            "login": self._cmd_login,
            "logout": self._cmd_logout,
            "stores": self._cmd_stores,
            "store": self._cmd_store,
            "menu": self._cmd_menu,
            "cart": self._cmd_cart,
            "quote": self._cmd_quote,
            "order": self._cmd_order,
        }

    # -------- Lifecycle --------
    def init(self) -> List[str]:
        """Load persisted state. Returns (and prints) load warnings."""
        self._regions = build_region_registry(load_custom_region_profiles(self._paths.region_file))
        result = self._store.load()
        warnings = list(result.warnings)
        self.state = result.state or create_initial_state()
        if self.state.session.region not in self._regions:
            warnings.append(f"unknown region {self.state.session.region}; using default")
            default = get_default_region_profile()
            session = self.state.session
            session.region = default.code
            if session.location_source == "default":
                session.latitude = default.default_latitude
                session.longitude = default.default_longitude
        for message in warnings:
            click.echo(f"warning: {message}", file=self._err, err=True)
        return warnings

    def execute(self, line: str) -> bool:
        """Run one command line. Returns True when the shell should exit."""
        tokens = tokenize(line)
        if not tokens:
            return False
        name = tokens[0].lstrip("/").lower()
        if name in ("exit", "quit"):
            return True
        handler = self._commands.get(name)
        if handler is None:
            self._error(f"unknown command: {name} (try `help`)")
            return False
        args, opts = parse_key_value_tokens(tokens[1:])
        try:
            handler(args, opts)
        except (CommandError, ChageeError, SessionStoreError, CredentialStoreError) as exc:
            logger.debug("command_failed", command=name, error=str(exc))
            self._error(str(exc))
        return False

    def shutdown(self) -> None:
        try:
            self._checkpoint()
        finally:
            self._api.close()

    # -------- Accessors --------
    @property
    def phase(self) -> Phase:
        return derive_phase(self.state)

    def region(self) -> RegionProfile:
        return self._regions.get(self.state.session.region) or get_default_region_profile()

    def _token(self) -> Optional[str]:
        return self.state.auth.token if self.state.auth else None

    # -------- Output --------
    def _emit(self, data: Any, text: str) -> None:
        if self.state.session.json_output:
            click.echo(json.dumps(data, ensure_ascii=False, default=str), file=self._out)
        else:
            click.echo(text, file=self._out)

    def _error(self, message: str) -> None:
        click.echo(f"error: {message}", file=self._err, err=True)

    def _checkpoint(self) -> None:
        self._store.save(self.state)

    def _require_phase(self, *allowed: Phase) -> None:
        phase = self.phase
        if phase not in allowed:
            names = ", ".join(p.value for p in allowed)
            raise CommandError(f"not allowed in phase {phase.value} (needs {names})")

    def _require_live_ordering(self) -> None:
        if not self._yolo:
            raise CommandError("live ordering is disabled; restart with --yolo")

    def _require_auth(self) -> AuthInfo:
        if self.state.auth is None:
            raise CommandError("not logged in (use `login send <phone>`)")
        return self.state.auth

    def _require_store(self) -> Dict[str, Any]:
        self._require_auth()
        if self.state.selected_store is None:
            raise CommandError("no store selected (use `stores` then `store use <storeNo>`)")
        return self.state.selected_store

    # -------- Session commands --------
    def _cmd_help(self, args: List[str], opts: Dict[str, str]) -> None:
        click.echo(HELP_TEXT, file=self._out)

    def _cmd_status(self, args: List[str], opts: Dict[str, str]) -> None:
        s = self.state
        store = s.selected_store or {}
        data = {
            "phase": self.phase.value,
            "mode": s.session.mode,
            "region": s.session.region,
            "userId": s.auth.user_id if s.auth else None,
            "store": store.get("storeNo"),
            "cartItems": len(s.cart),
            "cartVersion": s.cart_version,
            "quoted": s.quote is not None,
            "order": (s.order or {}).get("orderNo"),
            "orderStatus": (s.order or {}).get("status"),
            "paymentStatus": (s.payment or {}).get("status"),
            "sessionFile": str(self._store.path),
        }
        lines = [f"{k:<14}{'-' if v is None else v}" for k, v in data.items()]
        self._emit(data, "\n".join(lines))

    def _cmd_mode(self, args: List[str], opts: Dict[str, str]) -> None:
        if not args or args[0] not in ("dry-run", "live"):
            raise CommandError("usage: mode <dry-run|live>")
        self.state.session.mode = args[0]
        self._checkpoint()
        self._emit({"mode": args[0]}, f"mode: {args[0]}")

    def _cmd_json(self, args: List[str], opts: Dict[str, str]) -> None:
        if not args:
            raise CommandError("usage: json <on|off>")
        self.state.session.json_output = parse_bool(args[0], self.state.session.json_output)
        self._checkpoint()
        self._emit({"jsonOutput": self.state.session.json_output}, f"json: {'on' if self.state.session.json_output else 'off'}")

    def _cmd_region(self, args: List[str], opts: Dict[str, str]) -> None:
        sub = args[0] if args else "list"
        if sub == "list":
            rows = [[p.code, p.name, p.api_base, p.currency_code] for p in self._regions.values()]
            data = [p.model_dump(by_alias=True) for p in self._regions.values()]
            self._emit(data, format_table(["CODE", "NAME", "API", "CURRENCY"], rows))
            return
        if sub != "set" or len(args) < 2:
            raise CommandError("usage: region list | region set <CODE>")
        code = normalize_region_code(args[1])
        profile = self._regions.get(code)
        if profile is None:
            raise CommandError(f"unknown region: {code}")
        session = self.state.session
        if code != session.region:
            session.region = code
            if session.location_source == "default":
                session.latitude = profile.default_latitude
                session.longitude = profile.default_longitude
            self.state.selected_store = None
            session.store_pinned = False
            self.state.stores_cache = []
            self.state.menu_cache = []
            reset_for_store_switch(self.state)
            self._checkpoint()
        self._emit({"region": code}, f"region: {code} ({profile.name})")

    def _cmd_location(self, args: List[str], opts: Dict[str, str]) -> None:
        if len(args) < 2:
            raise CommandError("usage: location <lat> <lng>")
        lat = parse_num(args[0], float("nan"))
        lng = parse_num(args[1], float("nan"))
        if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
            raise CommandError("latitude/longitude out of range")
        session = self.state.session
        session.latitude = lat
        session.longitude = lng
        session.location_source = "manual"
        self._checkpoint()
        self._emit({"latitude": lat, "longitude": lng}, f"location: {lat}, {lng}")

    # -------- Auth commands --------
    def _cmd_login(self, args: List[str], opts: Dict[str, str]) -> None:
        sub = args[0] if args else ""
        if sub == "send" and len(args) >= 2:
            phone = args[1]
            require_ok(self._api.send_verify_code(phone), "sendVerifyCode")
            self.state.pending_login_phone = phone
            self._checkpoint()
            self._emit({"sent": True, "phone": mask_phone(phone)}, f"verification code sent to {mask_phone(phone)}")
            return
        if sub == "verify" and len(args) >= 2:
            phone = opts.get("phone") or self.state.pending_login_phone
            if not phone:
                raise CommandError("no pending phone (use `login send <phone>` or phone=...)")
            envelope = self._api.login_or_register(phone, args[1], phone_code=opts.get("phoneCode"))
            require_ok(envelope, "loginOrRegister")
            token = extract_token(envelope)
            user_id = extract_user_id(envelope)
            if not token or not user_id:
                raise CommandError("login response did not include a token and user id")
            previous = self.state.auth
            if previous is not None and previous.user_id != user_id:
                self._store.credentials.clear(previous.user_id)
            self.state.auth = AuthInfo(user_id=user_id, token=token)
            self.state.pending_login_phone = None
            self._checkpoint()
            logger.info("login_succeeded", user_id=user_id, phone=mask_phone(phone))
            self._emit({"userId": user_id}, f"logged in as {user_id}")
            return
        raise CommandError("usage: login send <phone> | login verify <code> [phone=...]")

    def _cmd_logout(self, args: List[str], opts: Dict[str, str]) -> None:
        auth = self.state.auth
        if auth is not None:
            self._store.credentials.clear(auth.user_id)
        self.state.auth = None
        self.state.pending_login_phone = None
        self._checkpoint()
        self._emit({"loggedOut": True}, "logged out")

    # -------- Store & menu commands --------
    def _cmd_stores(self, args: List[str], opts: Dict[str, str]) -> None:
        session = self.state.session
        page = int(parse_num(opts.get("page"), 1)) or 1
        user_id = self.state.auth.user_id if self.state.auth else None
        data = require_ok(
            self._api.list_stores(latitude=session.latitude, longitude=session.longitude, user_id=user_id, page_num=page),
            "store list",
        )
        stores = _records(data, "list", "records", "storeList")
        self.state.stores_cache = stores
        self._checkpoint()
        rows = [
            [str(s.get("storeNo", "")), str(s.get("storeName", "")), _fmt_distance(s.get("distance"))]
            for s in stores
        ]
        self._emit(stores, format_table(["STORE", "NAME", "DISTANCE"], rows))

    def _cmd_store(self, args: List[str], opts: Dict[str, str]) -> None:
        if len(args) < 2 or args[0] != "use":
            raise CommandError("usage: store use <storeNo>")
        self._require_auth()
        store_no = args[1]
        store = next((s for s in self.state.stores_cache if str(s.get("storeNo")) == store_no), None)
        if store is None:
            raise CommandError(f"store {store_no} not in the last store list (run `stores`)")
        current = self.state.selected_store or {}
        if str(current.get("storeNo")) != store_no:
            reset_for_store_switch(self.state)
            self.state.selected_store = store
        self.state.session.store_pinned = True
        self._checkpoint()
        self._emit(store, f"store: {store_no} {store.get('storeName', '')}".rstrip())

    def _cmd_menu(self, args: List[str], opts: Dict[str, str]) -> None:
        store = self._require_store()
        store_no = str(store.get("storeNo"))
        data = require_ok(self._api.get_store_menu(store_no), "store menu")
        items = _flatten_menu(data)
        self.state.menu_cache = items
        self.state.menu_cache_by_store[store_no] = items
        self._checkpoint()
        rows = [[str(i.get("skuId", "")), str(i.get("name", "")), _fmt_price(i.get("price"))] for i in items]
        self._emit(items, format_table(["SKU", "NAME", "PRICE"], rows))

    # -------- Cart & order commands --------
    def _cmd_cart(self, args: List[str], opts: Dict[str, str]) -> None:
        sub = args[0] if args else "show"
        if sub == "show":
            rows = [[str(l.get("skuId")), str(l.get("name", "")), str(l.get("qty"))] for l in self.state.cart]
            self._emit(
                {"cart": self.state.cart, "cartVersion": self.state.cart_version},
                format_table(["SKU", "NAME", "QTY"], rows) + f"\ncart version {self.state.cart_version}",
            )
            return

        self._require_store()
        if sub == "add" and len(args) >= 2:
            qty = int(parse_num(opts.get("qty"), 1))
            if qty <= 0:
                raise CommandError("qty must be positive")
            self._add_line(args[1], qty)
        elif sub == "remove" and len(args) >= 2:
            remaining = [l for l in self.state.cart if str(l.get("skuId")) != args[1]]
            if len(remaining) == len(self.state.cart):
                raise CommandError(f"{args[1]} is not in the cart")
            self.state.cart = remaining
        elif sub == "clear":
            self.state.cart = []
        else:
            raise CommandError("usage: cart show | cart add <skuId> [qty=N] | cart remove <skuId> | cart clear")
        bump_cart_version(self.state)
        self._checkpoint()
        self._emit({"cart": self.state.cart, "cartVersion": self.state.cart_version}, f"cart: {len(self.state.cart)} line(s)")

    def _add_line(self, sku_id: str, qty: int) -> None:
        for line in self.state.cart:
            if str(line.get("skuId")) == sku_id:
                line["qty"] = int(line.get("qty", 0)) + qty
                return
        item = next((i for i in self.state.menu_cache if str(i.get("skuId")) == sku_id), None)
        if item is None:
            raise CommandError(f"unknown sku {sku_id} (run `menu`)")
        self.state.cart.append(
            {"skuId": sku_id, "spuId": item.get("spuId"), "name": item.get("name"), "price": item.get("price"), "qty": qty}
        )

    def _create_payload(self) -> Dict[str, Any]:
        auth = self._require_auth()
        store = self._require_store()
        region = self.region()
        return {
            "userId": auth.user_id,
            "storeNo": store.get("storeNo"),
            "channelCode": region.channel_code,
            "saleType": region.sale_type,
            "saleChannel": region.sale_channel,
            "tradeChannel": region.trade_channel,
            "source": region.source,
            "deliveryType": region.delivery_type,
            "businessType": region.business_type,
            "userType": region.user_type,
            "skuList": [
                {"skuId": l.get("skuId"), "spuId": l.get("spuId"), "num": l.get("qty")} for l in self.state.cart
            ],
        }

    def _cmd_quote(self, args: List[str], opts: Dict[str, str]) -> None:
        self._require_phase(Phase.CART_DIRTY, Phase.QUOTED)
        payload = self._create_payload()
        data = require_ok(self._api.order_price(payload), "order price")
        self.state.quote = {"cartVersion": self.state.cart_version, "price": data}
        self.state.pending_create_payload = payload
        self._checkpoint()
        total = data.get("payAmount") if isinstance(data, dict) else None
        self._emit(self.state.quote, f"quote for cart version {self.state.cart_version}: {_fmt_price(total)}")

    def _cmd_order(self, args: List[str], opts: Dict[str, str]) -> None:
        sub = args[0] if args else "status"
        if sub == "create":
            self._order_create()
        elif sub == "status":
            self._order_status()
        elif sub == "cancel":
            self._order_cancel()
        else:
            raise CommandError("usage: order create | order status | order cancel")

    def _order_create(self) -> None:
        self._require_phase(Phase.QUOTED)
        quote = self.state.quote or {}
        payload = self.state.pending_create_payload
        if payload is None or quote.get("cartVersion") != self.state.cart_version:
            raise CommandError("quote is stale; run `quote` again")
        if self.state.session.mode == "dry-run":
            self._emit({"dryRun": True, "payload": payload}, "dry-run: would create order\n" + json.dumps(payload, indent=2))
            return
        self._require_live_ordering()
        data = require_ok(self._api.order_create(payload), "order create")
        order_no = data.get("orderNo") if isinstance(data, dict) else None
        if not order_no:
            raise CommandError("order create response did not include an orderNo")
        self.state.order = {"orderNo": str(order_no), "status": "created", "cartVersion": self.state.cart_version}
        self.state.payment = {"status": "pending"}
        self.state.pending_create_payload = None
        self._checkpoint()
        self._emit(self.state.order, f"order {order_no} created; payment pending")

    def _order_status(self) -> None:
        order = self.state.order
        if order is None:
            raise CommandError("no order")
        auth = self._require_auth()
        store = self._require_store()
        if order.get("status") == "created":
            data = require_ok(
                self._api.pay_result_list(user_id=auth.user_id, store_no=str(store.get("storeNo")), order_no=str(order.get("orderNo"))),
                "pay result",
            )
            if _is_paid(data):
                self.state.order = {**order, "status": "paid"}
                self.state.payment = {**(self.state.payment or {}), "status": "paid"}
                self._checkpoint()
        self._emit(
            {"order": self.state.order, "payment": self.state.payment, "phase": self.phase.value},
            f"order {order.get('orderNo')}: {self.phase.value}",
        )

    def _order_cancel(self) -> None:
        order = self.state.order
        if order is None or order.get("status") != "created":
            raise CommandError("no open order to cancel")
        auth = self._require_auth()
        if self.state.session.mode == "dry-run":
            self._emit({"dryRun": True, "orderNo": order.get("orderNo")}, f"dry-run: would cancel order {order.get('orderNo')}")
            return
        self._require_live_ordering()
        require_ok(self._api.order_cancel(auth.user_id, str(order.get("orderNo"))), "order cancel")
        self.state.order = {**order, "status": "canceled"}
        self.state.payment = None
        self._checkpoint()
        self._emit(self.state.order, f"order {order.get('orderNo')} canceled")


def _records(data: Any, *keys: str) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        return [d for d in data if isinstance(d, dict)]
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if isinstance(value, list):
                return [d for d in value if isinstance(d, dict)]
    return []


def _flatten_menu(data: Any) -> List[Dict[str, Any]]:
    """Flatten category -> goods -> skus into one list of orderable items."""
    items: List[Dict[str, Any]] = []
    for category in _records(data, "categoryList", "menuList", "list"):
        for goods in _records(category.get("spuList") or category.get("goodsList") or [], "list"):
            skus = _records(goods.get("skuList") or [], "list") or [goods]
            for sku in skus:
                sku_id = sku.get("skuId") or goods.get("skuId") or goods.get("spuId")
                if sku_id is None:
                    continue
                items.append(
                    {
                        "skuId": str(sku_id),
                        "spuId": goods.get("spuId"),
                        "name": goods.get("spuName") or goods.get("name") or sku.get("skuName"),
                        "price": sku.get("price", goods.get("price")),
                        "category": category.get("categoryName") or category.get("name"),
                    }
                )
    return items


def _is_paid(data: Any) -> bool:
    for result in _records(data, "list", "payResultList"):
        status = str(result.get("payStatus", result.get("status", ""))).lower()
        if status in _PAID_STATUSES:
            return True
    return False


def _fmt_price(value: Any) -> str:
    n = to_num(value)
    return "-" if n is None else f"{n:.2f}"


def _fmt_distance(value: Any) -> str:
    n = to_num(value)
    return "-" if n is None else f"{n:.0f}m"


__all__ = ["App", "CommandError", "HELP_TEXT"]
