from __future__ import annotations

import time
from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog

from .regions import RegionProfile


logger = structlog.get_logger(__name__)

Envelope = Dict[str, Any]

_STATIC_HEADERS: Dict[str, str] = {
    "ua": "Dart/2.12 (dart:io)",
    "debug": "1",
    "os": "web",
    "devicelanguage": "en",
    "screenwidth": "1280",
    "screenheight": "720",
    "devicebrand": "Web",
    "devicemodel": "Browser",
    "uuid": "null",
    "cid": "null",
    "avc": "320",
    "clientip": "",
    "colordepth": "",
    "browserinfo": '{"javaenabled":false,"javascriptenabled":true,"language":"en","useragent":"Mozilla/5.0"}',
}


class ChageeError(RuntimeError):
    """Base error for the ordering API client."""


class ChageeTransportError(ChageeError):
    """The request never produced an HTTP response (DNS, connect, timeout)."""


class ChageeApiError(ChageeError):
    """The API answered with a non-zero errcode where success was required."""

    def __init__(self, message: str, *, errcode: Optional[str] = None) -> None:
        super().__init__(message)
        self.errcode = errcode


def build_headers(region: RegionProfile, token: Optional[str]) -> Dict[str, str]:
    headers = dict(_STATIC_HEADERS)
    headers.update(
        {
            "language": region.language,
            "region": region.code,
            "channel": region.channel_code,
            "apv": region.apv,
            "aid": region.aid,
            "timezoneoffset": region.timezone_offset,
            "devicetimezoneregion": region.device_time_zone_region,
            "accept-language": region.accept_language,
            "authorization": token or "null",
        }
    )
    return headers


class ChageeClient:
    """
    Thin client for the tea-ordering mobile API.

    Notes
    - Every call returns the response envelope `{errcode, errmsg, data}` as a
      dict; `errcode == "0"` means success (see `is_api_ok`).
    - The token and region are read through callables on each request, so a
      login or region switch applies to the next call without rebuilding.
    - No retries: a transport failure raises `ChageeTransportError`.
    """

    def __init__(
        self,
        get_token: Callable[[], Optional[str]],
        get_region: Callable[[], RegionProfile],
        *,
        timeout: float = 15.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._get_token = get_token
        self._get_region = get_region
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "ChageeClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --------------- Auth ---------------
    def send_verify_code(self, phone: str, *, send_type: int = 1) -> Envelope:
        return self.post("/api/user-client/customer/sendVerifyCode", {"sendType": send_type, "sendObj": phone})

    def login_or_register(self, phone: str, code: str, *, phone_code: Optional[str] = None) -> Envelope:
        region = self._get_region()
        return self.post(
            "/api/user-client/customer/loginOrRegister",
            {"mobile": phone, "phoneCode": phone_code or region.default_phone_code, "code": code},
        )

    def get_customer_info(self) -> Envelope:
        return self.get("/api/user-client/customer/info")

    # --------------- Stores & menu ---------------
    def list_stores(
        self,
        *,
        latitude: float,
        longitude: float,
        user_id: Optional[str] = None,
        page_num: int = 1,
        page_size: int = 20,
    ) -> Envelope:
        region = self._get_region()
        return self.post(
            "/api/navigation/store/list",
            {
                "latitude": latitude,
                "longitude": longitude,
                "pageNum": page_num,
                "pageSize": page_size,
                "channelCode": region.channel_code,
                "userId": user_id or "",
                "isTakeaway": region.is_takeaway,
            },
        )

    def get_store_menu(self, store_no: str) -> Envelope:
        region = self._get_region()
        return self.post(
            "/api/navigation/goods/storeGoodsMenu",
            {"storeNo": store_no, "saleType": str(region.sale_type), "saleChannel": str(region.sale_channel)},
        )

    def get_goods_detail(self, spu_id: str, store_no: str) -> Envelope:
        region = self._get_region()
        return self.post(
            "/api/navigation/goods/detail",
            {
                "spuId": spu_id,
                "storeNo": store_no,
                "saleType": str(region.sale_type),
                "saleChannel": str(region.sale_channel),
            },
        )

    # --------------- Cart & orders ---------------
    def cart_change(self, user_id: str, sku_list: List[Dict[str, Any]]) -> Envelope:
        region = self._get_region()
        return self.post(
            "/api/navigation/goods/shoppingCart/change",
            {
                "userId": user_id,
                "skuList": sku_list,
                "saleType": region.sale_type,
                "saleChannel": region.sale_channel,
                "inAppDeliveryGray": False,
            },
        )

    def order_price(self, payload: Dict[str, Any]) -> Envelope:
        return self.post("/api/navigation/order/price", payload)

    def order_create(self, payload: Dict[str, Any]) -> Envelope:
        return self.post("/api/navigation/order/create", payload)

    def order_cancel(self, user_id: str, order_no: str) -> Envelope:
        return self.post("/api/navigation/order/cancel", {"userId": user_id, "orderNo": order_no})

    def pay_result_list(self, *, user_id: str, store_no: str, order_no: str) -> Envelope:
        return self.post(
            "/api/navigation/payment/payResultList",
            {"userId": user_id, "storeNo": store_no, "orderNo": order_no},
        )

    # --------------- Internal ---------------
    def post(self, path: str, body: Optional[Dict[str, Any]] = None) -> Envelope:
        return self._request("POST", path, body)

    def get(self, path: str) -> Envelope:
        return self._request("GET", path, None)

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]]) -> Envelope:
        region = self._get_region()
        url = path if path.startswith("http") else f"{region.api_base.rstrip('/')}{path}"
        headers = build_headers(region, self._get_token())

        logger.debug("api_request", method=method, url=url)
        start = time.monotonic()
        try:
            if method == "POST":
                resp = self._client.post(url, headers=headers, json=body if body is not None else {})
            else:
                resp = self._client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise ChageeTransportError(f"{method} {url} failed: {exc}") from exc
        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug("api_response", method=method, url=url, status=resp.status_code, elapsed_ms=elapsed_ms)

        return _to_envelope(resp)


def _to_envelope(resp: httpx.Response) -> Envelope:
    text = resp.text
    if not text:
        return {"errcode": str(resp.status_code), "errmsg": "", "data": None}
    try:
        parsed = resp.json()
    except ValueError:
        return {"errcode": str(resp.status_code), "errmsg": text[:500]}
    if isinstance(parsed, dict):
        if parsed.get("errcode") is None:
            parsed["errcode"] = str(resp.status_code)
        return parsed
    return {"errcode": str(resp.status_code), "errmsg": "Unexpected response", "data": parsed}


def is_api_ok(envelope: Envelope) -> bool:
    return str(envelope.get("errcode", "")) == "0"


def require_ok(envelope: Envelope, what: str) -> Any:
    """Return `data` from a successful envelope, else raise ChageeApiError."""
    if not is_api_ok(envelope):
        errcode = str(envelope.get("errcode", ""))
        errmsg = envelope.get("errmsg") or "API error"
        raise ChageeApiError(f"{what} failed: {errmsg} (errcode={errcode})", errcode=errcode)
    return envelope.get("data")


def extract_token(envelope: Envelope) -> Optional[str]:
    data = envelope.get("data")
    if not isinstance(data, dict):
        return None
    for key in ("token", "accessToken", "authToken"):
        candidate = data.get(key)
        if isinstance(candidate, str) and candidate:
            return candidate
    return None


def extract_user_id(envelope: Envelope) -> Optional[str]:
    data = envelope.get("data")
    if not isinstance(data, dict):
        return None
    for key in ("userId", "uid", "id"):
        candidate = data.get(key)
        if isinstance(candidate, str) and candidate:
            return candidate
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return str(candidate)
    return None


__all__ = [
    "ChageeApiError",
    "ChageeClient",
    "ChageeError",
    "ChageeTransportError",
    "build_headers",
    "extract_token",
    "extract_user_id",
    "is_api_ok",
    "require_ok",
]
