import httpx
import logging
from typing import Any, Callable, Dict, List, Optional, TypeVar
from pydantic import ValidationError
from config import settings
from core import exceptions
from core.exceptions import OrderError, TransportUnavailable
from models.order import OrderStatus
from models.schemas import Actor, CartLine, OrderSnapshot
from services.order_store import normalize_order_payload

logger = logging.getLogger(__name__)

T = TypeVar("T")

_ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        exceptions.InvalidTransition,
        exceptions.PaymentRequired,
        exceptions.NothingToPrint,
        exceptions.StoreConflict,
        exceptions.TransportUnavailable,
        exceptions.OrderNotFound,
        exceptions.InvalidOrder,
    )
}

def _raise_for_error(response: httpx.Response) -> None:
    """Turn an error response back into the server-side exception"""
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = None
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, dict) and detail.get("code") in _ERRORS_BY_CODE:
        raise _ERRORS_BY_CODE[detail["code"]](detail.get("message", ""))
    if response.status_code >= 500:
        raise TransportUnavailable(f"Server error {response.status_code}")
    raise OrderError(f"Request failed with {response.status_code}: {response.text[:200]}")

class OrdersClient:
    """HTTP client for the order API, used by sync agents and the login cart sync"""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout if timeout is not None else settings.request_timeout,
            transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise TransportUnavailable(f"{method} {url} failed: {e!r}")
        _raise_for_error(response)
        try:
            data = response.json()
        except ValueError:
            raise TransportUnavailable(f"{method} {url} returned a non-JSON body")
        if not isinstance(data, dict):
            raise TransportUnavailable(f"{method} {url} returned {type(data).__name__}, expected an object")
        return data

    def _parse(self, url: str, parse: Callable[[Dict[str, Any]], T], data: Dict[str, Any]) -> T:
        """Build models from a response body; a malformed body counts as unreachable"""
        try:
            return parse(data)
        except (ValidationError, KeyError, TypeError, AttributeError) as e:
            raise TransportUnavailable(f"Malformed response from {url}: {e}")

    async def _fetch_orders(self, url: str) -> List[OrderSnapshot]:
        data = await self._request("GET", url)
        return self._parse(url, lambda d: [normalize_order_payload(o) for o in d.get("orders", [])], data)

    async def fetch_outlet_orders(self, outlet_id: str) -> List[OrderSnapshot]:
        return await self._fetch_orders(f"/orders/outlet/{outlet_id}")

    async def fetch_user_orders(self, user_id: str) -> List[OrderSnapshot]:
        return await self._fetch_orders(f"/orders/user/{user_id}")

    async def update_status(self, order_id: str, status: OrderStatus, actor: Optional[Actor] = None) -> OrderSnapshot:
        url = f"/orders/{order_id}/status"
        body = {"status": OrderStatus(status).value}
        if actor is not None:
            body["actor"] = actor.model_dump()
        data = await self._request("PATCH", url, json=body)
        return self._parse(url, lambda d: normalize_order_payload(d["order"]), data)

    async def fetch_cart(self, user_id: str) -> List[CartLine]:
        url = f"/cart/{user_id}"
        data = await self._request("GET", url)
        return self._parse(url, _cart_lines, data)

    async def push_cart_items(self, user_id: str, items: List[CartLine]) -> List[CartLine]:
        url = f"/cart/{user_id}/items"
        data = await self._request("POST", url, json={"items": [i.model_dump() for i in items]})
        return self._parse(url, _cart_lines, data)

def _cart_lines(data: Dict[str, Any]) -> List[CartLine]:
    return [CartLine.model_validate(item) for item in data.get("items", [])]
