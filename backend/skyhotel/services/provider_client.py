"""Hotel provider client — adapter for the supplier's room search and booking API."""

import hashlib
import logging
import random
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

import httpx

from skyhotel.config import settings
from skyhotel.errors import ProviderRejected, ProviderTransient
from skyhotel.models.enums import ExecutionStatus

logger = logging.getLogger(__name__)

# Provider order states -> our execution states
ORDER_STATE_MAP = {
    "WAIT_CONFIRM": ExecutionStatus.WAIT_CONFIRM,
    "CONFIRMED": ExecutionStatus.ORDERED,
    "PAID": ExecutionStatus.DONE,
    "CHECKED_IN": ExecutionStatus.DONE,
    "COMPLETED": ExecutionStatus.DONE,
    "CANCELLED": ExecutionStatus.CANCELLED,
    "REJECTED": ExecutionStatus.FAILED,
}

MOCK_ROOM_TYPES = [
    ("1001", "Standard Queen", 1.0),
    ("1002", "Standard Twin", 1.05),
    ("1003", "Deluxe King", 1.35),
    ("1004", "Executive Suite", 2.1),
]


@dataclass
class RoomRate:
    room_type_id: str
    room_type: str
    rate_code: str
    price: Decimal
    available: bool

    def to_dict(self) -> dict:
        d = asdict(self)
        d["price"] = float(self.price)
        return d


@dataclass(frozen=True)
class SubmitRequest:
    """Everything the provider needs to place one split item; built before the call."""

    client_reference: str
    chain_id: str
    room_type: str
    room_count: int
    rate_code: str | None
    check_in: date
    check_out: date
    amount: Decimal
    customer_name: str
    contact_phone: str | None
    account_phone: str


@dataclass(frozen=True)
class SubmitResult:
    provider_order_id: str
    confirmed: bool
    awaiting_payment: bool = False
    payment_link: str | None = None
    detail_url: str | None = None

    @property
    def execution_status(self) -> ExecutionStatus:
        if not self.confirmed:
            return ExecutionStatus.WAIT_CONFIRM
        if self.awaiting_payment:
            return ExecutionStatus.ORDERED
        return ExecutionStatus.DONE


@dataclass(frozen=True)
class ProviderOrderStatus:
    execution_status: ExecutionStatus
    paid: bool


class HotelProviderClient:
    """Thin wrapper over the supplier API. Runs in mock mode when no base URL is set."""

    def __init__(self):
        self._client: httpx.AsyncClient | None = None
        self._use_mock = not settings.provider_base_url
        self._mock_orders: dict[str, dict] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=settings.provider_base_url,
                timeout=settings.provider_timeout_seconds,
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _headers(self, account_phone: str | None = None) -> dict[str, str]:
        headers = {
            "Accept": "*/*",
            "Content-Type": "application/json",
            "At-Platform-Type": settings.provider_platform_type,
            "At-Client-Id": settings.provider_client_id,
            "At-App-Version": settings.provider_app_version,
            "At-Channel-Id": settings.provider_channel_id,
            "At-Access-Token": settings.provider_access_token,
        }
        if account_phone:
            headers["At-Account"] = account_phone
        return headers

    async def _post(self, path: str, payload: dict, account_phone: str | None = None) -> dict:
        """POST and unwrap the `{retcode, retmsg, result}` envelope."""
        client = await self._get_client()
        try:
            resp = await client.post(path, json=payload, headers=self._headers(account_phone))
        except httpx.TimeoutException as e:
            logger.warning(f"Provider {path} timed out")
            raise ProviderTransient(f"Provider call {path} timed out") from e
        except httpx.RequestError as e:
            logger.warning(f"Provider {path} request error: {e}")
            raise ProviderTransient(f"Provider call {path} failed ({type(e).__name__})") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            logger.warning(f"Provider {path} returned HTTP {resp.status_code}")
            raise ProviderTransient(f"Provider call {path} returned HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError:
            data = {}

        if resp.status_code >= 400 or data.get("retcode") != 0:
            message = data.get("retmsg") or f"Provider call {path} was rejected"
            logger.info(f"Provider {path} rejected: {message}")
            raise ProviderRejected(str(message)[:200])

        return data.get("result") or {}

    # --- Search ---

    async def search(self, chain_id: str, check_in: date, check_out: date) -> list[RoomRate]:
        """Rooms and rates for a hotel and stay, cheapest first."""
        if self._use_mock:
            return self._mock_search(chain_id, check_in, check_out)

        result = await self._post(
            "/hotel/roomsAndRates",
            {"chainId": chain_id, "start": check_in.isoformat(), "end": check_out.isoformat()},
        )
        rates = []
        for room in result.get("rooms", []):
            for rate in room.get("rates", []):
                rates.append(RoomRate(
                    room_type_id=str(room.get("roomTypeId", "")),
                    room_type=room.get("roomTypeName", ""),
                    rate_code=str(rate.get("rateCode", "")),
                    price=Decimal(str(rate.get("price") or 0)),
                    available=bool(rate.get("available")),
                ))
        return sorted(rates, key=lambda r: r.price)

    # --- Booking ---

    async def submit(self, request: SubmitRequest) -> SubmitResult:
        if self._use_mock:
            return self._mock_submit(request)

        calculate_payload = {
            "chainId": request.chain_id,
            "roomType": request.room_type,
            "roomCount": request.room_count,
            "rateCode": request.rate_code or "",
            "start": request.check_in.isoformat(),
            "end": request.check_out.isoformat(),
            "mobile": request.contact_phone or "",
            "checkInPersons": request.customer_name,
        }
        calculated = await self._post("/order/calculateOrderV2", calculate_payload, request.account_phone)
        added = await self._post(
            "/order/addAppOrder",
            {
                **calculate_payload,
                "repeatToken": str(calculated.get("repeatToken", "")),
                "orderAmount": float(calculated.get("amount") or request.amount),
                "clientReference": request.client_reference,
                "isPointPayAppChannel": "1",
            },
            request.account_phone,
        )
        order_id = added.get("orderId")
        if not order_id:
            raise ProviderRejected("Provider accepted the order without an order id")

        state = ORDER_STATE_MAP.get(added.get("orderState", "WAIT_CONFIRM"), ExecutionStatus.WAIT_CONFIRM)
        return SubmitResult(
            provider_order_id=str(order_id),
            confirmed=state in (ExecutionStatus.ORDERED, ExecutionStatus.DONE),
            awaiting_payment=state == ExecutionStatus.ORDERED,
            detail_url=self._detail_url(str(order_id)),
        )

    async def find_order(self, client_reference: str) -> str | None:
        """Provider order id placed under our reference, or None if the provider has none."""
        if self._use_mock:
            for order_id, order in self._mock_orders.items():
                if order["client_reference"] == client_reference:
                    return order_id
            return None

        result = await self._post("/order/queryByClientReference", {"clientReference": client_reference})
        order_id = result.get("orderId")
        return str(order_id) if order_id else None

    async def refresh_status(self, provider_order_id: str) -> ProviderOrderStatus:
        if self._use_mock:
            order = self._mock_orders.get(provider_order_id)
            if order is None:
                raise ProviderRejected(f"Unknown order {provider_order_id}")
            return ProviderOrderStatus(execution_status=order["state"], paid=order["paid"])

        result = await self._post("/order/detail", {"orderId": provider_order_id})
        state = ORDER_STATE_MAP.get(result.get("orderState", ""), ExecutionStatus.WAIT_CONFIRM)
        return ProviderOrderStatus(execution_status=state, paid=result.get("payState") == "PAID")

    async def cancel(self, provider_order_id: str) -> bool:
        if self._use_mock:
            order = self._mock_orders.get(provider_order_id)
            if order is None:
                return False
            order["state"] = ExecutionStatus.CANCELLED
            return True

        result = await self._post("/order/cancel", {"orderId": provider_order_id})
        return bool(result.get("cancelled"))

    async def payment_link(self, provider_order_id: str) -> str:
        if self._use_mock:
            return f"https://pay.mock.skyhotel.local/cashier/{provider_order_id}"

        result = await self._post(
            "/pay/createPayOrder",
            {"orderNo": provider_order_id, "source": "order", "busType": "room_order"},
        )
        link = result.get("payUrl")
        if not link:
            raise ProviderRejected("Provider returned no payment link")
        return link

    async def detail_link(self, provider_order_id: str) -> str:
        return self._detail_url(provider_order_id)

    @staticmethod
    def _detail_url(provider_order_id: str) -> str:
        base = settings.provider_base_url or "https://orders.mock.skyhotel.local"
        return f"{base.rstrip('/')}/order/detail?orderId={provider_order_id}"

    # --- Mock data generation for demo mode ---

    def _mock_search(self, chain_id: str, check_in: date, check_out: date) -> list[RoomRate]:
        # Prices drift hourly but are stable within the hour
        hour_bucket = datetime.now(timezone.utc).strftime("%Y%m%d%H")
        seed_str = f"{chain_id}{check_in.isoformat()}{check_out.isoformat()}{hour_bucket}"
        seed = int(hashlib.md5(seed_str.encode()).hexdigest()[:8], 16)
        rng = random.Random(seed)

        nights = max((check_out - check_in).days, 1)
        base = rng.randint(280, 900)
        rates = []
        for room_type_id, name, factor in MOCK_ROOM_TYPES:
            price = Decimal(str(round(base * factor * rng.uniform(0.85, 1.2), 0))) * nights
            rates.append(RoomRate(
                room_type_id=room_type_id,
                room_type=name,
                rate_code=f"BAR{room_type_id}",
                price=price,
                available=rng.random() > 0.2,
            ))
        return sorted(rates, key=lambda r: r.price)

    def _mock_submit(self, request: SubmitRequest) -> SubmitResult:
        digest = hashlib.md5(request.client_reference.encode()).hexdigest()[:10].upper()
        order_id = f"AT{digest}"
        self._mock_orders[order_id] = {
            "client_reference": request.client_reference,
            "state": ExecutionStatus.DONE,
            "paid": True,
        }
        logger.info(f"[mock] Provider order {order_id} placed for {request.client_reference}")
        return SubmitResult(
            provider_order_id=order_id,
            confirmed=True,
            detail_url=self._detail_url(order_id),
        )


provider_client = HotelProviderClient()
