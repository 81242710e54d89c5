"""
Payment network gateways

Both implementations expose the same capabilities: send funds, read the
platform's balance and check a transfer's status. The implementation is
chosen from configuration by build_payment_gateway.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional
from uuid import uuid4

import httpx

from tourney.core.config import Settings
from tourney.core.exceptions import PaymentRejected, TransientError
from tourney.services.prize_distribution import to_money

logger = logging.getLogger(__name__)


class TransferStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass(frozen=True)
class TransferResult:
    tx_reference: str
    status: str
    amount: Decimal
    recipient: str
    simulated: bool = False


class PaymentGateway(ABC):
    """Capability interface for moving prize money on the payment network"""

    @abstractmethod
    def send_funds(self, recipient: str, amount: Decimal, idempotency_key: str) -> TransferResult:
        """Transfer ``amount`` to ``recipient``; replaying a key returns the first transfer"""

    @abstractmethod
    def get_balance(self) -> Decimal:
        """Funds available to the platform for payouts"""

    @abstractmethod
    def check_status(self, tx_reference: str) -> str:
        """One of TransferStatus"""

    def close(self) -> None:
        pass


class SimulatedPaymentGateway(PaymentGateway):
    """In-memory gateway for development and tests"""

    def __init__(self, balance: Decimal = Decimal("1000000")):
        self._balance = to_money(balance)
        self._transfers: Dict[str, TransferResult] = {}
        self._by_key: Dict[str, str] = {}
        self._statuses: Dict[str, str] = {}
        self._lock = threading.Lock()

    def send_funds(self, recipient: str, amount: Decimal, idempotency_key: str) -> TransferResult:
        amount = to_money(amount)
        with self._lock:
            if idempotency_key in self._by_key:
                return self._transfers[self._by_key[idempotency_key]]
            if amount > self._balance:
                raise PaymentRejected(f"Simulated balance {self._balance} cannot cover {amount}")

            tx_reference = f"0x{uuid4().hex}"
            result = TransferResult(
                tx_reference=tx_reference,
                status=TransferStatus.CONFIRMED,
                amount=amount,
                recipient=recipient,
                simulated=True,
            )
            self._balance -= amount
            self._transfers[tx_reference] = result
            self._by_key[idempotency_key] = tx_reference
            self._statuses[tx_reference] = TransferStatus.CONFIRMED

        logger.info(f"Simulated transfer of {amount} to {recipient}: {tx_reference}")
        return result

    def get_balance(self) -> Decimal:
        return self._balance

    def check_status(self, tx_reference: str) -> str:
        return self._statuses.get(tx_reference, TransferStatus.FAILED)

    def set_status(self, tx_reference: str, status: str) -> None:
        """Override a transfer's status (simulates network outcomes)"""
        self._statuses[tx_reference] = status

    @property
    def transfers(self) -> Dict[str, TransferResult]:
        return dict(self._transfers)


class HttpPaymentGateway(PaymentGateway):
    """Gateway talking to the payment provider's REST API"""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        currency: str = "TON",
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self._currency = currency
        self._auth = {"Authorization": f"Bearer {api_key}"}
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)

    def send_funds(self, recipient: str, amount: Decimal, idempotency_key: str) -> TransferResult:
        amount = to_money(amount)
        data = self._request(
            "POST",
            "/v1/transfer",
            json={
                "recipient": recipient,
                "amount": str(amount),
                "currency": self._currency,
                "memo": "tournament prize",
            },
            headers={"Idempotency-Key": idempotency_key},
        )
        return TransferResult(
            tx_reference=data["transactionHash"],
            status=data.get("status", TransferStatus.PENDING),
            amount=amount,
            recipient=recipient,
        )

    def get_balance(self) -> Decimal:
        data = self._request("GET", "/v1/balance")
        return to_money(data["balance"])

    def check_status(self, tx_reference: str) -> str:
        data = self._request("GET", f"/v1/transaction/{tx_reference}")
        status = data.get("status", TransferStatus.PENDING)
        if status not in (TransferStatus.PENDING, TransferStatus.CONFIRMED, TransferStatus.FAILED):
            logger.warning(f"Unknown transfer status '{status}' for {tx_reference}")
            return TransferStatus.PENDING
        return status

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, headers: Optional[dict] = None, **kwargs) -> dict:
        headers = {**self._auth, **(headers or {})}
        try:
            response = self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as e:
            raise TransientError(f"Payment API unreachable: {e}")

        if response.status_code >= 500 or response.status_code == 429:
            raise TransientError(f"Payment API error {response.status_code} on {path}")
        if response.status_code >= 400:
            raise PaymentRejected(f"Payment API rejected {path}: {response.status_code} {response.text}")
        return response.json()


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    """Select the gateway implementation from configuration"""
    if settings.PAYMENT_GATEWAY == "http":
        logger.info(f"Using payment API at {settings.PAYMENT_API_URL}")
        return HttpPaymentGateway(
            base_url=settings.PAYMENT_API_URL,
            api_key=settings.PAYMENT_API_KEY,
            currency=settings.PAYMENT_CURRENCY,
            timeout=settings.PAYMENT_API_TIMEOUT_SECONDS,
        )
    logger.info("Using simulated payment gateway")
    return SimulatedPaymentGateway()
