"""
Wallet Ledger Integration

Credits creator wallets on the external wallet ledger, the system of record for
creator balances. Every credit carries an idempotency key; the ledger returns
the original transaction for a repeated key instead of crediting twice.

Errors are classified for the disbursement worker:
- WalletLedgerTransientError: timeouts, connection failures, 5xx, 429 (retry later)
- WalletLedgerRejectedError: any other 4xx (the ledger refused the credit)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class WalletLedgerError(Exception):
    """Base exception for wallet ledger failures."""
    def __init__(self, message: str, status_code: int = None, response: dict = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


class WalletLedgerTransientError(WalletLedgerError):
    """The credit may succeed if attempted again."""


class WalletLedgerRejectedError(WalletLedgerError):
    """The ledger refused the credit; retrying will not help."""


@dataclass(frozen=True)
class WalletCreditResult:
    transaction_id: str
    user_id: str
    amount: int
    replayed: bool = False


class WalletLedger(Protocol):
    async def credit(
        self,
        user_id: str,
        amount: int,
        idempotency_key: str,
        description: Optional[str] = None,
    ) -> WalletCreditResult:
        ...


class WalletLedgerClient:
    """
    HTTP client for the wallet ledger API.

    Usage:
        client = WalletLedgerClient()
        result = await client.credit("42", 118, idempotency_key=entry.id)
        await client.close()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = settings or get_settings()
        self.api_key = settings.wallet_ledger_api_key
        self.base_url = settings.wallet_ledger_api_url.rstrip("/")
        self.timeout = settings.wallet_ledger_timeout_seconds

        if not self.api_key:
            logger.warning("Wallet ledger API key not configured - requests are sent unauthenticated")

        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Make an API request to the wallet ledger and classify failures."""
        client = await self._get_client()

        try:
            response = await client.request(method=method, url=endpoint, json=data, headers=headers)
        except httpx.TimeoutException as e:
            logger.warning("wallet_ledger_timeout", extra={"endpoint": endpoint, "error": str(e)})
            raise WalletLedgerTransientError(f"Request timed out: {e}")
        except httpx.RequestError as e:
            logger.warning("wallet_ledger_request_failed", extra={"endpoint": endpoint, "error": str(e)})
            raise WalletLedgerTransientError(f"Request failed: {e}")

        if response.status_code >= 400:
            try:
                error_data = response.json() if response.content else {}
            except ValueError:
                error_data = {"body": response.text}
            error_msg = error_data.get("message") or f"HTTP {response.status_code}"

            if response.status_code >= 500 or response.status_code == 429:
                logger.warning(
                    "wallet_ledger_unavailable",
                    extra={"endpoint": endpoint, "status_code": response.status_code, "error": error_msg},
                )
                raise WalletLedgerTransientError(error_msg, response.status_code, error_data)

            logger.error(
                "wallet_ledger_rejected",
                extra={"endpoint": endpoint, "status_code": response.status_code, "error": error_msg},
            )
            raise WalletLedgerRejectedError(error_msg, response.status_code, error_data)

        return response.json() if response.content else {}

    async def credit(
        self,
        user_id: str,
        amount: int,
        idempotency_key: str,
        description: Optional[str] = None,
    ) -> WalletCreditResult:
        """
        Credit `amount` minor units to the creator's wallet.

        A 200 for an already-seen idempotency key is the original transaction,
        reported with replayed=True.
        """
        payload = {"amount": amount, "description": description}
        payload = {k: v for k, v in payload.items() if v is not None}

        data = await self._request(
            "POST",
            f"/v1/wallets/{user_id}/credits",
            data=payload,
            headers={"Idempotency-Key": idempotency_key},
        )

        transaction_id = data.get("transaction_id") or data.get("id")
        if not transaction_id:
            raise WalletLedgerTransientError("Wallet ledger response is missing a transaction id", response=data)

        return WalletCreditResult(
            transaction_id=str(transaction_id),
            user_id=user_id,
            amount=amount,
            replayed=bool(data.get("replayed", False)),
        )
