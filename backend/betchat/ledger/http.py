from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from sqlalchemy.orm import Session

from betchat.core.config import settings
from betchat.core.errors import (
    AccountNotFound,
    InsufficientBalance,
    InvalidAmount,
    LedgerUnavailable,
)


class HttpLedgerClient:
    """Thin wrapper around a remote user-directory and ledger service.

    Effects are applied by the remote service as soon as the call returns, so
    this adapter is not transactional with the local database.
    """

    name = "http"
    transactional = False

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url or str(settings.ledger_base_url or "")
        if not self.base_url:
            raise ValueError("A ledger base URL is required for the HTTP ledger")
        self.timeout = timeout or settings.ledger_timeout_seconds
        api_key = api_key if api_key is not None else settings.ledger_api_key
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=transport,
        )

    def balance(self, session: Session | None, user_id: str) -> int:
        payload = self._request("GET", f"/accounts/{user_id}")
        try:
            return int(payload["availableMinor"])
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerUnavailable("Ledger returned a malformed balance") from exc

    def debit(
        self,
        session: Session | None,
        user_id: str,
        amount_minor: int,
        *,
        reference: str,
        description: str | None = None,
    ) -> bool:
        return self._apply("debit", user_id, amount_minor, reference, description)

    def credit(
        self,
        session: Session | None,
        user_id: str,
        amount_minor: int,
        *,
        reference: str,
        description: str | None = None,
    ) -> bool:
        return self._apply("credit", user_id, amount_minor, reference, description)

    def _apply(
        self,
        operation: str,
        user_id: str,
        amount_minor: int,
        reference: str,
        description: str | None,
    ) -> bool:
        if amount_minor <= 0:
            raise InvalidAmount(f"{operation.capitalize()} amount must be positive")
        body = {
            "amountMinor": amount_minor,
            "reference": reference,
            "description": description,
        }
        payload = self._request("POST", f"/accounts/{user_id}/{operation}", json=body)
        if payload.get("duplicate"):
            logger.info(
                "Ledger {} already applied user={} reference={}", operation, user_id, reference
            )
            return False
        return True

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        logger.debug("Ledger {} {}", method, path)
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Ledger request failed {} {}: {}", method, path, exc)
            raise LedgerUnavailable() from exc

        if response.status_code == 404:
            raise AccountNotFound()
        if response.status_code == 402:
            raise InsufficientBalance()
        if response.status_code == 409:
            return {"duplicate": True}
        if response.status_code >= 400:
            logger.warning(
                "Ledger responded {} for {} {}: {}",
                response.status_code,
                method,
                path,
                response.text[:200],
            )
            raise LedgerUnavailable(f"Ledger responded with HTTP {response.status_code}")
        if not response.content:
            return {}
        data = response.json()
        return data if isinstance(data, dict) else {}

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "HttpLedgerClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
