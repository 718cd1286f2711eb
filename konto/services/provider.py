"""
Account Aggregation Provider Client

Blocking client for the Powens-style banking API. Every call carries a timeout.
Any failure (non-2xx status, timeout, connection error, unparsable payload)
surfaces as ProviderError so callers can count it against the smallest unit
of work and move on.
"""
import requests
from pydantic import BaseModel, ValidationError, model_validator
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from konto.config import Settings
from konto.logging_config import get_logger

logger = get_logger(__name__)


class ProviderError(Exception):
    """Raised when a provider call does not produce a usable response"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def is_auth_error(self) -> bool:
        return self.status_code in (401, 404)


class ProviderAccount(BaseModel):
    provider_account_id: str
    type: Optional[str] = None
    usage: Optional[str] = None
    name: str = ""
    balance: Decimal = Decimal("0")
    currency: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def from_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "provider_account_id" in data:
            return data
        currency = data.get("currency")
        if isinstance(currency, dict):
            currency = currency.get("id")
        return {
            "provider_account_id": str(data["id"]),
            "type": data.get("type"),
            "usage": data.get("usage"),
            "name": data.get("name") or data.get("original_name") or "",
            "balance": data.get("balance") or 0,
            "currency": currency,
        }


class ProviderTransaction(BaseModel):
    date: date
    amount: Decimal
    label: Optional[str] = None
    category_name: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def from_payload(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "amount" in data and "label" in data:
            return data
        category = data.get("category")
        value = data.get("value")
        return {
            "date": data.get("date") or data.get("rdate"),
            "amount": value if value is not None else data.get("amount"),
            "label": data.get("original_wording") or data.get("wording"),
            "category_name": category.get("name") if isinstance(category, dict) else None,
        }


class TokenPair(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None


class PowensClient:
    """
    Usage::

        client = PowensClient.from_settings(settings)
        accounts = client.list_accounts(token)
        transactions = client.list_transactions(token, accounts[0].provider_account_id)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client_id = client_id
        self.client_secret = client_secret
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PowensClient":
        return cls(
            base_url=settings.powens_api,
            timeout=settings.provider_timeout,
            client_id=settings.powens_client_id,
            client_secret=settings.powens_client_secret
        )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = self.session.request(
                method, url, headers=headers, params=params, json=json_body, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise ProviderError(f"Timed out after {self.timeout}s calling {path}") from e
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Request to {path} failed: {e}") from e

        if not response.ok:
            raise ProviderError(f"{method} {path} returned {response.status_code}", status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(f"Malformed JSON from {path}", status_code=response.status_code) from e
        if not isinstance(payload, dict):
            raise ProviderError(f"Unexpected payload shape from {path}", status_code=response.status_code)
        return payload

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def list_accounts(self, token: str) -> List[ProviderAccount]:
        payload = self._request("GET", "/users/me/accounts", token=token)
        try:
            return [ProviderAccount.model_validate(item) for item in payload.get("accounts") or []]
        except (ValidationError, KeyError, TypeError) as e:
            raise ProviderError(f"Malformed account list: {e}") from e

    def list_transactions(
        self,
        token: str,
        provider_account_id: str,
        limit: int = 100,
        offset: int = 0
    ) -> List[ProviderTransaction]:
        payload = self._request(
            "GET",
            f"/users/me/accounts/{provider_account_id}/transactions",
            token=token,
            params={"limit": limit, "offset": offset}
        )
        try:
            return [ProviderTransaction.model_validate(item) for item in payload.get("transactions") or []]
        except (ValidationError, TypeError) as e:
            raise ProviderError(f"Malformed transaction list for account {provider_account_id}: {e}") from e

    def iter_transactions(self, token: str, provider_account_id: str, page_size: int = 500) -> Iterator[ProviderTransaction]:
        """Every transaction the bank provides, page by page until a short page"""
        offset = 0
        while True:
            page = self.list_transactions(token, provider_account_id, limit=page_size, offset=offset)
            yield from page
            if len(page) < page_size:
                return
            offset += page_size

    def refresh_token(self, refresh_token: str) -> TokenPair:
        payload = self._request(
            "POST",
            "/auth/token/refresh",
            json_body={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
            }
        )
        access_token = payload.get("access_token") or payload.get("token")
        if not access_token:
            raise ProviderError("Token refresh response carried no access token")
        return TokenPair(access_token=access_token, refresh_token=payload.get("refresh_token") or refresh_token)
