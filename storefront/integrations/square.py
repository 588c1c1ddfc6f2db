"""
Square REST API client - catalog listing and payment lookup.

Auth: Bearer access token, pinned Square-Version header.
Docs: https://developer.squareup.com/reference/square
Every call carries an explicit timeout; a timeout surfaces as
ProviderTimeoutError, any other failure as ProviderError.
"""
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

TIMEOUT = 15.0
CATALOG_PAGE_LIMIT = 1000


class ProviderError(Exception):
    """Square API call failed (non-2xx, API error body, or transport error)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """Square API call did not complete within the configured timeout."""


class SquareClient:

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://connect.squareupsandbox.com",
        api_version: str = "2024-10-17",
        timeout: float = TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Square-Version": api_version,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @classmethod
    def from_settings(cls, settings) -> "SquareClient":
        return cls(
            access_token=settings.square_access_token,
            base_url=settings.square_base_url,
            api_version=settings.square_api_version,
            timeout=settings.square_api_timeout_seconds,
        )

    async def _get(self, path: str, params: Optional[dict] = None) -> dict:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, headers=self._headers, params=params)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(f"Square GET {path} timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Square GET {path} failed: {e}") from e

        if response.status_code >= 400:
            errors = _error_details(response)
            raise ProviderError(
                f"Square GET {path} returned {response.status_code}: {errors}",
                status_code=response.status_code,
            )
        return response.json()

    async def list_catalog_item_ids(self) -> set[str]:
        """Ids of every non-deleted ITEM in the catalog, following cursors."""
        ids: set[str] = set()
        cursor = None
        pages = 0
        while True:
            params = {"types": "ITEM"}
            if cursor:
                params["cursor"] = cursor
            data = await self._get("/v2/catalog/list", params=params)
            pages += 1
            for obj in data.get("objects") or []:
                if obj.get("type") != "ITEM" or obj.get("is_deleted"):
                    continue
                if obj.get("id"):
                    ids.add(obj["id"])
            cursor = data.get("cursor")
            if not cursor:
                break

        logger.info("Fetched %d live Square catalog items (%d page(s))", len(ids), pages)
        return ids

    async def get_payment(self, payment_id: str) -> dict:
        """The payment object for payment_id."""
        data = await self._get(f"/v2/payments/{payment_id}")
        payment = data.get("payment")
        if not isinstance(payment, dict):
            raise ProviderError(f"Square payment {payment_id} missing from response")
        return payment


def _error_details(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    errors = body.get("errors") or []
    if errors:
        return "; ".join(e.get("detail") or e.get("code", "unknown") for e in errors)
    return str(body)[:200]
