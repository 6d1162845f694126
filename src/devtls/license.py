"""Client for the remote licensing/account service."""

import logging
import platform
import socket
from typing import Any, Dict, Optional

import httpx

from devtls.exceptions import LicenseServiceError
from devtls.http_client import create_http_client
from devtls.models import AccountInfo, LicenseInfo, WildcardDecision

logger = logging.getLogger(__name__)

FREE_PLAN = "free"
WILDCARD_LIMIT_KEY = "max_wildcard_certs"


class LicenseClient:
    """
    Talks to the licensing API.

    Only account and plan metadata travel over this client; key material
    never does.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url
        self._client = create_http_client(base_url, token=token, timeout=timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "LicenseClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            response = self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise LicenseServiceError(f"Timeout contacting {self.base_url}: {e}") from e
        except httpx.RequestError as e:
            raise LicenseServiceError(f"Could not reach {self.base_url}: {e}") from e

        if response.status_code != 200:
            raise LicenseServiceError(
                f"API error ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise LicenseServiceError(f"Failed to decode response from {path}: {e}") from e

    def me(self) -> AccountInfo:
        data = self._request("GET", "/v1/me")
        return _parse_account(data)

    def license(self) -> LicenseInfo:
        data = self._request("GET", "/v1/license")
        try:
            limits = {str(k): int(v) for k, v in (data.get("limits") or {}).items()}
        except (AttributeError, TypeError, ValueError) as e:
            raise LicenseServiceError(f"Invalid limits in license response: {e}") from e
        user = _parse_account(data["user"]) if data.get("user") else None
        return LicenseInfo(plan=data.get("plan", FREE_PLAN), limits=limits, user=user)

    def machine_ping(self, hostname: Optional[str] = None) -> None:
        """Register this machine with the account."""
        payload = {
            "hostname": hostname or socket.gethostname(),
            "os": platform.system().lower(),
            "arch": platform.machine().lower(),
        }
        self._request("POST", "/v1/machines/ping", json=payload)

    def check_wildcard_allowed(self, plan: str, current_count: int) -> WildcardDecision:
        """
        Decide whether another wildcard certificate may be issued.

        Paid plans are allowed without asking. For the free plan the service
        provides the limit; if it cannot be reached the check degrades to
        local-only and allows issuance.
        """
        if plan != FREE_PLAN:
            return WildcardDecision(allowed=True, plan=plan, current_count=current_count)

        try:
            info = self.license()
        except LicenseServiceError as e:
            logger.warning(f"Could not verify license, proceeding with local check: {e}")
            return WildcardDecision(
                allowed=True,
                plan=plan,
                current_count=current_count,
                degraded=True,
                reason=str(e),
            )

        maximum = info.limits.get(WILDCARD_LIMIT_KEY, 0)
        if maximum > 0 and current_count >= maximum:
            return WildcardDecision(
                allowed=False,
                plan=info.plan,
                current_count=current_count,
                maximum=maximum,
                reason=f"Plan limit reached ({current_count}/{maximum} wildcard certs)",
            )
        return WildcardDecision(allowed=True, plan=info.plan, current_count=current_count, maximum=maximum or None)


def _parse_account(data: Dict[str, Any]) -> AccountInfo:
    return AccountInfo(
        id=str(data.get("id", "")),
        email=data.get("email", ""),
        plan=data.get("plan", FREE_PLAN),
        created_at=data.get("created_at"),
    )
