"""Async client for the Turnkey identity provider API."""

from __future__ import annotations

import base64
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from wren.config import Settings
from wren.errors import ErrorKind, WrenError

logger = logging.getLogger(__name__)

CREATE_SUB_ORGANIZATION_PATH = "/public/v1/submit/create_sub_organization"
CREATE_SUB_ORGANIZATION_ACTIVITY = "ACTIVITY_TYPE_CREATE_SUB_ORGANIZATION_V7"
STAMP_HEADER = "X-Stamp"
STAMP_SCHEME = "SIGNATURE_SCHEME_TK_API_P256"

DEFAULT_ETHEREUM_ACCOUNTS: List[Dict[str, str]] = [
    {
        "curve": "CURVE_SECP256K1",
        "pathFormat": "PATH_FORMAT_BIP32",
        "path": "m/44'/60'/0'/0/0",
        "addressFormat": "ADDRESS_FORMAT_ETHEREUM",
    },
]

SOLANA_ACCOUNT: Dict[str, str] = {
    "curve": "CURVE_ED25519",
    "pathFormat": "PATH_FORMAT_BIP32",
    "path": "m/44'/501'/0'/0'",
    "addressFormat": "ADDRESS_FORMAT_SOLANA",
}


class IdentityProviderError(WrenError):
    """Turnkey rejected a request or could not be reached."""
    kind = ErrorKind.RESOURCE_UNAVAILABLE
    detail = "Identity provider request failed"


@dataclass(frozen=True)
class SubOrganization:
    sub_org_id: str
    wallet_id: str
    addresses: List[str] = field(default_factory=list)

    @property
    def eth_address(self) -> str:
        return next((a for a in self.addresses if a.startswith("0x")), "")

    @property
    def sol_address(self) -> str:
        return next((a for a in self.addresses if not a.startswith("0x")), "")


class ApiKeyStamper:
    """Signs request bodies with a Turnkey API key (P-256)."""

    def __init__(self, public_key: str, private_key: str) -> None:
        self.public_key = public_key
        self._private_key = ec.derive_private_key(int(private_key, 16), ec.SECP256R1())

    def stamp(self, body: str) -> str:
        signature = self._private_key.sign(body.encode("utf-8"), ec.ECDSA(hashes.SHA256()))
        payload = {
            "publicKey": self.public_key,
            "scheme": STAMP_SCHEME,
            "signature": signature.hex(),
        }
        encoded = base64.urlsafe_b64encode(json.dumps(payload).encode("utf-8"))
        return encoded.decode("ascii").rstrip("=")


def create_sub_organization_parameters(email: str, challenge: str, attestation: Dict[str, Any]) -> Dict[str, Any]:
    """Parameters for a sub-organization with one passkey root user and an ETH + SOL wallet."""
    return {
        "subOrganizationName": email,
        "rootUsers": [
            {
                "userName": email,
                "userEmail": email,
                "apiKeys": [],
                "authenticators": [
                    {
                        "authenticatorName": email,
                        "challenge": challenge,
                        "attestation": attestation,
                    }
                ],
                "oauthProviders": [],
            }
        ],
        "rootQuorumThreshold": 1,
        "wallet": {
            "walletName": email,
            "accounts": [*DEFAULT_ETHEREUM_ACCOUNTS, SOLANA_ACCOUNT],
        },
    }


class TurnkeyClient:
    """Thin wrapper around the Turnkey public API.

    Server-side calls are stamped with the service's API key. Requests that
    the browser already stamped with the user's passkey are forwarded as-is.
    """

    def __init__(
        self,
        *,
        base_url: str,
        organization_id: str,
        stamper: Optional[ApiKeyStamper] = None,
        timeout_s: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.organization_id = organization_id
        self.timeout_s = timeout_s
        self._stamper = stamper
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "TurnkeyClient":
        stamper = None
        if settings.has_turnkey_key:
            stamper = ApiKeyStamper(settings.turnkey_api_public_key, settings.turnkey_api_private_key)
        return cls(
            base_url=settings.turnkey_api_base_url,
            organization_id=settings.turnkey_organization_id,
            stamper=stamper,
            timeout_s=settings.turnkey_timeout_seconds,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)

    async def _post(self, url: str, body: str, headers: Dict[str, str]) -> Dict[str, Any]:
        merged = {"content-type": "application/json", **headers}
        try:
            async with self._client() as client:
                response = await client.post(url, content=body.encode("utf-8"), headers=merged)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Turnkey returned %s for %s: %s",
                exc.response.status_code,
                url,
                exc.response.text[:500],
            )
            raise IdentityProviderError(f"Turnkey returned {exc.response.status_code}") from exc
        except (httpx.RequestError, ValueError) as exc:
            raise IdentityProviderError(f"Turnkey request failed: {exc}") from exc

    async def create_sub_organization(
        self,
        email: str,
        challenge: str,
        attestation: Dict[str, Any],
    ) -> SubOrganization:
        """Create a sub-organization for ``email`` holding one ETH and one SOL account."""
        if self._stamper is None:
            raise IdentityProviderError("Turnkey API key is not configured")

        body = json.dumps(
            {
                "type": CREATE_SUB_ORGANIZATION_ACTIVITY,
                "timestampMs": str(int(time.time() * 1000)),
                "organizationId": self.organization_id,
                "parameters": create_sub_organization_parameters(email, challenge, attestation),
            }
        )
        data = await self._post(
            f"{self.base_url}{CREATE_SUB_ORGANIZATION_PATH}",
            body,
            {STAMP_HEADER: self._stamper.stamp(body)},
        )

        activity = data.get("activity") or {}
        result = (activity.get("result") or {}).get("createSubOrganizationResultV7") or {}
        wallet = result.get("wallet") or {}
        sub_org_id = result.get("subOrganizationId")
        if not sub_org_id or not wallet.get("walletId"):
            logger.warning("Sub-organization activity not completed: %s", activity.get("status"))
            raise IdentityProviderError("Sub-organization was not created")

        return SubOrganization(
            sub_org_id=sub_org_id,
            wallet_id=wallet["walletId"],
            addresses=list(wallet.get("addresses") or []),
        )

    async def forward_signed_request(self, url: str, body: str, stamp_header_name: str, stamp_header_value: str) -> str:
        """Forward a client-stamped ``whoami`` request and return the organization id."""
        if not url.startswith(f"{self.base_url}/"):
            raise IdentityProviderError(f"Refusing to forward request to {url}")

        data = await self._post(url, body, {stamp_header_name: stamp_header_value})
        organization_id = data.get("organizationId")
        if not organization_id:
            raise IdentityProviderError("Turnkey response has no organizationId")
        return organization_id
