"""
Identity provider client (account directory).

The provisioning pipeline needs three calls from the directory:
- does a user exist for this email
- update a user's public metadata
- create an email invitation (signup link) carrying claim context

`ClerkIdentityProvider` implements them over Clerk's Backend API.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

CLERK_API_URL = "https://api.clerk.com/v1"


class IdentityProviderError(Exception):
    """Raised when the identity provider rejects or fails a request."""


@dataclass(frozen=True, slots=True)
class IdentityUser:
    user_id: str
    email: str


@dataclass(frozen=True, slots=True)
class Invitation:
    invitation_id: str
    email: str


class IdentityProvider(Protocol):
    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        ...

    def update_user_metadata(self, user_id: str, metadata: Mapping[str, Any]) -> None:
        ...

    def create_invitation(
        self,
        email: str,
        metadata: Mapping[str, Any],
        redirect_url: Optional[str] = None,
    ) -> Invitation:
        ...


class ClerkIdentityProvider:
    def __init__(
        self,
        secret_key: Optional[str],
        base_url: str = CLERK_API_URL,
        timeout: float = 10.0,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._secret_key = secret_key
        self._http = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self._secret_key:
            raise IdentityProviderError("CLERK_SECRET_KEY is not configured")

        try:
            response = self._http.request(
                method,
                path,
                headers={"Authorization": f"Bearer {self._secret_key}"},
                **kwargs,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise IdentityProviderError(
                f"Clerk API error on {method} {path}: {e.response.status_code} - {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise IdentityProviderError(f"Clerk request failed on {method} {path}: {e}") from e

        return response.json()

    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        users = self._request("GET", "/users", params={"email_address": email, "limit": 1})
        if not users:
            return None
        return IdentityUser(user_id=str(users[0]["id"]), email=email)

    def update_user_metadata(self, user_id: str, metadata: Mapping[str, Any]) -> None:
        # Clerk deep-merges metadata patches, so repeating the call is harmless.
        self._request("PATCH", f"/users/{user_id}/metadata", json={"public_metadata": dict(metadata)})
        logger.info(f"Updated identity metadata for user {user_id}", extra={"identity_user_id": user_id})

    def create_invitation(
        self,
        email: str,
        metadata: Mapping[str, Any],
        redirect_url: Optional[str] = None,
    ) -> Invitation:
        payload: dict[str, Any] = {
            "email_address": email,
            "public_metadata": dict(metadata),
            "ignore_existing": True,
        }
        if redirect_url:
            payload["redirect_url"] = redirect_url

        data = self._request("POST", "/invitations", json=payload)
        logger.info(f"Created invitation {data['id']} for {email}", extra={"invitation_id": data["id"]})
        return Invitation(invitation_id=str(data["id"]), email=email)

    def close(self) -> None:
        self._http.close()


__all__ = [
    "ClerkIdentityProvider",
    "IdentityProvider",
    "IdentityProviderError",
    "IdentityUser",
    "Invitation",
]
