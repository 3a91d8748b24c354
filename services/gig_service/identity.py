from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import httpx
import logging
import os

logger = logging.getLogger(__name__)

AUTH_SERVICE_URL = os.getenv("AUTH_SERVICE_URL", "http://auth-service:8000")
http_bearer = HTTPBearer(auto_error=False)


class IdentityUnavailable(Exception):
    pass


class IdentityClient:
    """Thin client for the auth service; it authenticates, this service never does."""

    def __init__(self, base_url: str = AUTH_SERVICE_URL, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def get_account(self, token: str) -> Optional[dict]:
        """Return ``{id, email, name}`` for a bearer token, or None if the token is rejected."""
        try:
            response = httpx.get(
                f"{self.base_url}/api/v1/auth/me",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise IdentityUnavailable(str(exc)) from exc
        if response.status_code != 200:
            return None
        account = response.json()
        if not account.get("id"):
            return None
        return account

    def find_user_by_email(self, email: str) -> Optional[dict]:
        try:
            response = httpx.get(
                f"{self.base_url}/api/v1/auth/users/lookup",
                params={"email": email},
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            raise IdentityUnavailable(str(exc)) from exc
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise IdentityUnavailable(f"lookup returned HTTP {response.status_code}")
        return response.json()


def get_identity(request: Request) -> IdentityClient:
    return request.app.state.identity


def authenticate_token(identity: IdentityClient, token: Optional[str]) -> dict:
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    try:
        account = identity.get_account(token)
    except IdentityUnavailable as exc:
        logger.warning("Auth service unreachable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Cannot verify authentication",
        ) from exc
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return account


def resolve_account(
    credentials: HTTPAuthorizationCredentials = Depends(http_bearer),
    identity: IdentityClient = Depends(get_identity),
) -> dict:
    token = credentials.credentials if credentials else None
    return authenticate_token(identity, token)


def current_user_id(account: dict = Depends(resolve_account)) -> int:
    return int(account["id"])
