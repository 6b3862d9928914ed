"""
Access-token providers.

Every provider exposes get_token() and clear(). clear() drops the cached
identity; the API client calls it when the server answers 401.
"""
import logging
import threading
import time
from typing import Optional

import requests

logger = logging.getLogger(__name__)

# Refresh this many seconds before the token actually expires
EXPIRY_MARGIN = 60


class AuthError(Exception):
    """Raised when no access token can be obtained."""
    pass


class StaticTokenProvider:
    """Serves a pre-issued bearer token."""

    def __init__(self, token: str):
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token or None

    def clear(self) -> None:
        self._token = ""


class ClientCredentialsTokenProvider:
    """
    OAuth2 client-credentials grant against the identity provider's
    /oauth/token endpoint. The token is cached until shortly before expiry.
    """

    def __init__(
        self,
        domain: str,
        client_id: str,
        client_secret: str,
        audience: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        domain = domain.rstrip("/")
        if not domain.startswith("http"):
            domain = f"https://{domain}"
        self.token_url = f"{domain}/oauth/token"
        self.client_id = client_id
        self.client_secret = client_secret
        self.audience = audience
        self.timeout = timeout
        self._session = session or requests.Session()
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = threading.Lock()

    def get_token(self) -> Optional[str]:
        with self._lock:
            if self._token and time.monotonic() < self._expires_at:
                return self._token
            self._token, self._expires_at = self._fetch()
            return self._token

    def _fetch(self):
        try:
            r = self._session.post(
                self.token_url,
                json={
                    "grant_type": "client_credentials",
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "audience": self.audience,
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise AuthError(f"Token request failed: {e}") from e

        if not r.ok:
            raise AuthError(f"Token request rejected: {r.status_code} {r.text[:200]}")

        body = r.json()
        token = body.get("access_token")
        if not token:
            raise AuthError("Token response has no access_token")
        lifetime = float(body.get("expires_in", 3600))
        logger.info(f"Obtained access token (expires in {int(lifetime)}s)")
        return token, time.monotonic() + max(lifetime - EXPIRY_MARGIN, 0)

    def clear(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0


def provider_from_config(cfg):
    """Static token when one is configured, client credentials otherwise."""
    if cfg.access_token:
        return StaticTokenProvider(cfg.access_token)
    if not cfg.auth_client_secret:
        raise AuthError(
            "No credentials configured.\n"
            "Set BOARDSYNC_ACCESS_TOKEN, or BOARDSYNC_AUTH_CLIENT_SECRET for the "
            "client-credentials flow."
        )
    return ClientCredentialsTokenProvider(
        domain=cfg.auth_domain,
        client_id=cfg.auth_client_id,
        client_secret=cfg.auth_client_secret,
        audience=cfg.auth_audience,
        timeout=cfg.request_timeout,
    )
