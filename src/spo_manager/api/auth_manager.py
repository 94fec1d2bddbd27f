import asyncio
import logging
import time
from typing import Dict, Optional, Tuple
from urllib.parse import urlparse

from azure.core.exceptions import AzureError, ClientAuthenticationError
from azure.identity import CertificateCredential

from ..utils.config_parser import AuthConfig
from ..utils.exceptions import RemoteErrorKind, RemoteSiteError

logger = logging.getLogger(__name__)

# Refresh tokens this many seconds before they expire.
TOKEN_REFRESH_MARGIN = 300


def sharepoint_scope(site_url: str) -> str:
    """App-only scope for the tenant hosting ``site_url``."""
    parsed = urlparse(site_url)
    return f"https://{parsed.netloc}/.default"


class AuthenticationManager:
    """Handles certificate-based authentication for SharePoint REST calls."""

    def __init__(self, config: AuthConfig) -> None:
        self.tenant_id = config.tenant_id
        self.client_id = config.client_id
        self.certificate_path = config.certificate_path
        self.certificate_password = config.certificate_password
        self._credential_cache: Optional[CertificateCredential] = None
        self._token_cache: Dict[str, Tuple[str, int]] = {}
        self._lock = asyncio.Lock()

    async def get_credential(self) -> CertificateCredential:
        """Return the certificate credential for authentication."""
        async with self._lock:
            if self._credential_cache is not None:
                return self._credential_cache

            kwargs = {
                "tenant_id": self.tenant_id,
                "client_id": self.client_id,
                "certificate_path": self.certificate_path,
            }
            if self.certificate_password:
                kwargs["password"] = self.certificate_password

            try:
                credential = CertificateCredential(**kwargs)
            except (OSError, ValueError) as exc:
                logger.error("Failed to create credential: %s", exc)
                raise RemoteSiteError(
                    RemoteErrorKind.UNAUTHORIZED, f"Could not load certificate: {exc}"
                ) from exc
            self._credential_cache = credential
            return credential

    async def get_access_token(self, site_url: str) -> str:
        """Return a bearer token valid for the tenant of ``site_url``."""
        scope = sharepoint_scope(site_url)
        cached = self._token_cache.get(scope)
        if cached and cached[1] - TOKEN_REFRESH_MARGIN > time.time():
            return cached[0]

        credential = await self.get_credential()
        try:
            token = await asyncio.to_thread(credential.get_token, scope)
        except ClientAuthenticationError as exc:
            logger.error("Failed to acquire token for %s: %s", scope, exc)
            raise RemoteSiteError(
                RemoteErrorKind.UNAUTHORIZED, f"Authentication failed: {exc.message}"
            ) from exc
        except AzureError as exc:
            logger.error("Token request for %s failed: %s", scope, exc)
            raise RemoteSiteError(
                RemoteErrorKind.UNKNOWN, f"Token request failed: {exc.message}"
            ) from exc

        logger.debug(f"Token acquired for {scope}, expires: {token.expires_on}")
        self._token_cache[scope] = (token.token, token.expires_on)
        return token.token

    async def close(self) -> None:
        if self._credential_cache is not None:
            self._credential_cache.close()
            self._credential_cache = None
        self._token_cache.clear()
