import os
import time
from typing import Optional

from dotenv import load_dotenv
import requests

from intunepublisher.exceptions import ConfigError, NetworkError
from intunepublisher.logging import Logger, resolve_logger

TOKEN_URL = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"


class CredentialManager:
    """
    Loads INTUNE_* environment variables (optionally from .env) and manages
    a cached Microsoft Graph access token that is refreshed automatically
    when it is about to expire.

    Instances are callable, so they can be handed to GraphClient as its
    token provider.
    """

    def __init__(
        self,
        env_prefix: str = "INTUNE_",
        refresh_margin: int = 60,
        timeout: int = 30,
        logger: Optional[Logger] = None,
    ) -> None:
        """
        :param env_prefix: Prefix used for environment variables.
        :param refresh_margin: Seconds before real expiry when we proactively refresh.
        :param timeout: Timeout for the token request, in seconds.
        """
        load_dotenv()
        self.env_prefix = env_prefix
        self.refresh_margin = refresh_margin
        self.timeout = timeout
        self.logger = resolve_logger(logger)
        self._token: Optional[str] = None
        self._token_expires_at: Optional[int] = None  # UNIX epoch

    # --------------------------------------------------------------------- #
    # Helper: read required env var
    # --------------------------------------------------------------------- #
    def _env(self, key: str) -> str:
        full_key = f"{self.env_prefix}{key}"
        value = os.getenv(full_key)
        if not value:
            raise ConfigError(f"Missing required environment variable: {full_key}")
        return value

    def get_client_id(self) -> str:
        return self._env("CLIENT_ID")

    def get_tenant_id(self) -> str:
        return self._env("TENANT_ID")

    def get_client_secret(self) -> str:
        return self._env("CLIENT_SECRET")

    def check(self) -> None:
        """Raise ConfigError if any required variable is missing."""
        self.get_tenant_id()
        self.get_client_id()
        self.get_client_secret()

    # --------------------------------------------------------------------- #
    # Token handling
    # --------------------------------------------------------------------- #
    def _token_expired(self) -> bool:
        if self._token is None or self._token_expires_at is None:
            return True
        return time.time() >= (self._token_expires_at - self.refresh_margin)

    def _fetch_token(self) -> None:
        """
        Performs the client-credentials flow and stores
        self._token and self._token_expires_at.
        """
        url = TOKEN_URL.format(tenant=self.get_tenant_id())
        data = {
            "client_id": self.get_client_id(),
            "client_secret": self.get_client_secret(),
            "grant_type": "client_credentials",
            "scope": GRAPH_SCOPE,
        }

        self.logger.verbose("AUTH", "Requesting Graph access token...")
        try:
            response = requests.post(url, data=data, timeout=self.timeout)
            response.raise_for_status()
            token_data = response.json()
            token = token_data["access_token"]
        except requests.RequestException as err:
            status = err.response.status_code if err.response is not None else None
            raise NetworkError(
                f"Token request failed: {err}", status_code=status
            ) from err
        except (KeyError, ValueError) as err:
            raise NetworkError(f"Token response was not understood: {err}") from err

        self._token = token
        # expires_in is seconds until expiry
        expires_in = int(token_data.get("expires_in", 0))
        self._token_expires_at = int(time.time()) + expires_in
        self.logger.verbose("AUTH", f"[OK] Token acquired (expires in {expires_in}s)")

    def get_token(self) -> str:
        """
        Returns a valid access token, refreshing it when necessary.
        """
        if self._token_expired():
            self._fetch_token()
        # At this point self._token is guaranteed to be str and valid
        return self._token  # type: ignore[return-value]

    __call__ = get_token
