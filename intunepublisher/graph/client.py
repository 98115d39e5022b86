# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Authenticated Microsoft Graph client for intunepublisher.

Every backend call made by the engine goes through GraphClient: GET, POST,
PATCH and DELETE against the Graph REST surface with a bearer token attached,
paged collection listing, and unauthenticated PUTs to the storage URIs that
Intune hands out for content uploads.

Key Features:

- **Retry on reads only** - GETs retry on 429/500/502/503/504 with
  exponential backoff (urllib3 Retry). POST/PATCH/DELETE are never retried
  because creating a group or committing a file twice is not harmless.
- **Token per request** - The token provider is called for every request so
  a credential manager can refresh expiring tokens transparently.
- **Separate blob session** - Storage URIs carry their own SAS signature;
  the Authorization header is never sent to them.
- **Chained errors** - Every failure surfaces as NetworkError with the HTTP
  status and the Graph error message, chained to the requests exception.

Example:
    Query groups by exact name:
        ```python
        from intunepublisher.auth import CredentialManager
        from intunepublisher.graph import GraphClient, odata_equals

        client = GraphClient(CredentialManager().get_token)
        groups = client.list("groups", filter=odata_equals("displayName", "Acme Tool Required"))
        ```
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from intunepublisher.exceptions import NetworkError
from intunepublisher.logging import Logger, resolve_logger

DEFAULT_BASE_URL = "https://graph.microsoft.com/beta"
USER_AGENT = "intunepublisher/0.1"


def make_session(retry_reads: bool = True) -> requests.Session:
    """Create a requests.Session with retry/backoff defaults.

    Args:
        retry_reads: If True, mount adapters that retry GET/HEAD on transient
            status codes. Blob sessions pass False because block retries are
            handled per block by the uploader.

    Returns:
        A configured requests.Session.
    """
    s = requests.Session()
    s.headers.update({"User-Agent": USER_AGENT})
    if retry_reads:
        retries = Retry(
            total=5,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=("GET", "HEAD"),
            raise_on_status=False,
        )
        s.mount("http://", HTTPAdapter(max_retries=retries))
        s.mount("https://", HTTPAdapter(max_retries=retries))
    return s


def escape_odata_string(value: str) -> str:
    """Escape a value for use inside an OData single-quoted string literal.

    OData escapes a single quote by doubling it. Characters that are reserved
    in URLs (``&``, ``#``, ``+``, ``?``) are percent-encoded by requests when
    the filter is passed as a query parameter.

    Example:
        ```python
        escape_odata_string("O'Reilly Reader")  # "O''Reilly Reader"
        ```
    """
    return value.replace("'", "''")


def odata_equals(field_name: str, value: str) -> str:
    """Build an ``eq`` filter expression for a string field."""
    return f"{field_name} eq '{escape_odata_string(value)}'"


def _error_message(resp: requests.Response) -> str:
    """Extract the Graph error message from a failed response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return resp.text[:200]


class GraphClient:
    """Thin authenticated client over the Graph REST API.

    Attributes:
        base_url: Graph root, e.g. "https://graph.microsoft.com/beta".
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        token_provider: Callable[[], str],
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = 60,
        session: requests.Session | None = None,
        blob_session: requests.Session | None = None,
        logger: Logger | None = None,
    ) -> None:
        self._token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or make_session()
        self.blob_session = blob_session or make_session(retry_reads=False)
        self.logger = resolve_logger(logger)

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any] | None:
        url = self._url(path)
        headers = {
            "Authorization": f"Bearer {self._token_provider()}",
            "Accept": "application/json",
        }
        self.logger.debug("GRAPH", f"{method} {url}")

        try:
            resp = self.session.request(
                method,
                url,
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as err:
            raise NetworkError(f"{method} {url} failed: {err}") from err

        if not resp.ok:
            raise NetworkError(
                f"{method} {url} returned HTTP {resp.status_code}: "
                f"{_error_message(resp)}",
                status_code=resp.status_code,
            )

        self.logger.debug("GRAPH", f"Response: {resp.status_code}")
        if resp.status_code == 204 or not resp.content:
            return None
        return resp.json()

    def get(
        self, path: str, params: dict[str, str] | None = None
    ) -> dict[str, Any]:
        """GET a single resource."""
        return self._request("GET", path, params=params) or {}

    def post(
        self, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """POST to a collection or action. Returns the body, if any."""
        return self._request("POST", path, json=json if json is not None else {})

    def patch(self, path: str, json: dict[str, Any]) -> dict[str, Any] | None:
        """PATCH a resource."""
        return self._request("PATCH", path, json=json)

    def delete(self, path: str) -> None:
        """DELETE a resource."""
        self._request("DELETE", path)

    def list(
        self,
        path: str,
        *,
        filter: str | None = None,
        select: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        """List a collection, following @odata.nextLink pages.

        Args:
            path: Collection path relative to base_url.
            filter: Optional OData $filter expression.
            select: Optional list of properties for $select.

        Returns:
            All items across pages.
        """
        params: dict[str, str] = {}
        if filter:
            params["$filter"] = filter
        if select:
            params["$select"] = ",".join(select)

        items: list[dict[str, Any]] = []
        next_path: str | None = path
        next_params: dict[str, str] | None = params or None
        while next_path:
            page = self.get(next_path, params=next_params)
            items.extend(page.get("value", []))
            # nextLink already carries the query string
            next_path = page.get("@odata.nextLink")
            next_params = None
        return items

    def put_blob(
        self, url: str, data: bytes | str, headers: dict[str, str] | None = None
    ) -> None:
        """PUT to a storage URI without Graph authentication.

        Raises:
            NetworkError: On connection failures or non-2xx responses.
        """
        try:
            resp = self.blob_session.put(
                url, data=data, headers=headers or {}, timeout=self.timeout
            )
        except requests.RequestException as err:
            raise NetworkError(f"PUT to storage failed: {err}") from err
        if not resp.ok:
            raise NetworkError(
                f"PUT to storage returned HTTP {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
