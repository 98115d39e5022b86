"""Microsoft Graph access for intunepublisher.

Modules:

client : module
    Authenticated REST client with paging, OData escaping and blob PUTs.
payloads : module
    Typed request bodies per resource kind.

Example:
    from intunepublisher.graph import GraphClient, odata_equals

    client = GraphClient(token_provider)
    apps = client.list("deviceAppManagement/mobileApps",
                       filter=odata_equals("displayName", "Acme Tool"))
"""

from .client import GraphClient, escape_odata_string, make_session, odata_equals
from .payloads import AvailableInstall

__all__ = [
    "GraphClient",
    "AvailableInstall",
    "escape_odata_string",
    "make_session",
    "odata_equals",
]
