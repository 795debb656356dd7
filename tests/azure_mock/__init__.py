"""Azure API Mock for provider testing.

In-memory stand-ins for the Azure resource, network and compute APIs used
by the provider, so tests run without Azure connectivity.

Key Features:
- In-memory state keyed by resource kind and scope
- Long-running operation pollers
- Error injection per kind and method (on the call or on the poller)
- Call recording for ordering assertions
- Managed Identity simulation

Usage:
    from azure_mock import MockAzureContext

    with MockAzureContext() as ctx:
        provider = AzureProvider("westeurope", lookup, client_factory=ctx.client_factory)
        ...
        assert ctx.state.delete_order() == [...]
"""

from .context import MockAzureContext, mock_azure_context
from .credential import MockManagedIdentityCredential, create_mock_credential
from .resources import MockCall, MockCloudState, MockPoller, MockResourceClient, http_error

__all__ = [
    "MockAzureContext",
    "MockCall",
    "MockCloudState",
    "MockManagedIdentityCredential",
    "MockPoller",
    "MockResourceClient",
    "create_mock_credential",
    "http_error",
    "mock_azure_context",
]
