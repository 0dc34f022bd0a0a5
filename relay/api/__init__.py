"""
HTTP API layer.
"""

from relay.api.identity import HeaderIdentityProvider, Identity, IdentityProvider
from relay.api.server import RelayServer, create_app

__all__ = [
    "HeaderIdentityProvider",
    "Identity",
    "IdentityProvider",
    "RelayServer",
    "create_app",
]
