"""
Remote module for pattern-sync.

    - client: RemoteStoreClient, the async HTTP client for the pattern store
    - session: TokenSession and the SessionProvider protocol
"""

from pattern_sync.remote.client import RemoteStoreClient, parse_library_payload
from pattern_sync.remote.session import SessionProvider, TokenSession

__all__ = [
    "RemoteStoreClient",
    "parse_library_payload",
    "SessionProvider",
    "TokenSession",
]
