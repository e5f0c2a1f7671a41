"""Host environment the live preview server runs inside.

The host resolves local addresses into addresses the user's browser can
reach, shows messages to the user and keeps the registry of port attribute
providers. The default implementation logs messages instead of rendering
them, which is what the command line runner uses.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Protocol
from urllib.parse import urlsplit, urlunsplit

from .events import Disposable

logger = logging.getLogger(__name__)


class PortAutoForwardAction(Enum):
    NOTIFY = 1
    OPEN_BROWSER = 2
    OPEN_PREVIEW = 3
    SILENT = 4
    IGNORE = 5


@dataclass(frozen=True)
class PortAttributes:
    auto_forward_action: PortAutoForwardAction


class PortAttributesProvider(Protocol):
    def provide_port_attributes(self, port: int) -> Optional[PortAttributes]:
        ...


class HostEnvironment:
    """Default host: URI rewriting for tunnels, logged messages."""

    def __init__(self, external_host: Optional[str] = None, port_forwards: Optional[Dict[int, int]] = None):
        self.external_host = external_host
        self.port_forwards: Dict[int, int] = dict(port_forwards or {})
        self._port_attribute_providers: List[PortAttributesProvider] = []

    async def as_external_uri(self, uri: str) -> str:
        """Resolve a local URI to one reachable by the user's client.

        Without an external host or a forward for the port this is the
        identity.
        """
        parts = urlsplit(uri)
        if parts.hostname is None or parts.port is None:
            raise ValueError(f"Cannot resolve URI without host and port: {uri}")
        host = self.external_host or parts.hostname
        port = self.port_forwards.get(parts.port, parts.port)
        if host == parts.hostname and port == parts.port:
            return uri
        if ':' in host and not host.startswith('['):
            host = f'[{host}]'
        return urlunsplit((parts.scheme, f'{host}:{port}', parts.path, parts.query, parts.fragment))

    def show_warning_message(self, message: str) -> None:
        logger.warning(message)

    def show_error_message(self, message: str) -> None:
        logger.error(message)

    async def show_information_message(self, message: str, *items: str) -> Optional[str]:
        """Show `message` with optional choices; returns the chosen item or None."""
        logger.info(message)
        return None

    def register_port_attributes_provider(self, provider: PortAttributesProvider) -> Disposable:
        self._port_attribute_providers.append(provider)

        def _unregister():
            try:
                self._port_attribute_providers.remove(provider)
            except ValueError:
                pass

        return Disposable.from_callable(_unregister)

    def provide_port_attributes(self, port: int) -> Optional[PortAttributes]:
        """Ask registered providers about `port`; the first answer wins."""
        for provider in list(self._port_attribute_providers):
            attributes = provider.provide_port_attributes(port)
            if attributes is not None:
                return attributes
        return None
