"""Status shown by the host for the running server.

Rendering belongs to the host; this keeps the text and tooltip it should show.
"""

import logging
from pathlib import Path
from typing import Optional

from ..events import Disposable

logger = logging.getLogger(__name__)


class StatusBarNotifier(Disposable):

    def __init__(self, extension_path: Optional[Path] = None):
        super().__init__()
        self.extension_path = extension_path
        self.text = ''
        self.tooltip = ''
        self.port: Optional[int] = None
        self.server_off()

    @property
    def is_on(self) -> bool:
        return self.port is not None

    def server_on(self, port: int) -> None:
        self.port = port
        self.text = f'Live Preview (port: {port})'
        self.tooltip = f'Live preview server running on port {port}'
        logger.debug("Status: %s", self.text)

    def server_off(self) -> None:
        self.port = None
        self.text = 'Live Preview (off)'
        self.tooltip = 'Live preview server not running'
        logger.debug("Status: %s", self.text)

    def update_configurations(self) -> None:
        """Re-render with the current state after a settings change."""
        if self.port is not None:
            self.server_on(self.port)
        else:
            self.server_off()
