#!/usr/bin/env python3
"""
Live Preview - serve a workspace and reload browsers when files change
"""

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from .config import SETTINGS_SECTION_ID, AutoRefreshPreview, Settings, SettingsStore, setup_logging
from .interface import LivePreviewInterface

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = '.live-preview.yaml'


class PreviewRunner:
    """Main runner for the live preview server"""

    def __init__(self, args: argparse.Namespace):
        self.workspace_root = Path(args.root).resolve() if args.root else None
        config_path = Path(args.config) if args.config else None
        if config_path is None and self.workspace_root:
            # Created on the first persisted change, e.g. "Don't show again"
            config_path = self.workspace_root / DEFAULT_CONFIG_NAME

        settings = Settings.from_yaml(config_path) if config_path and config_path.is_file() else Settings()
        # Command line flags override the settings file
        overrides = {
            'port': args.port,
            'host': args.host,
            'serve_root': args.serve_root,
            'auto_refresh_preview': args.auto_refresh,
        }
        settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})

        self.settings_store = SettingsStore(settings, config_path)
        self.interface = LivePreviewInterface(self.workspace_root, self.settings_store)
        self.running = False

    async def run(self) -> int:
        try:
            await self.interface.initialize()
        except RuntimeError as e:
            logger.error(str(e))
            await self.interface.shutdown()
            return 1

        self.running = True
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.handle_signal, sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform; Ctrl+C raises KeyboardInterrupt instead
                pass

        try:
            await self.interface.run()
        finally:
            await self.shutdown()
        return 0

    def handle_signal(self, sig):
        """Handle system signals"""
        logger.info(f"Received signal {sig}")
        self.interface.stop()

    async def shutdown(self):
        """Shutdown the server gracefully"""
        if not self.running:
            return
        self.running = False
        logger.info("Shutting down live preview...")
        await self.interface.shutdown()
        logger.info("Shutdown complete")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='live-preview',
        description='Serve a folder over HTTP and reload connected browsers when files change.')
    parser.add_argument('root', nargs='?', default='.', help='Workspace folder to serve (default: current directory)')
    parser.add_argument('--port', type=int, help='HTTP port; the WebSocket server uses the next free port')
    parser.add_argument('--host', help='Address to bind (default: 127.0.0.1)')
    parser.add_argument('--serve-root', dest='serve_root', help='Sub folder of the workspace used as document root')
    parser.add_argument('--auto-refresh', dest='auto_refresh', choices=[p.value for p in AutoRefreshPreview],
                        help='When browsers reload')
    parser.add_argument('--config', help=f'YAML settings file (default: ROOT/{DEFAULT_CONFIG_NAME}, '
                                         f'optionally under a "{SETTINGS_SECTION_ID}" key)')
    parser.add_argument('--logs-dir', dest='logs_dir', help='Directory for rotating log files')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(Path(args.logs_dir) if args.logs_dir else None,
                  level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        runner = PreviewRunner(args)
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    try:
        return asyncio.run(runner.run())
    except KeyboardInterrupt:
        return 0


if __name__ == '__main__':
    sys.exit(main())
