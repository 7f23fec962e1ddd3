"""Entry point: ``python -m quipcast.surface <target-url> [--debug]``."""

from __future__ import annotations

import argparse
import asyncio
import logging

from quipcast.surface.app import BroadcastSurface, SurfaceConfig

logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="quipcast headless broadcast surface")
    parser.add_argument("url", help="Render target URL (capture options in the query string)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="[%(asctime)s] %(name)s - %(levelname)s - %(message)s",
    )
    cfg = SurfaceConfig.from_url(args.url)
    try:
        asyncio.run(BroadcastSurface(cfg).run())
    except KeyboardInterrupt:
        logger.info("surface: interrupted")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
