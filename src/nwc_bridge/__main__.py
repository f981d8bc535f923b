"""Command line entry point: python -m nwc_bridge run"""

import argparse
import asyncio
import signal
import sys

from loguru import logger

from .bridge import NWCBridge
from .config import BridgeConfig, configure_logging
from .errors import BridgeError


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="nwc-bridge",
        description="bridge nostr wallet connect requests from services to a user's wallet")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="run the bridge")
    run.add_argument("--data-dir", help="directory holding db.sqlite")
    run.add_argument("--relay", dest="default_relay",
                     help="relay handed out in service connections")
    run.add_argument("--log-level", help="loguru level, e.g. DEBUG")
    return parser.parse_args(argv)


async def _run(bridge: NWCBridge):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, bridge.stop)
        except NotImplementedError:
            # not available on windows, ctrl-c raises KeyboardInterrupt there
            pass
    await bridge.run()


def main(argv=None):
    args = parse_args(argv)
    config = BridgeConfig.from_env(
        data_dir=args.data_dir,
        default_relay=args.default_relay,
        log_level=args.log_level)
    configure_logging(config.log_level)

    try:
        bridge = NWCBridge(config)
    except BridgeError as e:
        logger.error(f"nwc failed to start: {e}")
        return 1

    logger.info(f"nwc bridge starting, data in {config.data_dir}")
    try:
        asyncio.run(_run(bridge))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
