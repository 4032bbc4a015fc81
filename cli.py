"""
Command-line interface for capturepipe - attach heatmap and session-replay
collectors to a running browser.
"""
import argparse
import asyncio
import logging
import os

from .config import DEFAULT_HOST, HeatmapConfig, RecorderConfig
from .monitor import CaptureMonitor


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Capture heatmap and session-replay telemetry from a running browser instance.',
        prog='capturepipe'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        required=True,
        help='The CDP port of the target browser instance.'
    )
    parser.add_argument(
        '--api-key',
        default=os.environ.get('CAPTUREPIPE_API_KEY'),
        help='Project API key (default: $CAPTUREPIPE_API_KEY).'
    )
    parser.add_argument(
        '--host',
        default=os.environ.get('CAPTUREPIPE_HOST', DEFAULT_HOST),
        help='Base URL of the analytics backend.'
    )
    parser.add_argument('--user-id', help='Tag events with this user id from the start.')
    parser.add_argument('--no-heatmap', action='store_true', help='Do not run the heatmap tracker.')
    parser.add_argument('--no-recorder', action='store_true', help='Do not run the session recorder.')
    parser.add_argument('--no-network', action='store_true', help='Do not record network requests.')
    parser.add_argument(
        '--track-all-tabs',
        action='store_true',
        help='Capture every tab and pop-up, including ones opened later.'
    )
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging.')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.api_key:
        parser.error('an API key is required (--api-key or CAPTUREPIPE_API_KEY)')

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(name)s %(levelname)s: %(message)s'
    )

    heatmap = None if args.no_heatmap else HeatmapConfig(
        api_key=args.api_key, host=args.host, user_id=args.user_id)
    recorder = None if args.no_recorder else RecorderConfig(
        api_key=args.api_key, host=args.host, user_id=args.user_id, capture_network=not args.no_network)

    async def run():
        monitor = CaptureMonitor(cdp_port=args.port, heatmap_config=heatmap,
                                 recorder_config=recorder, track_all_tabs=args.track_all_tabs)
        await monitor.start()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\n[capturepipe] Interrupted. Exiting.")
    except Exception as e:
        print(f"\n[capturepipe] A critical error occurred: {e}")


if __name__ == "__main__":
    main()
