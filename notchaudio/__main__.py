"""
Run the now-playing service:  python -m notchaudio [--debug]
"""

import argparse
import asyncio
import logging

from .service import NowPlayingService

logger = logging.getLogger('notchaudio')


def main():
    parser = argparse.ArgumentParser(description='Notch now-playing service')
    parser.add_argument('--debug', action='store_true',
                        help='verbose logging (every probe error and broadcast)')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    service = NowPlayingService.from_config()
    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
