import argparse
import asyncio
import json
import logging
import time

from dotenv import load_dotenv

from core.schemas import PersonalizedContentRequest
from services.config import load_config
from services.logging import setup_logging
from workflows.pipeline_factory import create_pipeline_from_config


def _max_articles(value: str) -> int:
    count = int(value)
    if not 1 <= count <= 20:
        raise argparse.ArgumentTypeError(f"must be between 1 and 20, got {count}")
    return count


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a personalized sports digest")
    parser.add_argument("--user-id", required=True, help="User to generate the digest for")
    parser.add_argument("--max-articles", type=_max_articles, default=None,
                        help="Number of ranked items to summarize (default: config TOP_K)")
    parser.add_argument("--force-refresh", action="store_true",
                        help="Bypass the content cache")
    parser.add_argument("--config", default=None, help="Path to config.yml")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    start_time = time.perf_counter()
    args = parse_args(argv)

    load_dotenv()
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    logger = logging.getLogger(__name__)

    config = load_config(args.config)
    request = PersonalizedContentRequest(
        user_id=args.user_id,
        max_articles=args.max_articles,
        force_refresh=args.force_refresh,
    )

    logger.info(f"Starting personalized digest run for {request.user_id}")
    pipeline = create_pipeline_from_config(config)
    response = await pipeline.run(request)

    print(json.dumps(response.to_dict(), indent=2))

    end_time = time.perf_counter()
    logger.info(f"Total time: {end_time - start_time:.2f}s")
    return 0


def cli() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
