from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Sequence

from dotenv import load_dotenv

from shipshape.core.config import DEFAULT_EVENT, ShipshapeConfig
from shipshape.core.invocation import Invocation, Options

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool) -> None:
    """Configure root logging based on verbosity level."""
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # Set log level for specific loggers to reduce noise
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("docker").setLevel(logging.WARNING)


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_args(argv: Sequence[str], config: Optional[ShipshapeConfig] = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    config = config or ShipshapeConfig()
    parser = argparse.ArgumentParser(description="Run shipshape analyzers over a local file or directory.")
    parser.add_argument("file", help="File or directory to analyze.")
    parser.add_argument(
        "--analyzer_images",
        type=_split_list,
        default=[],
        help="Comma-separated list of third-party analyzer images (default: from .shipshape).",
    )
    parser.add_argument(
        "--build",
        default="",
        help="Build system to extract compilation units with (e.g. maven); enables the post-build phase.",
    )
    parser.add_argument(
        "--categories",
        type=_split_list,
        default=[],
        help="Comma-separated list of categories to run (default: from .shipshape for the event).",
    )
    parser.add_argument("--dind", action="store_true", help="Pass the local docker daemon through to containers.")
    parser.add_argument("--event", default=DEFAULT_EVENT, help=f"Event to run for (default: {DEFAULT_EVENT}).")
    parser.add_argument("--json_output", default="", help="Write results to this file as JSON lines.")
    parser.add_argument("--repo", default=config.default_repo, help=f"Image registry prefix (default: {config.default_repo}).")
    parser.add_argument("--stay_up", action="store_true", help="Keep containers running after the run.")
    parser.add_argument(
        "--tag",
        default=config.default_tag,
        help=f"Image tag to use; 'local' skips all pulls (default: {config.default_tag}).",
    )
    parser.add_argument("--local_kythe", action="store_true", help="Do not pull the Kythe image.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the shipshape command."""
    load_dotenv()
    config = ShipshapeConfig()
    args = parse_args(sys.argv[1:] if argv is None else argv, config)
    configure_logging(args.verbose)

    options = Options(
        file=args.file,
        third_party_analyzers=args.analyzer_images,
        build=args.build,
        trigger_cats=args.categories,
        dind=args.dind,
        event=args.event,
        json_output=args.json_output,
        repo=args.repo,
        stay_up=args.stay_up,
        tag=args.tag,
        local_kythe=args.local_kythe,
    )
    result = Invocation(options, config=config).run()
    if not result.success:
        logger.error("%s", result.error)
        return 1

    logger.info("Found %d notes", result.note_count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
