"""
CLI interface for GuildREL

Exit codes:
    0  result computed
    1  could not compute (storage failure, bad configuration)
    2  computed, but no relationship found
"""

import sys
import json
import logging
import argparse
from typing import Any, Dict, Optional

from . import config
from .affinity import AffinityService
from .exceptions import ConfigError, StorageUnavailableError
from .report_generator import build_top_report, render_analysis, render_score, render_top
from .store import SQLiteStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_RELATIONSHIP = 2


def _emit(payload: Dict[str, Any], text: Optional[str], output_file: Optional[str]) -> None:
    if output_file:
        with open(output_file, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        logger.info(f"Report saved to {output_file}")
    if text is not None:
        print(text)
    elif not output_file:
        print(json.dumps(payload, indent=2))


def run_affinity(service: AffinityService, args) -> int:
    score = service.calculate_affinity(args.from_user, args.to_user, args.guild)
    text = render_score(score, args.from_user, args.to_user) if args.text else None
    _emit(score.to_dict(), text, args.output_file)

    if score.total_score <= 0:
        logger.info(f"No relationship found from {args.from_user} to {args.to_user}")
        return EXIT_NO_RELATIONSHIP
    return EXIT_OK


def run_analyze(service: AffinityService, args) -> int:
    analysis = service.analyze_relationship(args.user1, args.user2, args.guild)
    text = render_analysis(analysis) if args.text else None
    _emit(analysis.to_dict(), text, args.output_file)

    logger.info(f"Mutual score {analysis.mutual_score:.2f} ({analysis.relationship_type})")
    if analysis.mutual_score <= 0:
        return EXIT_NO_RELATIONSHIP
    return EXIT_OK


def run_top(service: AffinityService, args) -> int:
    scores = service.get_top_relationships(args.user, args.guild, args.limit)
    profile = service.store.fetch_user(args.user, args.guild)
    report = build_top_report(args.user, profile, scores, service.scoring.classifier_thresholds)

    text = None
    if args.text:
        labels = {}
        for score in scores:
            target = service.store.fetch_user(score.to_user, args.guild)
            labels[score.to_user] = target.label if target else "Unknown User"
        text = render_top(report, scores, labels)
    _emit(report, text, args.output_file)

    if not scores:
        logger.info(f"No relationships found for {args.user}")
        return EXIT_NO_RELATIONSHIP
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="GuildREL - Discord guild affinity scoring"
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--guild",
        default=config.GUILD_ID,
        help="Guild ID (default: GUILD_ID from environment)"
    )
    common.add_argument(
        "--db",
        dest="db_path",
        default=config.DB_PATH,
        help="Path to the SQLite interaction store"
    )
    common.add_argument(
        "-o", "--output",
        dest="output_file",
        help="Output JSON file path"
    )
    common.add_argument(
        "--text",
        action="store_true",
        help="Print a human-readable report instead of JSON"
    )
    common.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose logging"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("affinity", parents=[common], help="Directional affinity FROM -> TO")
    p.add_argument("from_user")
    p.add_argument("to_user")
    p.set_defaults(handler=run_affinity)

    p = sub.add_parser("analyze", parents=[common], help="Bidirectional relationship analysis")
    p.add_argument("user1")
    p.add_argument("user2")
    p.set_defaults(handler=run_analyze)

    p = sub.add_parser("top", parents=[common], help="Top relationships for a user")
    p.add_argument("user")
    p.add_argument("-n", "--limit", type=int, default=10, help="Number of relationships")
    p.set_defaults(handler=run_top)

    return parser


def main(argv=None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.guild:
        logger.error("No guild given (use --guild or set GUILD_ID)")
        return EXIT_FAILED

    valid, msg = config.validate_config()
    if not valid:
        logger.error(f"Configuration error: {msg}")
        return EXIT_FAILED

    try:
        service = AffinityService(SQLiteStore(args.db_path))
        return args.handler(service, args)
    except StorageUnavailableError as e:
        logger.error(f"Could not compute relationship: {e}")
        return EXIT_FAILED
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
