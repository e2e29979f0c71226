"""CLI entry point: assemble and print one user's training context."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import date
from typing import Sequence

from .assembler import load_training_context
from .config import Config
from .logging import setup_logging
from .metrics import get_metrics
from .prompt import render_context
from .sources import HttpRecoveryProvider, PostgresDocumentSource


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coach-context",
        description="Assemble the AI coaching context for one user from stored workout history.",
    )
    parser.add_argument(
        "--user-id",
        required=True,
        help="User id whose documents should be aggregated.",
    )
    parser.add_argument(
        "--format",
        default="json",
        choices=("json", "prompt"),
        help="Print the context as camelCase JSON or as the rendered prompt block.",
    )
    parser.add_argument(
        "--today",
        default=None,
        type=date.fromisoformat,
        help="Reference date (YYYY-MM-DD) for recency math. Defaults to today in COACH_CTX_TIMEZONE.",
    )
    parser.add_argument(
        "--metrics",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Also print the in-process fetch metrics to stderr.",
    )
    return parser


async def _run(args: argparse.Namespace, config: Config) -> int:
    if not config.database_url:
        raise RuntimeError("DATABASE_URL must be set")

    source = PostgresDocumentSource(config.database_url)
    recovery = None
    if config.recovery_url:
        recovery = HttpRecoveryProvider(
            config.recovery_url,
            api_key=config.recovery_api_key,
            timeout=config.fetch_timeout_seconds,
        )

    try:
        context = await load_training_context(
            args.user_id,
            source,
            recovery,
            config=config,
            today=args.today,
        )
    finally:
        if recovery is not None:
            await recovery.aclose()

    if args.format == "prompt":
        print(render_context(context))
    else:
        print(json.dumps(json.loads(context.to_json()), indent=2, sort_keys=True))

    if args.metrics:
        print(json.dumps(get_metrics(), indent=2, sort_keys=True), file=sys.stderr)
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    config = Config.from_env()
    setup_logging(config.log_format, config.log_level)
    raise SystemExit(asyncio.run(_run(args, config)))


if __name__ == "__main__":
    main()
