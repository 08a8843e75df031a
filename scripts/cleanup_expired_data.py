#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import replace
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from exposure_chain.config import settings
from exposure_chain.infra.logging import configure_logging
from exposure_chain.infra.store import build_store
from exposure_chain.services.retention_service import RetentionService


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delete interactions, notifications and reports past retention")
    parser.add_argument("--retention-days", type=int, default=settings.retention_days, help="Days to keep data")
    parser.add_argument("--page-size", type=int, default=500, help="Documents deleted per batch (max 500)")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> dict[str, object]:
    config = replace(settings, retention_days=max(1, args.retention_days))
    store, using_supabase, message = build_store(config)
    stats = await RetentionService(store, config=config, page_size=args.page_size).cleanup()
    return {
        "persistence": "supabase" if using_supabase else "memory",
        "store_message": message,
        "retention_days": config.retention_days,
        **stats.to_dict(),
    }


def main() -> None:
    configure_logging(json_output=settings.log_json, level=settings.log_level)
    args = parse_args()
    print(json.dumps(asyncio.run(run(args)), indent=2))


if __name__ == "__main__":
    main()
