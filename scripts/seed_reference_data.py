#!/usr/bin/env python3
"""
Seed reference data: payment gateways and Ô Secours token policies.

The policy file is JSON; token prices are never built into the code.

    {
        "secours_policies": [
            {"subscription_type": "motors", "token_value_fcfa": "250",
             "min_tokens": 10, "max_tokens": 1000}
        ],
        "gateways": {
            "moov_money": {"is_active": false}
        }
    }

Usage:
    # Persist the built-in gateway list and the policies in seed.json
    python3 scripts/seed_reference_data.py --file seed.json

    # Only persist the built-in gateway list
    python3 scripts/seed_reference_data.py

    # Show what would be written
    python3 scripts/seed_reference_data.py --file seed.json --dry-run
"""

import argparse
import asyncio
import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Any

from app.db.session import close_engines, get_session
from app.models.api import SubscriptionType
from app.models.domain import TokenPolicy
from app.observability import get_logger, setup_logging
from app.services.gateway_registry import gateway_registry
from app.services.secours_policy import DatabaseSecoursPolicy

setup_logging()
logger = get_logger("seed_reference_data")


def load_seed_file(path: Path) -> dict[str, Any]:
    """Read and validate the seed file."""
    data = json.loads(path.read_text())
    policies = [
        TokenPolicy(
            subscription_type=SubscriptionType(entry["subscription_type"]).value,
            token_value_fcfa=Decimal(str(entry["token_value_fcfa"])),
            min_tokens=int(entry["min_tokens"]),
            max_tokens=int(entry["max_tokens"]),
        )
        for entry in data.get("secours_policies", [])
    ]
    return {"policies": policies, "gateways": data.get("gateways", {})}


async def seed(seed_data: dict[str, Any], dry_run: bool) -> None:
    async with get_session() as session:
        await gateway_registry.refresh(session)

        for gateway in gateway_registry.get_all_gateways():
            changes = seed_data["gateways"].get(gateway.id, {})
            if dry_run:
                logger.info("seed_gateway_dry_run", gateway_id=gateway.id, changes=changes)
                continue
            await gateway_registry.update_gateway(gateway.id, changes, session)

        policy_store = DatabaseSecoursPolicy(session)
        for policy in seed_data["policies"]:
            if dry_run:
                logger.info(
                    "seed_policy_dry_run",
                    subscription_type=policy.subscription_type,
                    token_value_fcfa=str(policy.token_value_fcfa),
                )
                continue
            await policy_store.set_policy(policy)

    await close_engines()


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed gateways and Ô Secours policies")
    parser.add_argument("--file", type=Path, help="JSON seed file")
    parser.add_argument("--dry-run", action="store_true", help="Log changes without writing")
    args = parser.parse_args()

    seed_data: dict[str, Any] = {"policies": [], "gateways": {}}
    if args.file is not None:
        try:
            seed_data = load_seed_file(args.file)
        except (OSError, ValueError, KeyError) as exc:
            logger.error("seed_file_invalid", path=str(args.file), error=str(exc))
            return 1

    unknown = set(seed_data["gateways"]) - {g.id for g in gateway_registry.get_all_gateways()}
    if unknown:
        logger.error("seed_unknown_gateways", gateway_ids=sorted(unknown))
        return 1

    asyncio.run(seed(seed_data, args.dry_run))
    logger.info(
        "seed_completed",
        policies=len(seed_data["policies"]),
        gateway_overrides=len(seed_data["gateways"]),
        dry_run=args.dry_run,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
