"""
Issue an API key against the configured database (local development).

    python -m scripts.bootstrap_dev --tier PREMIUM --name "Local testing"

Tables are created first if they are missing. The raw key is printed
once and cannot be recovered afterwards; issue a new one if it is lost.
"""

import argparse
import asyncio

from app.core.config import settings
from app.core.database import build_engine, build_session_factory, create_schema
from app.services.api_keys import CredentialService, IssuedKey
from app.services.tiers import Tier, build_tier_table


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument(
        "--tier",
        type=str.upper,
        choices=[tier.value for tier in Tier],
        default=Tier.BASIC.value,
    )
    parser.add_argument("--name", default="Dev Key")
    return parser.parse_args(argv)


async def issue(tier: Tier, name: str) -> IssuedKey:
    engine = build_engine(settings.DATABASE_URL)
    try:
        await create_schema(engine)
        credentials = CredentialService(build_session_factory(engine), build_tier_table(settings))
        return await credentials.create(name, tier)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    issued = asyncio.run(issue(Tier(args.tier), args.name))

    print(f"{issued.name}: {issued.tier.value} tier, {issued.request_limit} requests/hour")
    print(f"id   {issued.id}")
    print(f"key  {issued.key}")
    print("Store the key now; only its hash is kept.")


if __name__ == "__main__":
    main()
