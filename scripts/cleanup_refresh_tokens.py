from __future__ import annotations

import argparse
import asyncio
import sys

from siteportal.persistence.db import SessionLocal
from siteportal.services.auth.tokens import cleanup_expired_tokens


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Delete expired refresh tokens")
    return parser


async def _cleanup() -> int:
    # Expired rows are useless for validation; revoked-but-live rows are kept until they expire.
    async with SessionLocal() as session:
        removed = await cleanup_expired_tokens(session)
        await session.commit()
    print(f"Removed {removed} expired refresh tokens")
    return 0


def main() -> int:
    parser = _build_parser()
    parser.parse_args()
    try:
        return asyncio.run(_cleanup())
    except Exception as exc:  # noqa: BLE001 - surface maintenance failures clearly
        print(f"cleanup_refresh_tokens failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
