from __future__ import annotations

import argparse
import asyncio
import sys

from siteportal.persistence.db import SessionLocal
from siteportal.persistence.repos.sites import get_site_by_slug, regenerate_api_key
from siteportal.services.security_log import SecurityEventLog


def _build_parser() -> argparse.ArgumentParser:
    # Rotation invalidates the old key immediately; require the slug explicitly.
    parser = argparse.ArgumentParser(description="Regenerate the public API key of a site")
    parser.add_argument("slug", help="Site slug")
    return parser


async def _regenerate(slug: str) -> int:
    async with SessionLocal() as session:
        site = await get_site_by_slug(session, slug)
        if site is None:
            raise ValueError("Site not found")
        await regenerate_api_key(session, site)
        await session.commit()
        site_id, api_key = site.id, site.api_key

    await SecurityEventLog().log(
        "admin_action",
        details={"action": "regenerate_api_key", "site_id": site_id, "actor": "regenerate_site_api_key"},
    )
    print(f"New API key for {slug}: {api_key}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_regenerate(args.slug))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"regenerate_site_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
