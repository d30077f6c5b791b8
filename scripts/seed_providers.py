"""
Upsert providers from a CSV file.

CSV columns: id, name, phone, timezone, service_areas, is_verified
service_areas is a semicolon-separated list of cities (empty = everywhere).

Usage:
    python scripts/seed_providers.py providers.csv
    python scripts/seed_providers.py providers.csv --verify
"""
import argparse
import asyncio
import csv
import logging

from leadgate.database import async_session_factory
from leadgate.repositories.providers import ProviderRepository
from leadgate.utils.phone import normalize_phone_e164

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "y"}


def parse_row(row: dict, force_verify: bool = False) -> dict | None:
    """CSV row -> provider fields, or None when the phone doesn't parse."""
    phone = normalize_phone_e164(row.get("phone"))
    if not phone:
        return None
    areas = [a.strip() for a in (row.get("service_areas") or "").split(";") if a.strip()]
    return {
        "name": (row.get("name") or "").strip() or None,
        "phone": phone,
        "timezone": (row.get("timezone") or "").strip() or None,
        "service_areas": areas,
        "is_verified": force_verify or (row.get("is_verified") or "").strip().lower() in TRUE_VALUES,
    }


async def seed(path: str, force_verify: bool):
    created = updated = skipped = 0
    async with async_session_factory() as db:
        repo = ProviderRepository(db)
        with open(path, newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                provider_id = (row.get("id") or "").strip()
                fields = parse_row(row, force_verify)
                if not provider_id or fields is None:
                    logger.warning("Skipping row %r: missing id or invalid phone", row.get("id"))
                    skipped += 1
                    continue
                _, was_created = await repo.upsert(provider_id, fields)
                if was_created:
                    created += 1
                else:
                    updated += 1
        await db.commit()
    logger.info("Providers seeded: created=%d updated=%d skipped=%d", created, updated, skipped)


def main():
    parser = argparse.ArgumentParser(description="Upsert providers from CSV")
    parser.add_argument("path")
    parser.add_argument("--verify", action="store_true", help="mark every provider verified")
    args = parser.parse_args()
    asyncio.run(seed(args.path, args.verify))


if __name__ == "__main__":
    main()
