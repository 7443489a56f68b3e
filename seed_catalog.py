import argparse
import asyncio
import json
import sys

from shopfront.config import Settings
from shopfront.errors import ConflictError
from shopfront.model.schemas import ProductIn
from shopfront.model.storage import open_storage

# Starter catalog
SAMPLE_PRODUCTS = [
    {"id": "shoe-1", "name": "Trail Runner", "price_cents": 2000,
     "inventory": 5, "category": "Shoes", "brand": "Northline",
     "size": "42", "condition": "Like new"},
    {"id": "jacket-1", "name": "Rain Shell", "price_cents": 4500,
     "inventory": 2, "category": "Outerwear", "brand": "Fjell",
     "size": "M"},
    {"id": "cap-1", "name": "Wool Cap", "price_cents": 900,
     "inventory": 12, "category": "Accessories"},
]


async def seed(settings: Settings, products) -> None:
    async with open_storage(settings) as storage:
        created = 0
        for raw in products:
            try:
                p = await storage.catalog.create_product(ProductIn(**raw))
            except ConflictError:
                print(f'   - {raw.get("id")}: exists, skipped')
                continue
            created += 1
            print(f'   - {p.id}: {p.name} ({p.inventory} in stock)')
        print(f'✅ {created} products created')


def main() -> None:
    ap = argparse.ArgumentParser(
        description="Seed the catalog of the configured store."
    )
    ap.add_argument("--file", help="JSON array of products "
                                   "(defaults to the built-in sample)")
    args = ap.parse_args()

    products = SAMPLE_PRODUCTS
    if args.file:
        with open(args.file, "r", encoding="utf-8") as f:
            products = json.load(f)
        if not isinstance(products, list):
            print("product file must contain a JSON array", file=sys.stderr)
            sys.exit(1)

    asyncio.run(seed(Settings.from_env(), products))


if __name__ == '__main__':
    main()
