import argparse
import logging
import sys

from sqlmodel import Session

from wikishelf.core.database import engine, init_db
from wikishelf.services.permission_service import rebuild_all


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Regenerate effective (joint) permissions for every book, chapter and page.",
    )
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before regenerating.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    if args.create_tables:
        init_db()

    with Session(engine) as db:
        total = rebuild_all(db)

    print(f"regenerated permissions for {total} entities")
    return 0


if __name__ == "__main__":
    sys.exit(main())
