# scripts/migrate_payment_data.py
# usage: python scripts/migrate_payment_data.py [migrate|rollback|validate]
import argparse
import logging
import sys

from paybridge.domain.migration import service as migration_service
from paybridge.infra.supabase.account_repo import SupabaseAccountStore
from paybridge.services.payments.errors import MigrationAborted


def main(argv=None, store=None) -> int:
    parser = argparse.ArgumentParser(description="Move card billing data between legacy and generic columns")
    parser.add_argument("operation", choices=migration_service.OPERATIONS)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    try:
        report = migration_service.run(store or SupabaseAccountStore(), args.operation)
    except MigrationAborted as exc:
        logging.error("%s", exc)
        return 1

    logging.info("%s done: %s", args.operation, report.as_dict())
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
