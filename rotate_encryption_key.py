"""
Re-encrypt stored booking details after the master key changed.

Set TOURBOOK_ENCRYPTION_KEY to the new key, then run:

    python rotate_encryption_key.py --old-key <64 hex chars> [--dry-run]

Records already sealed under the new key are skipped, so the script can be
re-run after a partial failure.
"""
import argparse
import sys

from app.core.config import get_settings
from app.core.encryption import FieldCipher, get_field_cipher
from app.core.errors import ConfigurationError
from app.core.logging_config import configure_logging
from app.db.session import SessionLocal
from app.services.key_rotation_service import rotate_booking_details


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Re-encrypt booking details under the current encryption key")
    parser.add_argument("--old-key", required=True, help="Previous key as 64 hex characters")
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing")
    parser.add_argument("--batch-size", type=int, default=100)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging(get_settings())
    try:
        old_cipher = FieldCipher.from_hex(args.old_key)
        new_cipher = get_field_cipher()
    except ConfigurationError as exc:
        print(f"Key error: {exc}")
        return 2

    if old_cipher.kid == new_cipher.kid:
        print("Old and new keys are identical; nothing to do.")
        return 0

    db = SessionLocal()
    try:
        report = rotate_booking_details(db, old_cipher, new_cipher, dry_run=args.dry_run, batch_size=args.batch_size)
    finally:
        db.close()

    print(f"Bookings with details: {report.total}")
    print(f"  {'Would migrate' if report.dry_run else 'Migrated'}: {report.migrated}")
    print(f"  Already on new key: {report.skipped}")
    print(f"  Failed: {report.failed}")
    for booking_id, reason in report.failures:
        print(f"    {booking_id}: {reason}")
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
