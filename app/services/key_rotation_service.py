"""
Offline re-encryption of booking details under a new master key.

Safe to re-run: bundles already sealed with the new key are skipped, bundles
that the old key cannot open are reported and left untouched.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from sqlalchemy.orm import Session

from app.core.encryption import DecryptionFailure, FieldCipher
from app.models import Booking

logger = logging.getLogger(__name__)


@dataclass
class RotationReport:
    total: int = 0
    migrated: int = 0
    skipped: int = 0
    failed: int = 0
    dry_run: bool = False
    failures: List[Tuple[str, str]] = field(default_factory=list)


def rotate_booking_details(
    db: Session,
    old_cipher: FieldCipher,
    new_cipher: FieldCipher,
    dry_run: bool = False,
    batch_size: int = 100,
) -> RotationReport:
    """
    Re-seal every booking's details with ``new_cipher``.

    Args:
        db: Database session
        old_cipher: Cipher for the key being retired
        new_cipher: Cipher for the current key
        dry_run: Count what would change without writing
        batch_size: Commit after this many migrated records

    Returns:
        RotationReport with per-record outcomes
    """
    report = RotationReport(dry_run=dry_run)
    bookings = (
        db.query(Booking)
        .filter(Booking.encrypted_details.isnot(None))
        .order_by(Booking.id)
        .all()
    )
    pending = 0
    for booking in bookings:
        report.total += 1
        bundle = booking.encrypted_details
        if isinstance(bundle, dict) and bundle.get("kid") == new_cipher.kid:
            report.skipped += 1
            continue

        details = old_cipher.open(bundle)
        if isinstance(details, DecryptionFailure):
            report.failed += 1
            report.failures.append((booking.id, details.reason))
            logger.warning("KEY_ROTATION_FAILED booking_id=%s reason=%s", booking.id, details.reason)
            continue

        report.migrated += 1
        if dry_run:
            continue
        booking.encrypted_details = new_cipher.seal(details)
        db.add(booking)
        pending += 1
        if pending >= batch_size:
            db.commit()
            pending = 0

    if pending:
        db.commit()
    logger.info(
        "KEY_ROTATION_COMPLETE total=%d migrated=%d skipped=%d failed=%d dry_run=%s",
        report.total, report.migrated, report.skipped, report.failed, dry_run,
    )
    return report
