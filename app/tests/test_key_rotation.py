import os
from datetime import date

import pytest

from app.core.encryption import DecryptionFailure, FieldCipher
from app.models import Booking
from app.services import booking_service
from app.services.key_rotation_service import rotate_booking_details


@pytest.fixture()
def old_cipher():
    return FieldCipher(os.urandom(32))


@pytest.fixture()
def new_cipher():
    return FieldCipher(os.urandom(32))


def _book(db, cipher, user, email):
    return booking_service.create_booking(
        db, cipher, user.id, "pkg-paro-5d", 2, date(2027, 4, 10), 2400.0, email, special_requests="window seat"
    )


def test_rotation_reseals_every_record(db, user, old_cipher, new_cipher):
    for i in range(3):
        _book(db, old_cipher, user, f"guest{i}@example.com")

    report = rotate_booking_details(db, old_cipher, new_cipher, batch_size=2)
    assert (report.total, report.migrated, report.skipped, report.failed) == (3, 3, 0, 0)

    db.expire_all()
    for booking in db.query(Booking).all():
        assert booking.encrypted_details["kid"] == new_cipher.kid
        details = new_cipher.open(booking.encrypted_details)
        assert details["specialRequests"] == "window seat"
        assert isinstance(old_cipher.open(booking.encrypted_details), DecryptionFailure)


def test_rerun_skips_already_migrated_records(db, user, old_cipher, new_cipher):
    _book(db, old_cipher, user, "a@example.com")
    _book(db, new_cipher, user, "b@example.com")

    first = rotate_booking_details(db, old_cipher, new_cipher)
    assert (first.migrated, first.skipped) == (1, 1)

    second = rotate_booking_details(db, old_cipher, new_cipher)
    assert (second.migrated, second.skipped, second.failed) == (0, 2, 0)


def test_records_the_old_key_cannot_open_are_reported_and_untouched(db, user, old_cipher, new_cipher):
    _book(db, old_cipher, user, "a@example.com")
    stranger = _book(db, FieldCipher(os.urandom(32)), user, "b@example.com")
    before = dict(stranger.encrypted_details)

    report = rotate_booking_details(db, old_cipher, new_cipher)
    assert (report.migrated, report.failed) == (1, 1)
    assert report.failures[0][0] == stranger.id

    db.expire_all()
    assert db.get(Booking, stranger.id).encrypted_details == before


def test_dry_run_writes_nothing(db, user, old_cipher, new_cipher):
    booking = _book(db, old_cipher, user, "a@example.com")
    report = rotate_booking_details(db, old_cipher, new_cipher, dry_run=True)
    assert report.dry_run
    assert report.migrated == 1

    db.expire_all()
    assert db.get(Booking, booking.id).encrypted_details["kid"] == old_cipher.kid
