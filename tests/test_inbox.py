from datetime import timedelta

import pytest

from clinic_booking import models
from clinic_booking.errors import NotFoundError
from clinic_booking.services import inbox


def _note(db, user, title, minutes_ago=0, is_read=False):
    row = models.Notification(
        user_id=user.id,
        type=models.NotificationType.GENERAL,
        title=title,
        message=title,
        status="sent",
        created_at=models.utcnow() - timedelta(minutes=minutes_ago),
        is_read=is_read,
    )
    db.add(row)
    db.commit()
    return row


def test_list_is_newest_first_with_unread_count(db, seed):
    _note(db, seed.client, "vieja", minutes_ago=30, is_read=True)
    _note(db, seed.client, "media", minutes_ago=20)
    _note(db, seed.client, "nueva", minutes_ago=10)
    _note(db, seed.other, "ajena")

    result = inbox.list_notifications(db, seed.client.id, page=1, limit=2)
    assert [n.title for n in result["notifications"]] == ["nueva", "media"]
    assert result["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    assert result["unread_count"] == 2

    unread = inbox.list_notifications(db, seed.client.id, unread_only=True)
    assert {n.title for n in unread["notifications"]} == {"nueva", "media"}

def test_mark_read_stamps_once(db, seed):
    row = _note(db, seed.client, "hola")
    first = inbox.mark_read(db, seed.client.id, row.id)
    assert first.is_read is True
    stamped = first.read_at
    assert stamped is not None
    assert inbox.mark_read(db, seed.client.id, row.id).read_at == stamped

def test_mark_read_of_someone_else_is_not_found(db, seed):
    row = _note(db, seed.other, "ajena")
    with pytest.raises(NotFoundError, match="Notificación no encontrada"):
        inbox.mark_read(db, seed.client.id, row.id)
    with pytest.raises(NotFoundError):
        inbox.mark_read(db, seed.client.id, 9999)
    db.refresh(row)
    assert row.is_read is False

def test_mark_all_read_only_touches_own_unread(db, seed):
    _note(db, seed.client, "a")
    _note(db, seed.client, "b")
    _note(db, seed.client, "c", is_read=True)
    other = _note(db, seed.other, "ajena")

    assert inbox.mark_all_read(db, seed.client.id) == 2
    assert inbox.list_notifications(db, seed.client.id)["unread_count"] == 0
    db.refresh(other)
    assert other.is_read is False
    assert inbox.mark_all_read(db, seed.client.id) == 0
