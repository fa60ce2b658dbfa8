import logging
import uuid

from reforestation import models
from reforestation.services.batch_writer import BatchWriter
from .conftest import TestingSessionLocal, make_user


def _user(email: str) -> models.User:
    return models.User(uid=f"usr_{uuid.uuid4().hex[:10]}", email=email)


def test_batch_writer_writes_whole_batch(db, caplog):
    emails = [f"{uuid.uuid4().hex[:8]}@batch.test" for _ in range(3)]
    with caplog.at_level(logging.WARNING):
        outcome = BatchWriter[models.User](db, label="user").write([_user(e) for e in emails])
    assert len(outcome.succeeded) == 3
    assert outcome.failed == []
    assert "falling back" not in caplog.text

    check = TestingSessionLocal()
    try:
        assert check.query(models.User).filter(models.User.email.in_(emails)).count() == 3
    finally:
        check.close()


def test_batch_writer_falls_back_to_rows(db, caplog):
    taken = make_user(db)
    db.commit()
    fresh = [f"{uuid.uuid4().hex[:8]}@batch.test" for _ in range(2)]
    rows = [_user(fresh[0]), _user(taken.email), _user(fresh[1])]

    with caplog.at_level(logging.WARNING):
        outcome = BatchWriter[models.User](db, label="user", key=lambda row: row.email).write(rows)

    assert "falling back to per-row inserts" in caplog.text
    assert [row.email for row in outcome.succeeded] == fresh
    assert len(outcome.failed) == 1
    failed_row, error = outcome.failed[0]
    assert failed_row is rows[1]
    assert error

    check = TestingSessionLocal()
    try:
        assert check.query(models.User).filter(models.User.email.in_(fresh)).count() == 2
    finally:
        check.close()


def test_batch_writer_ignores_empty_input(db):
    outcome = BatchWriter[models.User](db, label="user").write([])
    assert outcome.succeeded == [] and outcome.failed == []
