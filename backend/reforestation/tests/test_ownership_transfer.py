from datetime import datetime, timezone

import pytest

from reforestation import models, notify, schemas
from reforestation.errors import ForbiddenError, NotFoundError, ValidationError
from reforestation.services import interventions, ownership
from reforestation.services.changes import NotificationDispatcher, RecordingChangeSink
from .conftest import END, SQUARE, START, TestingSessionLocal, make_user, point_feature


def _context(setup):
    return interventions.InterventionContext(project_id=setup.project_id, user_id=setup.owner_id)


def _planting(db, setup, samples=2):
    payload = schemas.PlantingInterventionCreate.model_validate(
        {
            "type": "enrichment-planting",
            "intervention_start_date": START,
            "intervention_end_date": END,
            "geometry": SQUARE,
            "species": [{"is_unknown": True, "species_count": 5}],
            "tree_count": 5,
        }
    )
    intervention = interventions.create_intervention(db, payload, _context(setup))
    for _ in range(samples):
        interventions.register_sample_tree(
            db,
            schemas.SampleTreeCreate(parent_intervention_uid=intervention.uid, geometry=point_feature()),
            _context(setup),
        )
    return intervention


def _set_status(db, intervention_id, status):
    row = db.get(models.Intervention, intervention_id)
    row.status = status
    db.commit()


def test_owner_transfers_intervention_and_trees(db, project_setup):
    intervention = _planting(db, project_setup)
    sink = RecordingChangeSink()

    result = ownership.transfer_ownership(
        db,
        intervention.id,
        project_setup.contributor_id,
        project_setup.owner_id,
        options=schemas.TransferOptions(reason="handover"),
        sink=sink,
    )

    assert result.previous_owner_id == project_setup.owner_id
    assert result.new_owner_id == project_setup.contributor_id
    assert result.trees_transferred == 2
    assert "user_id" in result.changed_fields and "edited_at" in result.changed_fields

    stored = db.get(models.Intervention, intervention.id)
    db.refresh(stored)
    assert stored.user_id == project_setup.contributor_id
    assert stored.edited_at is not None
    assert {tree.created_by_id for tree in stored.trees} == {project_setup.contributor_id}
    event = sink.events[0]
    assert event.action == "intervention.ownership_transferred"
    assert event.notify_user_ids == (project_setup.contributor_id,)
    assert event.details["reason"] == "handover"


@pytest.mark.parametrize("status", ["completed", "cancelled", "failed"])
def test_terminal_status_cannot_be_transferred(db, project_setup, status):
    intervention = _planting(db, project_setup, samples=0)
    _set_status(db, intervention.id, status)
    with pytest.raises(ForbiddenError) as exc:
        ownership.transfer_ownership(
            db, intervention.id, project_setup.contributor_id, project_setup.owner_id
        )
    assert str(exc.value) == f"cannot transfer {status} intervention"


def test_self_transfer_is_rejected(db, project_setup):
    intervention = _planting(db, project_setup, samples=0)
    with pytest.raises(ForbiddenError) as exc:
        ownership.transfer_ownership(db, intervention.id, project_setup.owner_id, project_setup.owner_id)
    assert exc.value.code == "self_transfer"


def test_requester_and_new_owner_are_validated(db, project_setup):
    intervention = _planting(db, project_setup, samples=0)
    with pytest.raises(ForbiddenError):
        ownership.transfer_ownership(
            db, intervention.id, project_setup.contributor_id, project_setup.contributor_id
        )
    with pytest.raises(NotFoundError):
        ownership.transfer_ownership(db, intervention.id, 9_999_999, project_setup.owner_id)
    with pytest.raises(ValidationError) as exc:
        ownership.transfer_ownership(
            db, intervention.id, project_setup.observer_id, project_setup.owner_id
        )
    assert exc.value.code == "insufficient_role"

    inactive = make_user(db, is_active=False)
    db.add(models.ProjectMember(project_id=project_setup.project_id, user_id=inactive.id, role="manager"))
    db.commit()
    with pytest.raises(ValidationError) as exc:
        ownership.transfer_ownership(db, intervention.id, inactive.id, project_setup.owner_id)
    assert exc.value.code == "inactive_user"
    with pytest.raises(NotFoundError):
        ownership.transfer_ownership(db, 9_999_999, project_setup.contributor_id, project_setup.owner_id)

    stored = db.get(models.Intervention, intervention.id)
    db.refresh(stored)
    assert stored.user_id == project_setup.owner_id


def test_admin_transfer_queues_notification(db, project_setup):
    intervention = _planting(db, project_setup, samples=1)
    ownership.transfer_ownership(
        db,
        intervention.id,
        project_setup.contributor_id,
        project_setup.admin_id,
        sink=NotificationDispatcher(),
    )
    check = TestingSessionLocal()
    try:
        email = check.get(models.User, project_setup.contributor_id).email
    finally:
        check.close()
    assert [entry[0] for entry in notify.EMAIL_OUTBOX] == [email]
    assert notify.EMAIL_OUTBOX[0][1] == "An intervention was transferred to you"


def test_bulk_transfer_isolates_failures(db, project_setup):
    movable = _planting(db, project_setup, samples=1)
    finished = _planting(db, project_setup, samples=0)
    _set_status(db, finished.id, "completed")

    outcome = ownership.bulk_transfer_ownership(
        db,
        [movable.id, finished.id, 9_999_999, movable.id],
        project_setup.contributor_id,
        project_setup.owner_id,
        options=schemas.TransferOptions(notify=False),
    )

    assert [item.intervention_id for item in outcome.successful] == [movable.id]
    assert {item.id for item in outcome.failed} == {finished.id, 9_999_999}
    assert all(item.error for item in outcome.failed)
    stored = db.get(models.Intervention, movable.id)
    db.refresh(stored)
    assert stored.user_id == project_setup.contributor_id


def test_soft_deleted_rows_are_left_behind(db, project_setup):
    intervention = _planting(db, project_setup, samples=2)
    stored = db.get(models.Intervention, intervention.id)
    db.refresh(stored)
    removed, kept = sorted(stored.trees, key=lambda tree: tree.id)
    removed_id, kept_id = removed.id, kept.id
    removed.deleted_at = datetime.now(timezone.utc)
    db.commit()

    result = ownership.transfer_ownership(
        db, intervention.id, project_setup.contributor_id, project_setup.owner_id
    )

    assert result.trees_transferred == 1
    assert db.get(models.Tree, removed_id).created_by_id == project_setup.owner_id
    assert db.get(models.Tree, kept_id).created_by_id == project_setup.contributor_id
    live = (
        db.query(models.Tree)
        .filter(models.Tree.intervention_id == intervention.id, models.Tree.deleted_at.is_(None))
        .all()
    )
    assert {tree.created_by_id for tree in live} == {db.get(models.Intervention, intervention.id).user_id}

    gone = _planting(db, project_setup, samples=0)
    interventions.soft_delete_intervention(db, gone.uid, project_setup.owner_id)
    with pytest.raises(NotFoundError):
        ownership.transfer_ownership(db, gone.id, project_setup.contributor_id, project_setup.owner_id)
