import logging
import uuid

import pytest

from reforestation import models, schemas
from reforestation.errors import NotFoundError, ValidationError
from reforestation.intervention_types import SINGLE_TREE_REGISTRATION
from reforestation.services import interventions
from reforestation.services.bulk_ingestion import bulk_ingest_interventions
from reforestation.services.changes import RecordingChangeSink
from .conftest import END, SQUARE, START, point_feature


def _context(setup):
    return interventions.InterventionContext(project_id=setup.project_id, user_id=setup.owner_id)


def _record(**overrides) -> schemas.BulkInterventionRecord:
    data = {
        "client_id": f"inv_{uuid.uuid4().hex[:12]}",
        "type": "fencing",
        "intervention_start_date": START,
        "intervention_end_date": END,
        "geometry": SQUARE,
    }
    data.update(overrides)
    return schemas.BulkInterventionRecord.model_validate(data)


def _single(**overrides) -> schemas.BulkInterventionRecord:
    overrides.setdefault("geometry", point_feature())
    return _record(type=SINGLE_TREE_REGISTRATION, **overrides)


def _assert_invariants(db, uids):
    for uid in uids:
        stored = (
            db.query(models.Intervention)
            .filter(models.Intervention.uid == uid, models.Intervention.deleted_at.is_(None))
            .one()
        )
        live_species = [row for row in stored.species if row.deleted_at is None]
        if stored.type == SINGLE_TREE_REGISTRATION:
            assert stored.total_tree_count == 1
            assert len([tree for tree in stored.trees if tree.deleted_at is None]) == 1
        else:
            assert sum(row.species_count for row in live_species) == stored.total_tree_count


def test_invalid_type_falls_back_to_row_inserts(db, project_setup, caplog):
    records = [_record() for _ in range(10)]
    records[3] = _record(type="invalid-type")

    with caplog.at_level(logging.WARNING):
        result = bulk_ingest_interventions(db, records, _context(project_setup))

    assert "falling back to per-row inserts" in caplog.text
    assert (result.total_processed, result.passed, result.failed) == (10, 9, 1)
    assert result.failed_intervention_uid[0].uid == records[3].client_id
    assert result.failed_intervention_uid[0].error
    assert records[3].client_id not in result.successful_interventions
    assert (
        db.query(models.Intervention)
        .filter(models.Intervention.uid.in_(result.successful_interventions))
        .count()
        == 9
    )
    _assert_invariants(db, result.successful_interventions)


def test_mixed_batch_reports_each_record(db, project_setup):
    species_id = project_setup.species_ids[0]
    sink = RecordingChangeSink()
    records = [
        _single(),
        _single(species=[{"scientific_species_id": species_id, "species_count": 1}]),
        _record(
            type="direct-seeding",
            species=[{"scientific_species_id": species_id, "species_count": 12}],
            tree_count=12,
        ),
        _record(
            type="direct-seeding",
            species=[{"scientific_species_id": species_id, "species_count": 12}],
            tree_count=10,
        ),
        _record(type="direct-seeding", species=[{"scientific_species_id": 424242, "species_count": 2}]),
        _record(geometry={"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 1]]]}),
        _single(geometry=point_feature(200, 10)),
    ]

    result = bulk_ingest_interventions(db, records, _context(project_setup), sink=sink)

    assert result.total_processed == len(records) == result.passed + result.failed
    assert result.passed == 3
    assert set(result.successful_interventions) == {record.client_id for record in records[:3]}
    failures = {item.uid: item.error for item in result.failed_intervention_uid}
    assert "tree_count_mismatch" in failures[records[3].client_id]
    assert "424242" in failures[records[4].client_id]
    assert all(failures.values())
    _assert_invariants(db, result.successful_interventions)

    named = db.query(models.Intervention).filter(models.Intervention.uid == records[1].client_id).one()
    assert named.trees[0].species_name == project_setup.species_names[0]
    assert sink.events[-1].details == {"total_processed": 7, "passed": 3, "failed": 4}


def test_species_stage_failure_is_compensated(db, project_setup, monkeypatch):
    original = interventions.species_row_values

    def clashing_uid(entry, catalog, **kwargs):
        values = original(entry, catalog, **kwargs)
        if entry.species_name == "clash":
            values["uid"] = f"invspc_clash_{project_setup.project_id}"
        return values

    monkeypatch.setattr(interventions, "species_row_values", clashing_uid)
    clash = [{"species_name": "clash", "species_count": 3}]
    records = [
        _record(type="direct-seeding", species=clash, tree_count=3),
        _record(type="direct-seeding", species=clash, tree_count=3),
        _single(),
    ]

    result = bulk_ingest_interventions(db, records, _context(project_setup))

    assert (result.passed, result.failed) == (2, 1)
    failed_uid = result.failed_intervention_uid[0].uid
    assert failed_uid == records[1].client_id
    assert result.failed_intervention_uid[0].error.startswith("species:")
    compensated = db.query(models.Intervention).filter(models.Intervention.uid == failed_uid).one()
    assert compensated.deleted_at is not None
    _assert_invariants(db, result.successful_interventions)


def test_no_known_type_fails_whole_batch(db, project_setup):
    with pytest.raises(ValidationError) as exc:
        bulk_ingest_interventions(
            db, [_record(type="bogus"), _record(type="also-bogus")], _context(project_setup)
        )
    assert exc.value.code == "unknown_intervention_type"


def test_missing_shared_site_fails_whole_batch(db, project_setup):
    with pytest.raises(NotFoundError):
        bulk_ingest_interventions(
            db, [_record(site_uid="site_absent"), _record()], _context(project_setup)
        )


def test_site_is_resolved_per_record(db, project_setup):
    records = [_record(site_uid=project_setup.site_uid), _record(site_uid="site_elsewhere")]
    result = bulk_ingest_interventions(db, records, _context(project_setup))
    assert result.passed == 1
    assert result.failed_intervention_uid[0].uid == records[1].client_id
    stored = db.query(models.Intervention).filter(models.Intervention.uid == records[0].client_id).one()
    assert stored.site_id == project_setup.site_id


def test_empty_batch_is_a_noop(db, project_setup):
    result = bulk_ingest_interventions(db, [], _context(project_setup))
    assert result.total_processed == result.passed == result.failed == 0
