import pytest
from sqlalchemy import func

from reforestation import models, schemas
from reforestation.errors import InterventionWriteError, NotFoundError, ValidationError
from reforestation.services import interventions
from reforestation.services.changes import RecordingChangeSink
from .conftest import END, SQUARE, START, point_feature


def _context(setup, user_id=None):
    return interventions.InterventionContext(
        project_id=setup.project_id, user_id=user_id or setup.owner_id
    )


def _single_tree(**overrides):
    data = {
        "type": "single-tree-registration",
        "intervention_start_date": START,
        "intervention_end_date": START,
        "geometry": point_feature(),
        "species": [{"is_unknown": True, "species_count": 1}],
    }
    data.update(overrides)
    return schemas.SingleTreeInterventionCreate.model_validate(data)


def _seeding(species, tree_count, **overrides):
    data = {
        "type": "direct-seeding",
        "intervention_start_date": START,
        "intervention_end_date": END,
        "geometry": SQUARE,
        "species": species,
        "tree_count": tree_count,
    }
    data.update(overrides)
    return schemas.PlantingInterventionCreate.model_validate(data)


def _intervention_count(db, project_id):
    return (
        db.query(func.count(models.Intervention.id))
        .filter(models.Intervention.project_id == project_id)
        .scalar()
    )


def test_single_tree_creates_one_tree_at_point(db, project_setup):
    sink = RecordingChangeSink()
    created = interventions.create_intervention(db, _single_tree(), _context(project_setup), sink=sink)

    assert created.total_tree_count == 1
    assert created.status == "active"
    assert created.uid.startswith("inv_")
    assert len(created.species) == 1
    assert created.species[0].is_unknown
    assert len(created.trees) == 1
    tree = created.trees[0]
    assert tree.latitude == pytest.approx(19.0760)
    assert tree.longitude == pytest.approx(72.8777)
    assert tree.intervention_species_id == created.species[0].id
    assert tree.species_name == created.species[0].species_name
    assert tree.created_by_id == project_setup.owner_id
    assert [event.action for event in sink.events] == ["intervention.created"]


def test_single_tree_without_species_gets_unknown_entry(db, project_setup):
    created = interventions.create_intervention(
        db, _single_tree(species=[], geometry=point_feature()["geometry"]), _context(project_setup)
    )
    assert created.total_tree_count == 1
    assert [row.species_count for row in created.species] == [1]
    assert len(created.trees) == 1


def test_single_tree_rejects_polygon_and_many_species(db, project_setup):
    with pytest.raises(ValidationError):
        interventions.create_intervention(db, _single_tree(geometry=SQUARE), _context(project_setup))
    species_id = project_setup.species_ids[0]
    with pytest.raises(ValidationError) as exc:
        interventions.create_intervention(
            db,
            _single_tree(
                species=[
                    {"scientific_species_id": species_id, "species_count": 1},
                    {"is_unknown": True, "species_count": 1},
                ]
            ),
            _context(project_setup),
        )
    assert exc.value.code == "single_tree_species"
    assert _intervention_count(db, project_setup.project_id) == 0


def test_direct_seeding_matching_count_creates_no_trees(db, project_setup):
    first, second = project_setup.species_ids[:2]
    created = interventions.create_intervention(
        db,
        _seeding(
            [
                {"scientific_species_id": first, "species_count": 30},
                {"scientific_species_id": second, "species_count": 20},
            ],
            50,
            site_uid=project_setup.site_uid,
        ),
        _context(project_setup),
    )
    assert created.total_tree_count == 50
    assert sum(row.species_count for row in created.species) == created.total_tree_count
    assert created.trees == []
    assert created.site_id == project_setup.site_id
    assert created.latitude == pytest.approx(19.05)
    assert {row.species_name for row in created.species} == set(project_setup.species_names[:2])


def test_tree_count_mismatch_writes_nothing(db, project_setup):
    first, second = project_setup.species_ids[:2]
    with pytest.raises(ValidationError) as exc:
        interventions.create_intervention(
            db,
            _seeding(
                [
                    {"scientific_species_id": first, "species_count": 30},
                    {"scientific_species_id": second, "species_count": 20},
                ],
                45,
            ),
            _context(project_setup),
        )
    assert exc.value.code == "tree_count_mismatch"
    assert "tree_count_mismatch" in str(exc.value)
    assert _intervention_count(db, project_setup.project_id) == 0


def test_unknown_species_and_missing_site_write_nothing(db, project_setup):
    with pytest.raises(ValidationError) as exc:
        interventions.create_intervention(
            db,
            _seeding([{"scientific_species_id": 987654, "species_count": 5}], 5),
            _context(project_setup),
        )
    assert exc.value.payload["missing_species_ids"] == [987654]

    with pytest.raises(NotFoundError):
        interventions.create_intervention(
            db,
            _seeding([{"is_unknown": True, "species_count": 5}], 5, site_uid="site_missing"),
            _context(project_setup),
        )
    assert _intervention_count(db, project_setup.project_id) == 0


def test_site_only_type_has_no_species(db, project_setup):
    payload = schemas.SiteInterventionCreate.model_validate(
        {
            "type": "fencing",
            "intervention_start_date": START,
            "intervention_end_date": END,
            "geometry": {"type": "Feature", "properties": {}, "geometry": SQUARE},
        }
    )
    created = interventions.create_intervention(db, payload, _context(project_setup))
    assert created.total_tree_count == 0
    assert created.species == []
    assert created.location == SQUARE
    assert created.geometry_type == "Polygon"


def test_idempotent_replay_returns_existing(db, project_setup):
    payload = _seeding([{"is_unknown": True, "species_count": 4}], 4, idempotency_key="field-sync-42")
    first = interventions.create_intervention(db, payload, _context(project_setup))
    again = interventions.create_intervention(db, payload, _context(project_setup))
    assert again.id == first.id
    assert _intervention_count(db, project_setup.project_id) == 1


def test_storage_failure_rolls_back_everything(db, project_setup, monkeypatch):
    interventions.create_intervention(db, _single_tree(), _context(project_setup))
    taken = db.query(models.Tree.hid).filter(models.Tree.created_by_id == project_setup.owner_id).scalar()
    hids = iter(["FRESH1", taken])
    monkeypatch.setattr(interventions, "generate_hid", lambda: next(hids))

    with pytest.raises(InterventionWriteError) as exc:
        interventions.create_intervention(db, _single_tree(), _context(project_setup))
    assert exc.value.__cause__ is not None
    assert _intervention_count(db, project_setup.project_id) == 1
    assert db.query(models.Intervention).filter(models.Intervention.hid == "FRESH1").count() == 0


def test_discriminated_union_dispatches_on_type():
    from pydantic import TypeAdapter, ValidationError as PydanticValidationError

    adapter = TypeAdapter(schemas.InterventionCreate)
    parsed = adapter.validate_python(
        {
            "type": "maintenance",
            "intervention_start_date": START,
            "intervention_end_date": END,
            "geometry": SQUARE,
        }
    )
    assert isinstance(parsed, schemas.SiteInterventionCreate)
    with pytest.raises(PydanticValidationError):
        adapter.validate_python(
            {
                "type": "direct-seeding",
                "intervention_start_date": END,
                "intervention_end_date": START,
                "geometry": SQUARE,
                "tree_count": 0,
            }
        )
