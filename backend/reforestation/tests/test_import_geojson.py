import json
import uuid

from typer.testing import CliRunner

from reforestation import models
from reforestation.cli.import_geojson import app, import_geojson
from .conftest import SQUARE, TestingSessionLocal, point_feature


def _collection(tmp_path, features):
    path = tmp_path / "export.geojson"
    path.write_text(json.dumps({"type": "FeatureCollection", "features": features}))
    return path


def _feature(geometry, **properties):
    base = {
        "client_id": f"inv_{uuid.uuid4().hex[:12]}",
        "intervention_start_date": "2024-03-01T00:00:00Z",
        "intervention_end_date": "2024-03-02T00:00:00Z",
    }
    base.update(properties)
    return {"type": "Feature", "geometry": geometry, "properties": base}


def test_import_geojson_merges_parse_failures(tmp_path, project_setup):
    features = [
        _feature(SQUARE, type="fencing"),
        _feature(point_feature()["geometry"], type="single-tree-registration"),
        _feature(SQUARE),
        {"type": "Feature", "geometry": SQUARE, "properties": {"client_id": "broken-row", "type": "fencing"}},
    ]
    path = _collection(tmp_path, features)

    result = import_geojson(path, project_setup.project_uid, project_setup.owner_id, default_type="maintenance")

    assert (result.total_processed, result.passed, result.failed) == (4, 3, 1)
    assert result.failed_intervention_uid[0].uid == "broken-row"
    session = TestingSessionLocal()
    try:
        stored = (
            session.query(models.Intervention)
            .filter(models.Intervention.uid.in_(result.successful_interventions))
            .all()
        )
        assert sorted(row.type for row in stored) == ["fencing", "maintenance", "single-tree-registration"]
    finally:
        session.close()


def test_import_geojson_command_prints_report(tmp_path, project_setup):
    path = _collection(tmp_path, [_feature(SQUARE, type="fencing")])
    runner = CliRunner()
    result = runner.invoke(
        app,
        [str(path), "--project-uid", project_setup.project_uid, "--user-id", str(project_setup.owner_id)],
    )
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["passed"] == 1
