"""CLI for importing GeoJSON FeatureCollections as interventions."""

# purpose: let operators bulk-load field exports through the bulk ingestion engine
# status: active
# depends_on: backend.reforestation.services.bulk_ingestion

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pydantic
import typer

from .. import models, schemas
from ..database import SessionLocal
from ..errors import InterventionError
from ..services.bulk_ingestion import bulk_ingest_interventions
from ..services.interventions import InterventionContext

app = typer.Typer(help="Intervention import commands")


def feature_to_record(feature: dict[str, Any], default_type: str | None = None) -> schemas.BulkInterventionRecord:
    """Build a bulk record from a Feature whose properties carry the intervention fields."""

    properties = dict(feature.get("properties") or {})
    properties.setdefault("type", default_type)
    properties["geometry"] = feature.get("geometry")
    return schemas.BulkInterventionRecord.model_validate(properties)


def load_records(
    path: Path, default_type: str | None = None
) -> tuple[list[schemas.BulkInterventionRecord], list[schemas.FailedIntervention]]:
    document = json.loads(path.read_text(encoding="utf-8"))
    if document.get("type") != "FeatureCollection":
        raise typer.BadParameter("expected a GeoJSON FeatureCollection")
    records: list[schemas.BulkInterventionRecord] = []
    rejected: list[schemas.FailedIntervention] = []
    for index, feature in enumerate(document.get("features") or []):
        try:
            records.append(feature_to_record(feature, default_type))
        except pydantic.ValidationError as exc:
            client_id = (feature.get("properties") or {}).get("client_id")
            rejected.append(
                schemas.FailedIntervention(
                    uid=client_id or f"feature-{index}",
                    error=f"{exc.error_count()} invalid field(s): {exc.errors()[0]['msg']}",
                )
            )
    return records, rejected


def import_geojson(
    path: Path,
    project_uid: str,
    user_id: int,
    default_type: str | None = None,
) -> schemas.BulkResult:
    """Import every feature of ``path`` into the project and return the merged report."""

    records, rejected = load_records(path, default_type)
    session = SessionLocal()
    try:
        project = session.query(models.Project).filter(models.Project.uid == project_uid).first()
        if project is None:
            raise typer.BadParameter(f"project {project_uid} not found")
        context = InterventionContext(project_id=project.id, user_id=user_id)
        result = bulk_ingest_interventions(session, records, context)
    finally:
        session.close()
    result.total_processed += len(rejected)
    result.failed += len(rejected)
    result.failed_intervention_uid = rejected + result.failed_intervention_uid
    return result


@app.command("import-geojson")
def import_geojson_command(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="FeatureCollection file"),
    project_uid: str = typer.Option(..., help="Target project uid"),
    user_id: int = typer.Option(..., help="Owner of the imported interventions"),
    default_type: str = typer.Option(None, help="Type used when a feature omits one"),
) -> None:
    """CLI wrapper for :func:`import_geojson`."""

    try:
        result = import_geojson(path, project_uid, user_id, default_type)
    except InterventionError as exc:
        typer.echo(json.dumps(exc.to_detail()), err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(result.model_dump_json())
