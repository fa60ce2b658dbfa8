"""Single-record intervention writes: creation, sample trees, reconciliation, deletion."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import (
    ForbiddenError,
    InterventionError,
    InterventionWriteError,
    NotFoundError,
    ValidationError,
)
from ..identifiers import generate_hid, generate_idempotency_key, generate_uid
from ..intervention_types import (
    SAMPLE_TREE_REGISTRATION,
    SINGLE_TREE_REGISTRATION,
    InterventionTypeConfig,
    get_intervention_config,
)
from ..rbac import TRANSFER_ADMIN_ROLES, ProjectMembership
from .batch_writer import describe_failure
from .changes import ChangeEvent, ChangeSink, emit_change
from .directories import SiteDirectory, SpeciesCatalog
from .integrity import IntegrityEnforcer
from .normalizer import (
    SPECIES_REQUIRED,
    TREE_COUNT_MISMATCH,
    as_point_feature,
    extract_point_coordinates,
    geometry_anchor,
    normalize_geometry,
    resolve_species_references,
    species_row_values,
    validate_geometry,
    validate_species_composition,
)

logger = logging.getLogger(__name__)

# purpose: atomic creation and invariant-guarded mutation of interventions and their trees
# status: active
# depends_on: backend.reforestation.services.normalizer, backend.reforestation.services.integrity


@dataclass(frozen=True)
class InterventionContext:
    """Project and acting user already resolved by the caller."""

    project_id: int
    user_id: int


@dataclass
class PreparedIntervention:
    intervention: dict[str, Any]
    species: list[dict[str, Any]]
    tree: dict[str, Any] | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def write_guard(db: Session, action: str) -> Iterator[None]:
    """Commit on success; roll back and re-raise domain errors, wrap storage errors."""

    try:
        yield
        db.commit()
    except InterventionError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("%s failed: %s", action, describe_failure(exc))
        raise InterventionWriteError(
            f"{action} failed: {describe_failure(exc)}",
            payload={"cause": type(exc).__name__},
        ) from exc


def get_live_intervention(
    db: Session, uid: str, *, project_id: int | None = None
) -> models.Intervention:
    query = db.query(models.Intervention).filter(
        models.Intervention.uid == uid,
        models.Intervention.deleted_at.is_(None),
    )
    if project_id is not None:
        query = query.filter(models.Intervention.project_id == project_id)
    intervention = query.first()
    if intervention is None:
        raise NotFoundError(f"intervention {uid} not found", code="intervention_not_found")
    return intervention


def _composition(
    record: Any, config: InterventionTypeConfig | None
) -> tuple[list[schemas.SpeciesEntry], int]:
    intervention_type = record.type
    species = list(getattr(record, "species", None) or [])
    declared = getattr(record, "tree_count", None)
    if declared is None:
        declared = sum(entry.species_count for entry in species)

    if intervention_type == SINGLE_TREE_REGISTRATION:
        if len(species) > 1:
            raise ValidationError(
                "single-tree-registration accepts exactly one species entry",
                code="single_tree_species",
            )
        entry = species[0] if species else schemas.SpeciesEntry(is_unknown=True)
        check = validate_species_composition(1, [entry], intervention_type)
        return [entry.model_copy(update={"species_count": check.tree_count})], check.tree_count

    if config is None:
        # unknown types are stored as submitted; the type constraint rejects them
        return species, declared
    if not config.allows_species:
        if species:
            raise ValidationError(
                f"{intervention_type} does not accept species", code="species_not_allowed"
            )
        return [], 0
    if not config.allows_multiple_species and len(species) > 1:
        raise ValidationError(
            f"{intervention_type} accepts a single species entry", code="single_species_only"
        )
    if not species and not config.requires_species and declared == 0:
        return [], 0

    check = validate_species_composition(declared, species, intervention_type)
    if check.error == TREE_COUNT_MISMATCH:
        total = sum(entry.species_count for entry in species)
        raise ValidationError(
            f"{TREE_COUNT_MISMATCH}: declared tree count {declared} does not match species total {total}",
            code=TREE_COUNT_MISMATCH,
            payload={"declared_tree_count": declared, "species_total": total},
        )
    if check.error == SPECIES_REQUIRED:
        raise ValidationError(
            f"{SPECIES_REQUIRED}: {intervention_type} requires at least one species entry",
            code=SPECIES_REQUIRED,
        )
    return species, check.tree_count


def prepare_intervention(
    db: Session,
    record: Any,
    context: InterventionContext,
    *,
    uid: str | None = None,
    site_id: int | None = None,
) -> PreparedIntervention:
    """Validate one creation record and build its column values without writing."""

    if record.type == SAMPLE_TREE_REGISTRATION:
        raise ValidationError(
            "sample trees are registered against an existing intervention",
            code="unsupported_type",
        )
    config = get_intervention_config(record.type)
    geometry = normalize_geometry(record.geometry)
    validate_geometry(geometry)
    if config is not None and config.geojson_type and geometry["type"] != config.geojson_type:
        raise ValidationError(
            f"{record.type} requires {config.geojson_type} geometry, got {geometry['type']}",
            code="invalid_geometry_type",
        )
    species, total = _composition(record, config)
    catalog = resolve_species_references(db, species)

    latitude, longitude = geometry_anchor(geometry)
    point = None
    if record.type == SINGLE_TREE_REGISTRATION:
        point = extract_point_coordinates(as_point_feature(record.geometry))
        latitude, longitude = point.latitude, point.longitude

    species_rows = [species_row_values(entry, catalog) for entry in species]
    intervention = {
        "uid": uid or generate_uid("inv"),
        "hid": generate_hid(),
        "type": record.type,
        "user_id": context.user_id,
        "project_id": context.project_id,
        "site_id": site_id,
        "idempotency_key": getattr(record, "idempotency_key", None) or generate_idempotency_key(),
        "registration_date": _utcnow(),
        "intervention_start_date": record.intervention_start_date,
        "intervention_end_date": record.intervention_end_date,
        "location": geometry,
        "original_geometry": record.geometry,
        "geometry_type": geometry["type"],
        "latitude": latitude,
        "longitude": longitude,
        "capture_mode": getattr(record, "capture_mode", None) or "on_site",
        "capture_status": "complete",
        "total_tree_count": total,
        "status": "active",
        "meta": record.metadata or {},
        "tag": record.tag,
    }

    tree = None
    if point is not None:
        measurements = getattr(record, "measurements", None) or schemas.Measurements()
        tree = {
            "uid": generate_uid("tree"),
            "hid": generate_hid(),
            "created_by_id": context.user_id,
            "tree_type": "single",
            "species_name": species_rows[0]["species_name"],
            "tag": record.tag,
            "latitude": point.latitude,
            "longitude": point.longitude,
            "altitude": point.altitude,
            "height": measurements.height,
            "width": measurements.width,
            "planting_date": record.intervention_start_date,
            "status": "alive",
            "original_geometry": record.geometry,
            "meta": {},
        }
    return PreparedIntervention(intervention=intervention, species=species_rows, tree=tree)


def _replayed_intervention(
    db: Session, idempotency_key: str, context: InterventionContext
) -> models.Intervention | None:
    existing = (
        db.query(models.Intervention)
        .filter(models.Intervention.idempotency_key == idempotency_key)
        .first()
    )
    if existing is None:
        return None
    if existing.project_id != context.project_id:
        raise ValidationError(
            "idempotency key already used in another project", code="idempotency_conflict"
        )
    return existing


def create_intervention(
    db: Session,
    payload: schemas.InterventionCreate,
    context: InterventionContext,
    sink: ChangeSink | None = None,
) -> models.Intervention:
    """Create one intervention with its species rows and, for single trees, its tree."""

    if payload.idempotency_key:
        existing = _replayed_intervention(db, payload.idempotency_key, context)
        if existing is not None:
            logger.info("idempotent replay of %s returns %s", payload.idempotency_key, existing.uid)
            return existing

    prepared = prepare_intervention(db, payload, context)
    if payload.site_uid:
        site = SiteDirectory(db).resolve_site(payload.site_uid, project_id=context.project_id)
        if site is None:
            db.rollback()
            raise NotFoundError(f"site {payload.site_uid} not found", code="site_not_found")
        prepared.intervention["site_id"] = site.id

    with write_guard(db, "intervention creation"):
        intervention = models.Intervention(**prepared.intervention)
        db.add(intervention)
        db.flush()
        species_rows = [
            models.InterventionSpecies(intervention_id=intervention.id, **values)
            for values in prepared.species
        ]
        db.add_all(species_rows)
        db.flush()
        if prepared.tree is not None:
            db.add(
                models.Tree(
                    intervention_id=intervention.id,
                    intervention_species_id=species_rows[0].id,
                    **prepared.tree,
                )
            )
    db.refresh(intervention)

    emit_change(
        sink,
        ChangeEvent(
            action="intervention.created",
            target_type="intervention",
            target_uid=intervention.uid,
            actor_id=context.user_id,
            project_id=context.project_id,
            details={"type": intervention.type, "total_tree_count": intervention.total_tree_count},
        ),
    )
    return intervention


def _pick_sample_species(
    species_rows: list[models.InterventionSpecies], payload: schemas.SampleTreeCreate
) -> models.InterventionSpecies:
    if payload.species_uid:
        for row in species_rows:
            if row.uid == payload.species_uid:
                return row
        raise NotFoundError(
            f"species entry {payload.species_uid} not found", code="species_entry_not_found"
        )
    if payload.scientific_species_id is not None:
        for row in species_rows:
            if row.scientific_species_id == payload.scientific_species_id:
                return row
        raise NotFoundError(
            f"no species entry for scientific species {payload.scientific_species_id}",
            code="species_entry_not_found",
        )
    for row in species_rows:
        if row.is_unknown:
            return row
    raise ValidationError(
        "species_uid or scientific_species_id is required", code=SPECIES_REQUIRED
    )


def register_sample_tree(
    db: Session,
    payload: schemas.SampleTreeCreate,
    context: InterventionContext,
    sink: ChangeSink | None = None,
) -> models.Tree:
    """Register an individually tracked sample tree against a parent intervention."""

    with write_guard(db, "sample tree registration"):
        parent = get_live_intervention(
            db, payload.parent_intervention_uid, project_id=context.project_id
        )
        config = get_intervention_config(parent.type)
        if config is None or not config.allows_sample_trees:
            raise ValidationError(
                f"{parent.type} interventions do not accept sample trees",
                code="sample_trees_not_allowed",
            )
        point = extract_point_coordinates(as_point_feature(payload.geometry))
        enforcer = IntegrityEnforcer(db)
        species = _pick_sample_species(enforcer.live_species(parent.id, for_update=True), payload)
        enforcer.check_species_capacity(species)

        measurements = payload.measurements
        tree = models.Tree(
            uid=generate_uid("tree"),
            hid=generate_hid(),
            intervention_id=parent.id,
            intervention_species_id=species.id,
            created_by_id=context.user_id,
            tree_type="sample",
            species_name=species.species_name,
            tag=payload.tag,
            latitude=point.latitude,
            longitude=point.longitude,
            altitude=point.altitude,
            height=measurements.height,
            width=measurements.width,
            planting_date=payload.planting_date or parent.intervention_start_date,
            status="alive",
            original_geometry=payload.geometry,
            meta=payload.metadata or {},
        )
        db.add(tree)
        parent_uid = parent.uid
    db.refresh(tree)

    emit_change(
        sink,
        ChangeEvent(
            action="intervention.sample_tree_registered",
            target_type="tree",
            target_uid=tree.uid,
            actor_id=context.user_id,
            project_id=context.project_id,
            details={"intervention_uid": parent_uid, "hid": tree.hid},
        ),
    )
    return tree


def reconcile_species_count(
    db: Session,
    intervention_uid: str,
    species_uid: str,
    new_scientific_species_id: int | None,
    new_count: int | None,
    user_id: int,
    sink: ChangeSink | None = None,
    *,
    project_id: int | None = None,
) -> schemas.SpeciesReconciliationOut:
    """Reassign the species and/or count of one composition line without orphaning trees."""

    enforcer = IntegrityEnforcer(db)
    with write_guard(db, "species reconciliation"):
        intervention = get_live_intervention(db, intervention_uid, project_id=project_id)
        species = enforcer.lock(
            db.query(models.InterventionSpecies).filter(
                models.InterventionSpecies.uid == species_uid,
                models.InterventionSpecies.intervention_id == intervention.id,
                models.InterventionSpecies.deleted_at.is_(None),
            )
        ).first()
        if species is None:
            raise NotFoundError(
                f"species entry {species_uid} not found", code="species_entry_not_found"
            )
        scientific = None
        if new_scientific_species_id is not None:
            scientific = SpeciesCatalog(db).get(new_scientific_species_id)
            if scientific is None:
                raise NotFoundError(
                    f"scientific species {new_scientific_species_id} not found",
                    code="species_not_found",
                )
        plan = enforcer.plan_species_reassignment(
            intervention, species, scientific_species=scientific, new_count=new_count
        )
        trees_updated = enforcer.apply_species_reassignment(plan)
        owner_id = intervention.user_id
        event_project_id = intervention.project_id
    db.refresh(species)

    emit_change(
        sink,
        ChangeEvent(
            action="intervention.species_reconciled",
            target_type="intervention_species",
            target_uid=species_uid,
            actor_id=user_id,
            project_id=event_project_id,
            changed_fields=plan.changed_fields,
            details={
                "intervention_uid": intervention_uid,
                "species_count": species.species_count,
                "trees_updated": trees_updated,
            },
            notify_user_ids=(owner_id,) if owner_id != user_id else (),
        ),
    )
    return schemas.SpeciesReconciliationOut(
        intervention_uid=intervention_uid,
        species=schemas.InterventionSpeciesOut.model_validate(species),
        trees_updated=trees_updated,
        total_tree_count=plan.total_tree_count,
        changed_fields=list(plan.changed_fields),
    )


def soft_delete_intervention(
    db: Session,
    intervention_uid: str,
    requester_id: int,
    sink: ChangeSink | None = None,
    *,
    project_id: int | None = None,
) -> datetime:
    """Mark an intervention, its species rows and its trees deleted together."""

    with write_guard(db, "intervention deletion"):
        intervention = get_live_intervention(db, intervention_uid, project_id=project_id)
        role = ProjectMembership(db).get_role(intervention.project_id, requester_id)
        if requester_id != intervention.user_id and role not in TRANSFER_ADMIN_ROLES:
            raise ForbiddenError(
                "only the owner or a project admin can delete this intervention",
                code="not_authorized",
            )
        now = _utcnow()
        intervention_id = intervention.id
        event_project_id = intervention.project_id
        for table in (models.Tree, models.InterventionSpecies):
            db.execute(
                sa.update(table)
                .where(table.intervention_id == intervention_id, table.deleted_at.is_(None))
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
        db.execute(
            sa.update(models.Intervention)
            .where(models.Intervention.id == intervention_id)
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )

    emit_change(
        sink,
        ChangeEvent(
            action="intervention.deleted",
            target_type="intervention",
            target_uid=intervention_uid,
            actor_id=requester_id,
            project_id=event_project_id,
            changed_fields=("deleted_at",),
        ),
    )
    return now
