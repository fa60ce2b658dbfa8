"""Partial-success bulk import of intervention records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

import sqlalchemy as sa
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import InterventionError, NotFoundError, ValidationError
from ..identifiers import generate_uid
from ..intervention_types import get_intervention_config
from .batch_writer import BatchWriter
from .changes import ChangeEvent, ChangeSink, emit_change
from .directories import SiteDirectory
from .interventions import InterventionContext, PreparedIntervention, prepare_intervention, write_guard

logger = logging.getLogger(__name__)

# purpose: ingest many intervention records per request, isolating failures to single records
# status: active
# depends_on: backend.reforestation.services.batch_writer


@dataclass
class _StagedRecord:
    uid: str
    prepared: PreparedIntervention
    row: models.Intervention
    species_rows: list[models.InterventionSpecies] = field(default_factory=list)
    error: str | None = None


class _SiteResolver:
    def __init__(self, db: Session, project_id: int) -> None:
        self.directory = SiteDirectory(db)
        self.project_id = project_id
        self._cache: dict[str, int | None] = {}

    def site_id(self, uid: str | None) -> int | None:
        if not uid:
            return None
        if uid not in self._cache:
            site = self.directory.resolve_site(uid, project_id=self.project_id)
            self._cache[uid] = site.id if site else None
        site_id = self._cache[uid]
        if site_id is None:
            raise NotFoundError(f"site {uid} not found", code="site_not_found")
        return site_id


def _check_preconditions(
    records: list[schemas.BulkInterventionRecord], sites: _SiteResolver
) -> None:
    sites.site_id(records[0].site_uid)
    if not any(get_intervention_config(record.type) for record in records):
        raise ValidationError(
            "no intervention type configuration found for any record",
            code="unknown_intervention_type",
        )


def _compensate(db: Session, staged: list[_StagedRecord]) -> None:
    """Soft-delete interventions whose dependent rows could not be stored."""

    if not staged:
        return
    uids = [record.uid for record in staged]
    now = datetime.now(timezone.utc)
    with write_guard(db, "bulk compensation"):
        ids = [
            row_id
            for (row_id,) in db.query(models.Intervention.id).filter(
                models.Intervention.uid.in_(uids)
            )
        ]
        for table in (models.Tree, models.InterventionSpecies):
            db.execute(
                sa.update(table)
                .where(table.intervention_id.in_(ids), table.deleted_at.is_(None))
                .values(deleted_at=now)
                .execution_options(synchronize_session=False)
            )
        db.execute(
            sa.update(models.Intervention)
            .where(models.Intervention.id.in_(ids))
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    logger.warning("compensated %d partially stored interventions", len(staged))


def bulk_ingest_interventions(
    db: Session,
    records: Iterable[schemas.BulkInterventionRecord],
    context: InterventionContext,
    sink: ChangeSink | None = None,
) -> schemas.BulkResult:
    """Persist as many records as possible and report every failure individually."""

    records = list(records)
    result = schemas.BulkResult(total_processed=len(records))
    if not records:
        return result

    sites = _SiteResolver(db, context.project_id)
    _check_preconditions(records, sites)

    staged: list[_StagedRecord] = []
    for record in records:
        uid = record.client_id or generate_uid("inv")
        try:
            prepared = prepare_intervention(
                db, record, context, uid=uid, site_id=sites.site_id(record.site_uid)
            )
        except InterventionError as exc:
            logger.info("record %s failed validation: %s", uid, exc)
            result.failed_intervention_uid.append(
                schemas.FailedIntervention(uid=uid, error=str(exc) or exc.code)
            )
            continue
        staged.append(
            _StagedRecord(uid=uid, prepared=prepared, row=models.Intervention(**prepared.intervention))
        )

    by_row = {id(record.row): record for record in staged}
    interventions = BatchWriter[models.Intervention](
        db, label="intervention", key=lambda row: by_row[id(row)].uid
    ).write([record.row for record in staged])
    for row, error in interventions.failed:
        by_row[id(row)].error = error
    stored = [record for record in staged if record.error is None]

    intervention_ids = dict(
        db.query(models.Intervention.uid, models.Intervention.id).filter(
            models.Intervention.uid.in_([record.uid for record in stored])
        )
    )
    owner_of: dict[int, _StagedRecord] = {}
    for record in stored:
        for values in record.prepared.species:
            row = models.InterventionSpecies(intervention_id=intervention_ids[record.uid], **values)
            record.species_rows.append(row)
            owner_of[id(row)] = record
    species = BatchWriter[models.InterventionSpecies](
        db, label="intervention species", key=lambda row: owner_of[id(row)].uid
    ).write([row for record in stored for row in record.species_rows])
    broken: dict[str, _StagedRecord] = {}
    for row, error in species.failed:
        record = owner_of[id(row)]
        record.error = record.error or f"species: {error}"
        broken[record.uid] = record

    tree_parents = [
        record for record in stored if record.prepared.tree is not None and record.uid not in broken
    ]
    species_ids = dict(
        db.query(models.InterventionSpecies.uid, models.InterventionSpecies.id).filter(
            models.InterventionSpecies.uid.in_(
                [record.prepared.species[0]["uid"] for record in tree_parents]
            )
        )
    )
    tree_owner: dict[int, _StagedRecord] = {}
    trees: list[models.Tree] = []
    for record in tree_parents:
        tree = models.Tree(
            intervention_id=intervention_ids[record.uid],
            intervention_species_id=species_ids[record.prepared.species[0]["uid"]],
            **record.prepared.tree,
        )
        tree_owner[id(tree)] = record
        trees.append(tree)
    tree_outcome = BatchWriter[models.Tree](
        db, label="tree", key=lambda row: tree_owner[id(row)].uid
    ).write(trees)
    for row, error in tree_outcome.failed:
        record = tree_owner[id(row)]
        record.error = record.error or f"tree: {error}"
        broken[record.uid] = record

    _compensate(db, list(broken.values()))

    for record in staged:
        if record.error is None:
            result.successful_interventions.append(record.uid)
        else:
            result.failed_intervention_uid.append(
                schemas.FailedIntervention(uid=record.uid, error=record.error)
            )
    result.passed = len(result.successful_interventions)
    result.failed = len(result.failed_intervention_uid)

    emit_change(
        sink,
        ChangeEvent(
            action="intervention.bulk_ingested",
            target_type="project",
            target_uid=str(context.project_id),
            actor_id=context.user_id,
            project_id=context.project_id,
            details={
                "total_processed": result.total_processed,
                "passed": result.passed,
                "failed": result.failed,
            },
        ),
    )
    return result
