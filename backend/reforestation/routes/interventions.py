"""Intervention ingestion and consistency API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from .. import models, schemas
from ..audit import AuditTrail
from ..auth import get_current_user
from ..database import get_db
from ..errors import InterventionError
from ..rbac import ensure_project_member
from ..services import bulk_ingestion, interventions, ownership
from ..services.changes import CompositeChangeSink, NotificationDispatcher

# purpose: expose intervention creation, bulk import, reconciliation and transfer endpoints
# status: active
# depends_on: backend.reforestation.services.interventions, backend.reforestation.services.ownership

router = APIRouter(prefix="/api/projects/{project_uid}/interventions", tags=["interventions"])
transfer_router = APIRouter(prefix="/api/interventions", tags=["interventions", "ownership"])

_WRITER_ROLES = ("owner", "admin", "manager", "contributor")


def _change_sink(db: Session) -> CompositeChangeSink:
    return CompositeChangeSink([AuditTrail(db), NotificationDispatcher()])


def _http_error(exc: InterventionError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


def _project_context(
    db: Session, user: models.User, project_uid: str
) -> interventions.InterventionContext:
    project = (
        db.query(models.Project)
        .filter(models.Project.uid == project_uid, models.Project.deleted_at.is_(None))
        .first()
    )
    if not project:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    ensure_project_member(db, user, project.id, _WRITER_ROLES)
    return interventions.InterventionContext(project_id=project.id, user_id=user.id)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=schemas.InterventionOut)
def create_intervention(
    project_uid: str,
    payload: schemas.InterventionCreateRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    context = _project_context(db, user, project_uid)
    try:
        intervention = interventions.create_intervention(
            db, payload.root, context, sink=_change_sink(db)
        )
    except InterventionError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    return intervention


@router.post("/bulk", response_model=schemas.BulkResult)
def bulk_ingest(
    project_uid: str,
    records: list[schemas.BulkInterventionRecord],
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    context = _project_context(db, user, project_uid)
    try:
        return bulk_ingestion.bulk_ingest_interventions(
            db, records, context, sink=_change_sink(db)
        )
    except InterventionError as exc:
        db.rollback()
        raise _http_error(exc) from exc


@router.post(
    "/sample-trees", status_code=status.HTTP_201_CREATED, response_model=schemas.TreeOut
)
def register_sample_tree(
    project_uid: str,
    payload: schemas.SampleTreeCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    context = _project_context(db, user, project_uid)
    try:
        return interventions.register_sample_tree(db, payload, context, sink=_change_sink(db))
    except InterventionError as exc:
        db.rollback()
        raise _http_error(exc) from exc


@router.patch(
    "/{intervention_uid}/species/{species_uid}",
    response_model=schemas.SpeciesReconciliationOut,
)
def reconcile_species(
    project_uid: str,
    intervention_uid: str,
    species_uid: str,
    payload: schemas.SpeciesReconcileRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    context = _project_context(db, user, project_uid)
    try:
        return interventions.reconcile_species_count(
            db,
            intervention_uid,
            species_uid,
            payload.scientific_species_id,
            payload.species_count,
            user.id,
            sink=_change_sink(db),
            project_id=context.project_id,
        )
    except InterventionError as exc:
        db.rollback()
        raise _http_error(exc) from exc


@router.delete("/{intervention_uid}", status_code=status.HTTP_204_NO_CONTENT)
def delete_intervention(
    project_uid: str,
    intervention_uid: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    context = _project_context(db, user, project_uid)
    try:
        interventions.soft_delete_intervention(
            db, intervention_uid, user.id, sink=_change_sink(db), project_id=context.project_id
        )
    except InterventionError as exc:
        db.rollback()
        raise _http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@transfer_router.post("/{intervention_id}/transfer", response_model=schemas.TransferResult)
def transfer_intervention(
    intervention_id: int,
    payload: schemas.TransferRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    try:
        return ownership.transfer_ownership(
            db,
            intervention_id,
            payload.new_owner_id,
            user.id,
            options=payload.options,
            sink=_change_sink(db),
        )
    except InterventionError as exc:
        db.rollback()
        raise _http_error(exc) from exc


@transfer_router.post("/transfer", response_model=schemas.BulkTransferResult)
def bulk_transfer_interventions(
    payload: schemas.BulkTransferRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    return ownership.bulk_transfer_ownership(
        db,
        payload.intervention_ids,
        payload.new_owner_id,
        user.id,
        options=payload.options,
        sink=_change_sink(db),
    )
