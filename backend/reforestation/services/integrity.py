"""Cascade planning and invariant checks for intervention mutations."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import Query, Session

from .. import models
from ..errors import ConcurrentUpdateError, CountViolationError, ValidationError
from ..intervention_types import SINGLE_TREE_REGISTRATION

# purpose: compute dependent row updates before writing and apply them under guarded predicates
# status: active


@dataclass(frozen=True)
class SpeciesReassignmentPlan:
    intervention_id: int
    species_id: int
    read_version: int
    values: dict[str, Any]
    tree_ids: tuple[int, ...]
    tree_hids: tuple[str, ...]
    species_name: str | None
    cascade_name: bool
    total_tree_count: int
    changed_fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class OwnershipTransferPlan:
    intervention_id: int
    current_owner_id: int
    new_owner_id: int
    tree_ids: tuple[int, ...]
    changed_fields: tuple[str, ...] = field(default=("user_id", "edited_at"))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IntegrityEnforcer:
    """Plans and applies cascades that keep intervention invariants true."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def lock(self, query: Query) -> Query:
        """Add ``FOR UPDATE`` where the dialect honours it."""

        if self.db.get_bind().dialect.name == "postgresql":
            return query.with_for_update()
        return query

    def tracked_trees(self, species_id: int) -> list[models.Tree]:
        return (
            self.db.query(models.Tree)
            .filter(
                models.Tree.intervention_species_id == species_id,
                models.Tree.deleted_at.is_(None),
            )
            .order_by(models.Tree.id)
            .all()
        )

    def live_species(
        self, intervention_id: int, *, for_update: bool = False
    ) -> list[models.InterventionSpecies]:
        query = (
            self.db.query(models.InterventionSpecies)
            .filter(
                models.InterventionSpecies.intervention_id == intervention_id,
                models.InterventionSpecies.deleted_at.is_(None),
            )
            .order_by(models.InterventionSpecies.id)
        )
        if for_update:
            query = self.lock(query)
        return query.all()

    def check_species_capacity(self, species: models.InterventionSpecies, adding: int = 1) -> int:
        """Reserve room for ``adding`` more tracked trees and return the bumped version.

        Plans read before the reservation fail their version compare-and-swap.
        """

        read_version = species.version
        trees = self.tracked_trees(species.id)
        if len(trees) + adding > species.species_count:
            raise CountViolationError(
                f"species entry {species.uid} already tracks {len(trees)} of "
                f"{species.species_count} declared trees",
                current_tree_count=len(trees),
                requested_species_count=species.species_count,
                tree_hids=[tree.hid for tree in trees],
            )
        result = self.db.execute(
            sa.update(models.InterventionSpecies)
            .where(
                models.InterventionSpecies.id == species.id,
                models.InterventionSpecies.version == read_version,
                models.InterventionSpecies.deleted_at.is_(None),
            )
            .values(version=read_version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentUpdateError(
                "species entry was modified concurrently; reload and retry",
                payload={"species_id": species.id, "read_version": read_version},
            )
        return read_version + 1

    def plan_species_reassignment(
        self,
        intervention: models.Intervention,
        species: models.InterventionSpecies,
        *,
        scientific_species: models.ScientificSpecies | None = None,
        new_count: int | None = None,
    ) -> SpeciesReassignmentPlan:
        trees = self.tracked_trees(species.id)
        tree_hids = [tree.hid for tree in trees]
        if new_count is not None and new_count < len(trees):
            raise CountViolationError(
                f"Cannot set species count to {new_count}: {len(trees)} trees are already "
                "registered against this species",
                current_tree_count=len(trees),
                requested_species_count=new_count,
                tree_hids=tree_hids,
            )
        if (
            intervention.type == SINGLE_TREE_REGISTRATION
            and new_count is not None
            and new_count != 1
        ):
            raise ValidationError(
                "single-tree-registration species count must remain 1",
                code="single_tree_count",
            )

        values: dict[str, Any] = {}
        if scientific_species is not None and (
            species.is_unknown or species.scientific_species_id != scientific_species.id
        ):
            values["scientific_species_id"] = scientific_species.id
            values["is_unknown"] = False
            values["other_species"] = None
            if species.species_name != scientific_species.scientific_name:
                values["species_name"] = scientific_species.scientific_name
        if new_count is not None and new_count != species.species_count:
            values["species_count"] = new_count

        effective_count = values.get("species_count", species.species_count)
        total = sum(
            effective_count if row.id == species.id else row.species_count
            for row in self.live_species(intervention.id)
        )
        species_name = values.get("species_name", species.species_name)
        cascade_name = any(tree.species_name != species_name for tree in trees)

        changed = list(values)
        if total != intervention.total_tree_count:
            changed.append("total_tree_count")
        return SpeciesReassignmentPlan(
            intervention_id=intervention.id,
            species_id=species.id,
            read_version=species.version,
            values=values,
            tree_ids=tuple(tree.id for tree in trees),
            tree_hids=tuple(tree_hids),
            species_name=species_name,
            cascade_name=cascade_name,
            total_tree_count=total,
            changed_fields=tuple(changed),
        )

    def apply_species_reassignment(self, plan: SpeciesReassignmentPlan) -> int:
        """Write the plan; returns the number of trees whose snapshot changed."""

        now = _utcnow()
        result = self.db.execute(
            sa.update(models.InterventionSpecies)
            .where(
                models.InterventionSpecies.id == plan.species_id,
                models.InterventionSpecies.version == plan.read_version,
                models.InterventionSpecies.deleted_at.is_(None),
            )
            .values(**plan.values, version=plan.read_version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentUpdateError(
                "species entry was modified concurrently; reload and retry",
                payload={"species_id": plan.species_id, "read_version": plan.read_version},
            )

        trees_updated = 0
        if plan.cascade_name and plan.tree_ids:
            trees_updated = self.db.execute(
                sa.update(models.Tree)
                .where(
                    models.Tree.id.in_(plan.tree_ids),
                    models.Tree.deleted_at.is_(None),
                )
                .values(species_name=plan.species_name, updated_at=now)
                .execution_options(synchronize_session=False)
            ).rowcount

        self.db.execute(
            sa.update(models.Intervention)
            .where(models.Intervention.id == plan.intervention_id)
            .values(total_tree_count=plan.total_tree_count, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return trees_updated

    def plan_ownership_transfer(
        self, intervention: models.Intervention, new_owner: models.User
    ) -> OwnershipTransferPlan:
        tree_ids = [
            tree_id
            for (tree_id,) in self.db.query(models.Tree.id)
            .filter(
                models.Tree.intervention_id == intervention.id,
                models.Tree.deleted_at.is_(None),
            )
            .order_by(models.Tree.id)
        ]
        changed = ["user_id", "edited_at"]
        if tree_ids:
            changed.append("trees.created_by_id")
        return OwnershipTransferPlan(
            intervention_id=intervention.id,
            current_owner_id=intervention.user_id,
            new_owner_id=new_owner.id,
            tree_ids=tuple(tree_ids),
            changed_fields=tuple(changed),
        )

    def apply_ownership_transfer(self, plan: OwnershipTransferPlan) -> datetime:
        now = _utcnow()
        result = self.db.execute(
            sa.update(models.Intervention)
            .where(
                models.Intervention.id == plan.intervention_id,
                models.Intervention.user_id == plan.current_owner_id,
                models.Intervention.deleted_at.is_(None),
            )
            .values(user_id=plan.new_owner_id, edited_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentUpdateError(
                "intervention owner changed concurrently; reload and retry",
                payload={"intervention_id": plan.intervention_id},
            )
        if plan.tree_ids:
            self.db.execute(
                sa.update(models.Tree)
                .where(
                    models.Tree.id.in_(plan.tree_ids),
                    models.Tree.deleted_at.is_(None),
                )
                .values(created_by_id=plan.new_owner_id, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        return now
