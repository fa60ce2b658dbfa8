"""Read-only collaborator lookups for sites and the species catalog."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy.orm import Session

from .. import models

# purpose: resolve site and scientific species references for the intervention engine
# status: active


@dataclass
class SiteDirectory:
    db: Session

    def resolve_site(self, uid: str, *, project_id: int | None = None) -> models.Site | None:
        """Return the non-deleted site for ``uid``, scoped to a project when given."""

        query = self.db.query(models.Site).filter(
            models.Site.uid == uid,
            models.Site.deleted_at.is_(None),
        )
        if project_id is not None:
            query = query.filter(models.Site.project_id == project_id)
        return query.first()


@dataclass
class SpeciesCatalog:
    db: Session

    def fetch(self, ids: Iterable[int]) -> dict[int, models.ScientificSpecies]:
        """Return live catalog entries keyed by id."""

        wanted = {species_id for species_id in ids if species_id is not None}
        if not wanted:
            return {}
        rows = (
            self.db.query(models.ScientificSpecies)
            .filter(
                models.ScientificSpecies.id.in_(wanted),
                models.ScientificSpecies.deleted_at.is_(None),
            )
            .all()
        )
        return {row.id: row for row in rows}

    def missing(self, ids: Iterable[int]) -> list[int]:
        """Return the requested ids that are absent or soft-deleted."""

        wanted = [species_id for species_id in ids if species_id is not None]
        found = self.fetch(wanted)
        return sorted({species_id for species_id in wanted if species_id not in found})

    def get(self, species_id: int) -> models.ScientificSpecies | None:
        return self.fetch([species_id]).get(species_id)
