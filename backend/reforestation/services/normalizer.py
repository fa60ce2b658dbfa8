"""GeoJSON and species-composition normalization for intervention writes."""

from __future__ import annotations

from dataclasses import dataclass
from numbers import Real
from typing import Any, Sequence

from shapely.errors import GEOSException
from shapely.geometry import shape
from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import ValidationError
from ..identifiers import generate_uid
from ..intervention_types import SINGLE_TREE_REGISTRATION
from .directories import SpeciesCatalog

# purpose: convert client GeoJSON and species lists into the canonical shapes persisted by the engine
# status: active

GEOMETRY_TYPES = frozenset(
    {
        "Point",
        "LineString",
        "Polygon",
        "MultiPoint",
        "MultiLineString",
        "MultiPolygon",
        "GeometryCollection",
    }
)

UNKNOWN_SPECIES_NAME = "Unknown"
TREE_COUNT_MISMATCH = "tree_count_mismatch"
SPECIES_REQUIRED = "species_required"


@dataclass(frozen=True)
class PointCoordinates:
    latitude: float
    longitude: float
    altitude: float | None = None


@dataclass(frozen=True)
class CompositionCheck:
    tree_count: int
    error: str | None = None


def normalize_geometry(geojson: Any) -> dict[str, Any]:
    """Return the bare geometry carried by a Feature, FeatureCollection or geometry."""

    if not isinstance(geojson, dict):
        raise ValidationError("invalid geojson", code="invalid_geojson")
    kind = geojson.get("type")
    if kind == "Feature" and isinstance(geojson.get("geometry"), dict):
        return geojson["geometry"]
    if kind == "FeatureCollection":
        features = geojson.get("features") or []
        if features and isinstance(features[0], dict) and isinstance(features[0].get("geometry"), dict):
            return features[0]["geometry"]
    if kind in GEOMETRY_TYPES:
        return geojson
    raise ValidationError("invalid geojson", code="invalid_geojson")


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _check_position(position: Any, where: str) -> None:
    if not isinstance(position, (list, tuple)) or len(position) < 2:
        raise ValidationError(
            f"Invalid coordinate {where}. Must be at least [longitude, latitude].",
            code="invalid_geojson",
        )
    if not all(_is_number(value) for value in position):
        raise ValidationError(f"Coordinates must be numbers {where}.", code="invalid_geojson")
    longitude, latitude = position[0], position[1]
    if not -180 <= longitude <= 180:
        raise ValidationError(
            f"Longitude must be between -180 and 180 degrees {where}.", code="invalid_geojson"
        )
    if not -90 <= latitude <= 90:
        raise ValidationError(
            f"Latitude must be between -90 and 90 degrees {where}.", code="invalid_geojson"
        )


def validate_geometry(geometry: dict[str, Any]) -> None:
    """Validate coordinate structure of a normalized geometry."""

    kind = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if kind == "Point":
        _check_position(coordinates, "for point")
        return
    if kind == "Polygon":
        if not isinstance(coordinates, list) or not coordinates:
            raise ValidationError(
                "Polygon coordinates must be an array of linear rings.", code="invalid_geojson"
            )
        for ring_index, ring in enumerate(coordinates):
            if not isinstance(ring, list):
                raise ValidationError(
                    f"Polygon ring {ring_index} must be an array of coordinates.",
                    code="invalid_geojson",
                )
            if len(ring) < 4:
                raise ValidationError(
                    f"Polygon ring {ring_index} must have at least 4 coordinate pairs.",
                    code="invalid_geojson",
                )
            for coord_index, position in enumerate(ring):
                _check_position(position, f"at ring {ring_index}, position {coord_index}")
            if list(ring[0]) != list(ring[-1]):
                raise ValidationError(
                    f"Polygon ring {ring_index} must be closed (first and last coordinates must be identical).",
                    code="invalid_geojson",
                )
        return
    try:
        shape(geometry)
    except (AttributeError, GEOSException, IndexError, KeyError, TypeError, ValueError) as exc:
        raise ValidationError(
            f"Invalid {kind} geometry structure or coordinates.", code="invalid_geojson"
        ) from exc


def geometry_anchor(geometry: dict[str, Any]) -> tuple[float | None, float | None]:
    """Return (latitude, longitude) of a point or the centroid of any other geometry."""

    if geometry.get("type") == "Point":
        longitude, latitude = geometry["coordinates"][0], geometry["coordinates"][1]
        return float(latitude), float(longitude)
    centroid = shape(geometry).centroid
    if centroid.is_empty:
        return None, None
    return centroid.y, centroid.x


def as_point_feature(geojson: Any) -> dict[str, Any]:
    """Wrap a bare Point or unwrap a FeatureCollection so a Feature can be inspected."""

    if isinstance(geojson, dict):
        if geojson.get("type") == "FeatureCollection":
            features = geojson.get("features") or []
            if features and isinstance(features[0], dict):
                return features[0]
        if geojson.get("type") == "Point":
            return {"type": "Feature", "properties": {}, "geometry": geojson}
    return geojson


def extract_point_coordinates(feature: Any) -> PointCoordinates:
    """Read latitude, longitude and optional altitude from a Point feature."""

    if not isinstance(feature, dict) or feature.get("type") != "Feature":
        raise ValidationError("Expected a GeoJSON Feature with Point geometry.", code="invalid_point")
    geometry = feature.get("geometry")
    if not isinstance(geometry, dict) or geometry.get("type") != "Point":
        received = geometry.get("type") if isinstance(geometry, dict) else None
        raise ValidationError(
            f"Expected Point geometry, but received {received}.", code="invalid_point"
        )
    coordinates = geometry.get("coordinates")
    if not isinstance(coordinates, (list, tuple)) or len(coordinates) < 2:
        raise ValidationError(
            "Invalid Point coordinates. Expected [longitude, latitude] array.", code="invalid_point"
        )
    longitude, latitude = coordinates[0], coordinates[1]
    if not _is_number(longitude) or not _is_number(latitude):
        raise ValidationError("Coordinates must be numbers.", code="invalid_point")
    if not -180 <= longitude <= 180:
        raise ValidationError("Longitude must be between -180 and 180 degrees.", code="invalid_point")
    if not -90 <= latitude <= 90:
        raise ValidationError("Latitude must be between -90 and 90 degrees.", code="invalid_point")
    altitude = None
    if len(coordinates) > 2 and coordinates[2] is not None:
        if not _is_number(coordinates[2]):
            raise ValidationError("Altitude must be a number.", code="invalid_point")
        altitude = float(coordinates[2])
    return PointCoordinates(latitude=float(latitude), longitude=float(longitude), altitude=altitude)


def validate_species_composition(
    declared_tree_count: int | None,
    species_list: Sequence[schemas.SpeciesEntry],
    intervention_type: str,
) -> CompositionCheck:
    """Compare the declared tree count with the summed species counts."""

    if intervention_type == SINGLE_TREE_REGISTRATION:
        return CompositionCheck(tree_count=1)
    if not species_list:
        return CompositionCheck(tree_count=0, error=SPECIES_REQUIRED)
    total = sum(entry.species_count for entry in species_list)
    if total != (declared_tree_count or 0):
        return CompositionCheck(tree_count=0, error=TREE_COUNT_MISMATCH)
    return CompositionCheck(tree_count=total)


def resolve_species_references(
    db: Session,
    species_list: Sequence[schemas.SpeciesEntry],
) -> dict[int, models.ScientificSpecies]:
    """Return catalog rows for every referenced species, reporting all missing ids at once."""

    referenced = [
        entry.scientific_species_id
        for entry in species_list
        if not entry.is_unknown and entry.scientific_species_id is not None
    ]
    catalog = SpeciesCatalog(db)
    missing = catalog.missing(referenced)
    if missing:
        raise ValidationError(
            f"Unknown scientific species: {', '.join(str(species_id) for species_id in missing)}",
            code="unknown_species",
            payload={"missing_species_ids": missing},
        )
    return catalog.fetch(referenced)


def species_row_values(
    entry: schemas.SpeciesEntry,
    catalog: dict[int, models.ScientificSpecies],
    *,
    species_count: int | None = None,
) -> dict[str, Any]:
    """Build InterventionSpecies column values for one composition line."""

    matched = None if entry.is_unknown else catalog.get(entry.scientific_species_id)
    if matched is not None:
        return {
            "uid": generate_uid("invspc"),
            "scientific_species_id": matched.id,
            "is_unknown": False,
            "species_name": matched.scientific_name,
            "other_species": None,
            "species_count": entry.species_count if species_count is None else species_count,
        }
    return {
        "uid": generate_uid("invspc"),
        "scientific_species_id": None,
        "is_unknown": True,
        "species_name": UNKNOWN_SPECIES_NAME,
        "other_species": entry.species_name,
        "species_count": entry.species_count if species_count is None else species_count,
    }
