from __future__ import annotations

from dataclasses import dataclass

# purpose: static capability table describing what each intervention type may carry
# status: active

SINGLE_TREE_REGISTRATION = "single-tree-registration"
SAMPLE_TREE_REGISTRATION = "sample-tree-registration"
MULTI_TREE_REGISTRATION = "multi-tree-registration"

INTERVENTION_STATUSES = ("planned", "active", "completed", "failed", "on-hold", "cancelled")
TERMINAL_STATUSES = frozenset({"completed", "cancelled", "failed"})

TREE_STATUSES = ("alive", "dead", "unknown", "removed")
TREE_TYPES = ("single", "sample")

CAPTURE_MODES = ("on_site", "off_site", "external")
CAPTURE_STATUSES = ("complete", "partial", "incomplete")


@dataclass(frozen=True)
class InterventionTypeConfig:
    """Capabilities of a single intervention type."""

    intervention_type: str
    allows_species: bool = False
    allows_multiple_species: bool = False
    requires_species: bool = False
    allows_tree_registration: bool = False
    requires_tree_registration: bool = False
    allows_sample_trees: bool = False
    geojson_type: str | None = None


_CONFIGS: tuple[InterventionTypeConfig, ...] = (
    InterventionTypeConfig(
        "direct-seeding",
        allows_species=True,
        allows_multiple_species=True,
        requires_species=True,
    ),
    InterventionTypeConfig(
        "enrichment-planting",
        allows_species=True,
        allows_multiple_species=True,
        requires_species=True,
        allows_tree_registration=True,
        requires_tree_registration=True,
        allows_sample_trees=True,
    ),
    InterventionTypeConfig(
        "removal-invasive-species",
        allows_species=True,
        allows_multiple_species=True,
    ),
    InterventionTypeConfig(
        MULTI_TREE_REGISTRATION,
        allows_species=True,
        allows_multiple_species=True,
        requires_species=True,
        allows_tree_registration=True,
        requires_tree_registration=True,
        allows_sample_trees=True,
        geojson_type="Polygon",
    ),
    InterventionTypeConfig(
        SAMPLE_TREE_REGISTRATION,
        allows_species=True,
        requires_species=True,
        allows_tree_registration=True,
        requires_tree_registration=True,
        allows_sample_trees=True,
        geojson_type="Point",
    ),
    InterventionTypeConfig(
        SINGLE_TREE_REGISTRATION,
        allows_species=True,
        requires_species=True,
        allows_tree_registration=True,
        requires_tree_registration=True,
        geojson_type="Point",
    ),
    InterventionTypeConfig(
        "generic-tree-registration",
        allows_species=True,
        allows_multiple_species=True,
        allows_tree_registration=True,
        requires_tree_registration=True,
    ),
    InterventionTypeConfig(
        "plot-plant-registration",
        allows_species=True,
        allows_multiple_species=True,
        allows_tree_registration=True,
    ),
    InterventionTypeConfig(
        "assisting-seed-rain",
        allows_species=True,
        allows_multiple_species=True,
    ),
    InterventionTypeConfig("control-livestock"),
    InterventionTypeConfig("fencing"),
    InterventionTypeConfig("fire-patrol"),
    InterventionTypeConfig("fire-suppression"),
    InterventionTypeConfig("firebreaks"),
    InterventionTypeConfig("grass-suppression"),
    InterventionTypeConfig("liberating-regenerant"),
    InterventionTypeConfig("maintenance"),
    InterventionTypeConfig("marking-regenerant"),
    InterventionTypeConfig("other-intervention"),
    InterventionTypeConfig("soil-improvement"),
    InterventionTypeConfig("stop-tree-harvesting"),
)

_CONFIG_BY_TYPE: dict[str, InterventionTypeConfig] = {
    config.intervention_type: config for config in _CONFIGS
}

INTERVENTION_TYPES: tuple[str, ...] = tuple(sorted(_CONFIG_BY_TYPE))

SPECIES_BEARING_TYPES: tuple[str, ...] = tuple(
    sorted(
        config.intervention_type
        for config in _CONFIGS
        if config.allows_species
        and config.intervention_type not in {SINGLE_TREE_REGISTRATION, SAMPLE_TREE_REGISTRATION}
    )
)

SITE_ONLY_TYPES: tuple[str, ...] = tuple(
    sorted(config.intervention_type for config in _CONFIGS if not config.allows_species)
)


def get_intervention_config(intervention_type: str | None) -> InterventionTypeConfig | None:
    """Return the capability entry for ``intervention_type`` or ``None``."""

    if not intervention_type:
        return None
    return _CONFIG_BY_TYPE.get(intervention_type)
