from datetime import datetime
from typing import Annotated, Optional, Any, Dict, Literal, List, Union
from pydantic import BaseModel, ConfigDict, Field, RootModel, model_validator


class SpeciesEntry(BaseModel):
    scientific_species_id: Optional[int] = None
    is_unknown: bool = False
    species_name: Optional[str] = None
    species_count: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def mark_unknown(self) -> "SpeciesEntry":
        if self.scientific_species_id is None:
            self.is_unknown = True
        return self


class Measurements(BaseModel):
    height: Optional[float] = Field(default=None, gt=0)
    width: Optional[float] = Field(default=None, gt=0)


class _InterventionCreateBase(BaseModel):
    site_uid: Optional[str] = None
    idempotency_key: Optional[str] = Field(default=None, max_length=64)
    intervention_start_date: datetime
    intervention_end_date: datetime
    geometry: Dict[str, Any]
    capture_mode: Literal["on_site", "off_site", "external"] = "on_site"
    metadata: Optional[Dict[str, Any]] = None
    tag: Optional[str] = None

    @model_validator(mode="after")
    def validate_window(self):
        if self.intervention_end_date < self.intervention_start_date:
            raise ValueError("intervention_end_date must not precede intervention_start_date")
        return self


class SingleTreeInterventionCreate(_InterventionCreateBase):
    type: Literal["single-tree-registration"]
    species: List[SpeciesEntry] = Field(default_factory=list)
    measurements: Measurements = Field(default_factory=Measurements)


class PlantingInterventionCreate(_InterventionCreateBase):
    type: Literal[
        "assisting-seed-rain",
        "direct-seeding",
        "enrichment-planting",
        "generic-tree-registration",
        "multi-tree-registration",
        "plot-plant-registration",
        "removal-invasive-species",
    ]
    species: List[SpeciesEntry] = Field(default_factory=list)
    tree_count: int = Field(ge=0)


class SiteInterventionCreate(_InterventionCreateBase):
    type: Literal[
        "control-livestock",
        "fencing",
        "fire-patrol",
        "fire-suppression",
        "firebreaks",
        "grass-suppression",
        "liberating-regenerant",
        "maintenance",
        "marking-regenerant",
        "other-intervention",
        "soil-improvement",
        "stop-tree-harvesting",
    ]


InterventionCreate = Annotated[
    Union[SingleTreeInterventionCreate, PlantingInterventionCreate, SiteInterventionCreate],
    Field(discriminator="type"),
]


class InterventionCreateRequest(RootModel[InterventionCreate]):
    pass


class SampleTreeCreate(BaseModel):
    parent_intervention_uid: str
    species_uid: Optional[str] = None
    scientific_species_id: Optional[int] = None
    geometry: Dict[str, Any]
    measurements: Measurements = Field(default_factory=Measurements)
    planting_date: Optional[datetime] = None
    tag: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class BulkInterventionRecord(BaseModel):
    client_id: Optional[str] = Field(default=None, max_length=64)
    type: str
    site_uid: Optional[str] = None
    intervention_start_date: datetime
    intervention_end_date: datetime
    geometry: Dict[str, Any]
    species: List[SpeciesEntry] = Field(default_factory=list)
    tree_count: Optional[int] = Field(default=None, ge=0)
    measurements: Measurements = Field(default_factory=Measurements)
    metadata: Optional[Dict[str, Any]] = None
    tag: Optional[str] = None


class FailedIntervention(BaseModel):
    uid: str
    error: str


class BulkResult(BaseModel):
    total_processed: int = 0
    passed: int = 0
    failed: int = 0
    failed_intervention_uid: List[FailedIntervention] = Field(default_factory=list)
    successful_interventions: List[str] = Field(default_factory=list)


class SpeciesReconcileRequest(BaseModel):
    scientific_species_id: Optional[int] = None
    species_count: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def require_change(self) -> "SpeciesReconcileRequest":
        if self.scientific_species_id is None and self.species_count is None:
            raise ValueError("scientific_species_id or species_count is required")
        return self


class TransferOptions(BaseModel):
    notify: bool = True
    reason: Optional[str] = None


class TransferRequest(BaseModel):
    new_owner_id: int
    options: TransferOptions = Field(default_factory=TransferOptions)


class BulkTransferRequest(BaseModel):
    intervention_ids: List[int] = Field(min_length=1)
    new_owner_id: int
    options: TransferOptions = Field(default_factory=TransferOptions)


class InterventionSpeciesOut(BaseModel):
    uid: str
    scientific_species_id: Optional[int] = None
    is_unknown: bool
    species_name: Optional[str] = None
    species_count: int
    version: int
    model_config = ConfigDict(from_attributes=True)


class TreeOut(BaseModel):
    uid: str
    hid: str
    tree_type: str
    species_name: Optional[str] = None
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    status: str
    created_by_id: int
    model_config = ConfigDict(from_attributes=True)


class InterventionOut(BaseModel):
    id: int
    uid: str
    hid: str
    type: str
    user_id: int
    project_id: int
    site_id: Optional[int] = None
    status: str
    total_tree_count: int
    geometry_type: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    location: Dict[str, Any]
    intervention_start_date: datetime
    intervention_end_date: datetime
    species: List[InterventionSpeciesOut] = Field(default_factory=list)
    trees: List[TreeOut] = Field(default_factory=list)
    model_config = ConfigDict(from_attributes=True)


class SpeciesReconciliationOut(BaseModel):
    intervention_uid: str
    species: InterventionSpeciesOut
    trees_updated: int
    total_tree_count: int
    changed_fields: List[str]


class TransferResult(BaseModel):
    intervention_id: int
    intervention_uid: str
    previous_owner_id: int
    new_owner_id: int
    trees_transferred: int
    changed_fields: List[str]
    transferred_at: datetime


class FailedTransfer(BaseModel):
    id: int
    error: str


class BulkTransferResult(BaseModel):
    successful: List[TransferResult] = Field(default_factory=list)
    failed: List[FailedTransfer] = Field(default_factory=list)
