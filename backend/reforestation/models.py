from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    JSON,
    Integer,
    Text,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .database import Base
from .intervention_types import (
    CAPTURE_MODES,
    CAPTURE_STATUSES,
    INTERVENTION_STATUSES,
    INTERVENTION_TYPES,
    TREE_STATUSES,
    TREE_TYPES,
)

PROJECT_ROLES = ("owner", "admin", "manager", "contributor", "researcher", "observer")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(36), unique=True, nullable=False)
    email = Column(String(320), unique=True, nullable=False)
    display_name = Column(String(400))
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime(timezone=True))

    memberships = relationship("ProjectMember", back_populates="user")


class Project(Base):
    __tablename__ = "projects"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(36), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    created_by_id = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime(timezone=True))

    members = relationship("ProjectMember", back_populates="project")
    sites = relationship("Site", back_populates="project")


class ProjectMember(Base):
    __tablename__ = "project_members"
    project_id = Column(Integer, ForeignKey("projects.id"), primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    role = Column(
        Enum(*PROJECT_ROLES, name="project_role", create_constraint=True),
        default="contributor",
        nullable=False,
    )
    joined_at = Column(DateTime(timezone=True), default=_utcnow)

    project = relationship("Project", back_populates="members")
    user = relationship("User", back_populates="memberships")


class Site(Base):
    __tablename__ = "sites"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(36), unique=True, nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    name = Column(String(255), nullable=False)
    boundary = Column(JSON)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    deleted_at = Column(DateTime(timezone=True))

    project = relationship("Project", back_populates="sites")


class ScientificSpecies(Base):
    __tablename__ = "scientific_species"
    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(36), unique=True, nullable=False)
    scientific_name = Column(String(255), unique=True, nullable=False)
    common_name = Column(String(400))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    deleted_at = Column(DateTime(timezone=True))


class Intervention(Base):
    __tablename__ = "interventions"
    __table_args__ = (
        CheckConstraint("total_tree_count >= 0", name="interventions_total_tree_count_check"),
        Index("interventions_project_idx", "project_id"),
        Index("interventions_user_idx", "user_id"),
        Index("interventions_site_status_idx", "site_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(64), unique=True, nullable=False)
    hid = Column(String(16), unique=True, nullable=False)
    type = Column(
        Enum(*INTERVENTION_TYPES, name="intervention_type", create_constraint=True),
        nullable=False,
    )
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id"), nullable=False)
    site_id = Column(Integer, ForeignKey("sites.id"))
    parent_intervention_id = Column(Integer, ForeignKey("interventions.id"))
    idempotency_key = Column(String(64), unique=True, nullable=False)
    registration_date = Column(DateTime(timezone=True), default=_utcnow)
    intervention_start_date = Column(DateTime(timezone=True), nullable=False)
    intervention_end_date = Column(DateTime(timezone=True), nullable=False)
    location = Column(JSON, nullable=False)
    original_geometry = Column(JSON, nullable=False)
    geometry_type = Column(String(50))
    latitude = Column(Float)
    longitude = Column(Float)
    capture_mode = Column(
        Enum(*CAPTURE_MODES, name="capture_mode", create_constraint=True),
        default="on_site",
        nullable=False,
    )
    capture_status = Column(
        Enum(*CAPTURE_STATUSES, name="capture_status", create_constraint=True),
        default="complete",
        nullable=False,
    )
    total_tree_count = Column(Integer, default=0, nullable=False)
    status = Column(
        Enum(*INTERVENTION_STATUSES, name="intervention_status", create_constraint=True),
        default="active",
        nullable=False,
    )
    flag = Column(Boolean, default=False, nullable=False)
    flag_reason = Column(JSON, default=list)
    meta = Column("metadata", JSON)
    tag = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    edited_at = Column(DateTime(timezone=True))
    deleted_at = Column(DateTime(timezone=True))

    species = relationship(
        "InterventionSpecies",
        back_populates="intervention",
        order_by="InterventionSpecies.id",
    )
    trees = relationship("Tree", back_populates="intervention", order_by="Tree.id")
    site = relationship("Site")
    owner = relationship("User", foreign_keys=[user_id])


class InterventionSpecies(Base):
    __tablename__ = "intervention_species"
    __table_args__ = (
        CheckConstraint("species_count >= 0", name="intervention_species_count_check"),
        Index("intervention_species_intervention_idx", "intervention_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(64), unique=True, nullable=False)
    intervention_id = Column(Integer, ForeignKey("interventions.id"), nullable=False)
    scientific_species_id = Column(Integer, ForeignKey("scientific_species.id"))
    is_unknown = Column(Boolean, default=False, nullable=False)
    species_name = Column(String(255))
    other_species = Column(String(255))
    species_count = Column(Integer, default=0, nullable=False)
    # purpose: optimistic concurrency counter guarding count reductions
    version = Column(Integer, default=1, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime(timezone=True))

    intervention = relationship("Intervention", back_populates="species")
    scientific_species = relationship("ScientificSpecies")
    trees = relationship("Tree", back_populates="intervention_species")


class Tree(Base):
    __tablename__ = "trees"
    __table_args__ = (
        Index("trees_intervention_idx", "intervention_id"),
        Index("trees_intervention_species_idx", "intervention_species_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    uid = Column(String(64), unique=True, nullable=False)
    hid = Column(String(16), unique=True, nullable=False)
    intervention_id = Column(Integer, ForeignKey("interventions.id"), nullable=False)
    intervention_species_id = Column(
        Integer, ForeignKey("intervention_species.id"), nullable=False
    )
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    tree_type = Column(
        Enum(*TREE_TYPES, name="tree_type", create_constraint=True),
        default="single",
        nullable=False,
    )
    species_name = Column(String(255))
    tag = Column(String(100))
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    altitude = Column(Float)
    height = Column(Float)
    width = Column(Float)
    planting_date = Column(DateTime(timezone=True))
    status = Column(
        Enum(*TREE_STATUSES, name="tree_status", create_constraint=True),
        default="alive",
        nullable=False,
    )
    original_geometry = Column(JSON)
    meta = Column("metadata", JSON)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime(timezone=True))

    intervention = relationship("Intervention", back_populates="trees")
    intervention_species = relationship("InterventionSpecies", back_populates="trees")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"))
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_uid = Column(String(64))
    details = Column(JSON, default=dict)
    notes = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
