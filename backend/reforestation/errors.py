"""Typed failures raised by the intervention engine."""

from __future__ import annotations

from typing import Any

# purpose: closed set of engine failures carrying machine-readable codes and diagnostics
# status: active


class InterventionError(RuntimeError):
    """Base error for intervention ingestion and consistency flows."""

    status_code = 400
    default_code = "intervention_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.payload = payload or {}

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"message": self.message, "code": self.code}
        detail.update(self.payload)
        return detail


class ValidationError(InterventionError):
    """Raised when geometry, composition or references are malformed."""

    default_code = "validation_error"


class NotFoundError(InterventionError):
    """Raised when a site, intervention, species or user cannot be located."""

    status_code = 404
    default_code = "not_found"


class ForbiddenError(InterventionError):
    """Raised when the actor or the intervention state forbids the mutation."""

    status_code = 403
    default_code = "forbidden"


class CountViolationError(InterventionError):
    """Raised when a species count would drop below its tracked trees."""

    status_code = 409
    default_code = "species_count_below_tree_count"

    def __init__(
        self,
        message: str,
        *,
        current_tree_count: int,
        requested_species_count: int,
        tree_hids: list[str],
    ) -> None:
        super().__init__(
            message,
            payload={
                "current_tree_count": current_tree_count,
                "requested_species_count": requested_species_count,
                "tree_hids": list(tree_hids),
            },
        )
        self.current_tree_count = current_tree_count
        self.requested_species_count = requested_species_count
        self.tree_hids = list(tree_hids)


class ConcurrentUpdateError(InterventionError):
    """Raised when a guarded row changed between read and write."""

    status_code = 409
    default_code = "concurrent_update"


class InterventionWriteError(InterventionError):
    """Raised when storage rejects a write; wraps the underlying cause."""

    status_code = 500
    default_code = "write_failed"
