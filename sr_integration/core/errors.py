"""
Error taxonomy for Soft Restaurant sale ingestion and cancellation.

Errors scoped to a line item or a single sale are caught by the orchestrators
and turned into per-item / per-sale outcomes. Only PayloadError and
SecurityError abort a whole batch.
"""
from typing import Any, Optional


class SRIntegrationError(Exception):
    """Base class for all integration errors."""

    code = "integration_error"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        data = {"code": self.code, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


class PayloadError(SRIntegrationError):
    """The payload as a whole is malformed (not an object, no sales list)."""

    code = "invalid_payload"


class SaleValidationError(SRIntegrationError):
    """A single sale in a batch is missing required fields or is malformed."""

    code = "validation_error"


class SecurityError(SRIntegrationError):
    """The SR company identifier does not match the calling integration."""

    code = "company_id_mismatch"


class UnmappedDependencyError(SRIntegrationError):
    """An external identifier could not be resolved to an internal entity."""

    code = "unmapped_dependency"


class UnmappedWarehouseError(UnmappedDependencyError):
    """Warehouse code has no branch mapping and the integration has no default branch."""

    code = "unmapped_warehouse"


class RecipeMissingError(SRIntegrationError):
    """The catalog item has no active recipe. Expected and non-fatal."""

    code = "recipe_missing"


class UnitConversionError(SRIntegrationError):
    """A recipe unit cannot be converted to the ingredient's stock unit."""

    code = "unit_mismatch"


class InsufficientDataError(SRIntegrationError):
    """
    POS monetary figures do not reconcile within tolerance.

    Only ever reported as a warning: the POS is authoritative for money.
    """

    code = "insufficient_data"


class StorageError(SRIntegrationError):
    """A database write failed. ``transient`` errors are safe to retry."""

    code = "storage_error"

    def __init__(self, message: str, transient: bool = False, details: Optional[Any] = None):
        super().__init__(message, details)
        self.transient = transient

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["retryable"] = self.transient
        return data


class SaleNotFoundError(SRIntegrationError):
    """No sale exists for the given external id."""

    code = "sale_not_found"


class InvalidSaleStateError(SRIntegrationError):
    """The requested status transition is not allowed."""

    code = "invalid_sale_state"
