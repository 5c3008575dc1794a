"""
Soft Restaurant webhook router: sale ingestion, cancellation and product mapping review.
"""
import logging
import time
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from sr_integration.core.config import get_settings
from sr_integration.core.deps import get_integration
from sr_integration.db.session import get_db
from sr_integration.models.integration import IntegrationConnection
from sr_integration.schemas.soft_restaurant import CancellationOutcome
from sr_integration.services.identity_mapping import IdentityMappingService
from sr_integration.services.sale_cancellation import SaleCancellationService
from sr_integration.services.sale_ingestion import IngestionResult, SaleIngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/soft-restaurant", tags=["soft-restaurant"])
settings = get_settings()

# Base delay between retries of sales that failed with a transient storage error
RETRY_BACKOFF_SECONDS = 0.25


# Schemas
class ProductMappingResponse(BaseModel):
    id: UUID
    external_id: str
    external_name: Optional[str]
    menu_item_id: Optional[UUID]
    confidence: str
    is_active: bool
    suggested_menu_item_id: Optional[UUID]
    suggestion_score: Optional[Decimal]
    times_seen: int
    last_seen_at: Optional[datetime]

    class Config:
        from_attributes = True


class ProductMappingUpdate(BaseModel):
    menu_item_id: UUID


@router.post("/webhook")
def receive_sales(
    payload: Any = Body(...),
    integration: IntegrationConnection = Depends(get_integration),
    db: Session = Depends(get_db),
):
    """
    Receive a batch of sales from the SR agent.

    Returns one outcome per sale (processed, duplicate or failed). Sales that
    failed with a transient storage error are retried here before responding.
    A company id mismatch rejects the whole batch with 403.
    """
    service = SaleIngestionService(db, settings)
    result = service.ingest(integration, payload)
    retry_transient_failures(service, integration, payload["Ventas"], result)
    return result.to_dict()


def retry_transient_failures(
    service: SaleIngestionService,
    integration: IntegrationConnection,
    raw_sales: list,
    result: IngestionResult,
) -> None:
    """Re-ingest retryable failures in place, up to SR_MAX_RETRY_COUNT attempts."""
    for attempt in range(1, settings.SR_MAX_RETRY_COUNT + 1):
        pending = result.retryable_indexes()
        if not pending:
            return
        time.sleep(RETRY_BACKOFF_SECONDS * attempt)
        for index in pending:
            logger.info(f"Retrying SR sale #{index} (attempt {attempt})")
            result.outcomes[index] = service.ingest_sale(
                integration, result.company_id, raw_sales[index], attempt
            )


@router.post("/cancel", response_model=CancellationOutcome)
def cancel_sale(
    payload: Any = Body(...),
    integration: IntegrationConnection = Depends(get_integration),
    db: Session = Depends(get_db),
):
    """
    Cancel a previously received sale and restore the stock it consumed.

    Cancelling an already cancelled sale returns ``already_cancelled``.
    """
    return SaleCancellationService(db).cancel(integration, payload)


@router.get("/product-mappings", response_model=List[ProductMappingResponse])
def list_product_mappings(
    unmapped: bool = False,
    integration: IntegrationConnection = Depends(get_integration),
    db: Session = Depends(get_db),
):
    """
    List SR products seen by this integration.

    With ``unmapped=true`` only products awaiting a menu item are returned,
    each with its fuzzy name suggestion when one was found.
    """
    service = IdentityMappingService(db)
    return service.list_product_mappings(integration.tenant_id, integration.id, unmapped_only=unmapped)


@router.put("/product-mappings/{mapping_id}", response_model=ProductMappingResponse)
def update_product_mapping(
    mapping_id: UUID,
    update: ProductMappingUpdate,
    integration: IntegrationConnection = Depends(get_integration),
    db: Session = Depends(get_db),
):
    """Map an SR product to a menu item. Applies to sales received from now on."""
    service = IdentityMappingService(db)
    try:
        mapping = service.map_product(integration.tenant_id, mapping_id, update.menu_item_id)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    db.commit()
    db.refresh(mapping)
    return mapping
