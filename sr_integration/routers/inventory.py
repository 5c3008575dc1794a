"""
Inventory router: ledger-backed stock lookups, manual movements and low-stock alerts.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from sr_integration.core.deps import get_integration
from sr_integration.core.errors import UnitConversionError
from sr_integration.core.units import convert_quantity, q4
from sr_integration.db.session import get_db
from sr_integration.models.ingredient import Ingredient
from sr_integration.models.integration import IntegrationConnection
from sr_integration.schemas.soft_restaurant import MAX_AMOUNT
from sr_integration.services.inventory_ledger import InventoryLedgerService
from sr_integration.services.stock_alerts import StockAlertService


router = APIRouter(prefix="/inventory", tags=["inventory"])

# Numeric(14, 4) stock columns
MAX_STOCK_QUANTITY = Decimal("9999999999")


# Schemas
class StockResponse(BaseModel):
    branch_id: UUID
    ingredient_id: UUID
    ingredient_name: str
    unit: str
    current_stock: Decimal


class RestockRequest(BaseModel):
    branch_id: UUID
    ingredient_id: UUID
    quantity: Decimal = Field(
        ...,
        ge=-MAX_STOCK_QUANTITY,
        le=MAX_STOCK_QUANTITY,
        description="Positive to add stock, negative to write it off",
    )
    unit: Optional[str] = None  # Defaults to the ingredient's stock unit
    unit_cost: Optional[Decimal] = Field(default=None, ge=0, le=MAX_AMOUNT)
    notes: Optional[str] = None


class AlertResponse(BaseModel):
    id: UUID
    branch_id: UUID
    ingredient_id: UUID
    alert_type: str
    severity: str
    current_stock: Decimal
    minimum_stock: Decimal
    reorder_point: Decimal
    suggested_order_quantity: Decimal
    status: str
    acknowledged_at: Optional[datetime]
    resolved_at: Optional[datetime]

    class Config:
        from_attributes = True


def _get_ingredient(db: Session, tenant_id: UUID, ingredient_id: UUID) -> Ingredient:
    ingredient = db.query(Ingredient).filter(
        Ingredient.id == ingredient_id,
        Ingredient.tenant_id == tenant_id,
    ).first()
    if not ingredient:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ingredient not found")
    return ingredient


@router.get("/stock/{branch_id}/{ingredient_id}", response_model=StockResponse)
def get_stock(
    branch_id: UUID,
    ingredient_id: UUID,
    integration: IntegrationConnection = Depends(get_integration),
    db: Session = Depends(get_db),
):
    """Current stock as the sum of the ingredient's ledger movements in the branch."""
    ingredient = _get_ingredient(db, integration.tenant_id, ingredient_id)
    ledger = InventoryLedgerService(db)
    return StockResponse(
        branch_id=branch_id,
        ingredient_id=ingredient.id,
        ingredient_name=ingredient.name,
        unit=ingredient.unit,
        current_stock=ledger.current_stock(integration.tenant_id, branch_id, ingredient.id),
    )


@router.post("/restock", response_model=StockResponse, status_code=status.HTTP_201_CREATED)
def restock(
    request: RestockRequest,
    integration: IntegrationConnection = Depends(get_integration),
    db: Session = Depends(get_db),
):
    """
    Record a manual stock movement (delivery, count correction, write-off).

    Open alerts are not cleared by a restock; resolve them explicitly.
    """
    if request.quantity == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Quantity must be non-zero")

    tenant_id = integration.tenant_id
    ingredient = _get_ingredient(db, tenant_id, request.ingredient_id)

    try:
        quantity = q4(convert_quantity(request.quantity, request.unit or ingredient.unit, ingredient.unit))
    except UnitConversionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    if quantity == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Quantity rounds to zero {ingredient.unit}",
        )

    ledger = InventoryLedgerService(db)
    new_stock = ledger.apply(
        tenant_id=tenant_id,
        branch_id=request.branch_id,
        ingredient_id=ingredient.id,
        quantity=quantity,
        unit=ingredient.unit,
        reference_type="manual",
        unit_cost=request.unit_cost if request.unit_cost is not None else ingredient.unit_cost,
        notes=request.notes,
    )
    if quantity < 0:
        StockAlertService(db, integration_id=integration.id).evaluate(
            tenant_id, request.branch_id, ingredient.id, new_stock
        )
    db.commit()

    return StockResponse(
        branch_id=request.branch_id,
        ingredient_id=ingredient.id,
        ingredient_name=ingredient.name,
        unit=ingredient.unit,
        current_stock=new_stock,
    )


@router.get("/alerts", response_model=List[AlertResponse])
def list_alerts(
    branch_id: Optional[UUID] = None,
    alert_status: Optional[str] = "active",
    integration: IntegrationConnection = Depends(get_integration),
    db: Session = Depends(get_db),
):
    """List low-stock alerts, active ones by default."""
    return StockAlertService(db).list_alerts(integration.tenant_id, branch_id=branch_id, status=alert_status)


@router.post("/alerts/{alert_id}/acknowledge", response_model=AlertResponse)
def acknowledge_alert(
    alert_id: UUID,
    integration: IntegrationConnection = Depends(get_integration),
    db: Session = Depends(get_db),
):
    service = StockAlertService(db)
    try:
        alert = service.acknowledge(integration.tenant_id, alert_id)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    db.commit()
    db.refresh(alert)
    return alert


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse)
def resolve_alert(
    alert_id: UUID,
    integration: IntegrationConnection = Depends(get_integration),
    db: Session = Depends(get_db),
):
    """Close an alert once the ingredient has been restocked."""
    service = StockAlertService(db)
    try:
        alert = service.resolve(integration.tenant_id, alert_id)
    except LookupError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    db.commit()
    db.refresh(alert)
    return alert
