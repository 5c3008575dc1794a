"""
SQLAlchemy models for the SR integration.
"""
# Integration configuration
from sr_integration.models.integration import IntegrationConnection, WarehouseMapping, PaymentMethodMapping

# Catalog
from sr_integration.models.menu import MenuItem
from sr_integration.models.ingredient import Ingredient, Recipe, RecipeIngredient

# Event store
from sr_integration.models.sale import MovementType, Sale, SaleItem, Payment
from sr_integration.models.product_mapping import ProductMapping
from sr_integration.models.sync_log import SyncLog

# Inventory
from sr_integration.models.inventory import InventoryMovement, IngredientStock, LowStockAlert


__all__ = [
    # Integration
    "IntegrationConnection",
    "WarehouseMapping",
    "PaymentMethodMapping",
    # Catalog
    "MenuItem",
    "Ingredient",
    "Recipe",
    "RecipeIngredient",
    # Event store
    "MovementType",
    "Sale",
    "SaleItem",
    "Payment",
    "ProductMapping",
    "SyncLog",
    # Inventory
    "InventoryMovement",
    "IngredientStock",
    "LowStockAlert",
]
