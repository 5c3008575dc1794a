"""
Recipe Explosion Service.

Expands one sold catalog item into the raw-ingredient quantities it consumed,
scaled for recipe yield and waste, in each ingredient's stock unit.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from sr_integration.core.errors import RecipeMissingError, UnitConversionError
from sr_integration.core.units import convert_quantity, q4
from sr_integration.models.ingredient import Recipe, RecipeIngredient


@dataclass
class IngredientDeduction:
    """Quantity of one ingredient consumed by a sale line."""
    ingredient_id: UUID
    ingredient_name: str
    quantity: Decimal  # Waste-adjusted, in the ingredient's stock unit
    unit: str
    unit_cost: Decimal  # Current purchasing price, read at explosion time
    is_optional: bool = False

    @property
    def cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass
class RecipeExplosion:
    """Result of exploding one sale line."""
    menu_item_id: UUID
    recipe_id: UUID
    quantity_sold: Decimal
    deductions: list[IngredientDeduction]
    skipped_ingredients: list[str] = field(default_factory=list)  # Inactive optional ingredients

    @property
    def total_cost(self) -> Decimal:
        return q4(sum((d.cost for d in self.deductions), Decimal("0")))


class RecipeExplosionService:
    """
    Explodes sold quantities into ingredient deductions.

    Mathematical Model:
    qty_j = (quantity_sold / yield_quantity) × qty_per_yield_j × (1 + waste_pct_j / 100)
    cost  = Σ_j qty_j × unit_cost_j

    Where:
    - yield_quantity = units of the item one batch of the recipe makes (0 is treated as 1)
    - qty_per_yield_j = quantity of ingredient j per batch, in the recipe line's unit
    - waste_pct_j = trim/spillage percentage for ingredient j on this recipe
    """

    def __init__(self, db: Session):
        self.db = db

    def get_active_recipe(self, menu_item_id: UUID) -> Optional[Recipe]:
        """Currently active recipe for a catalog item (latest update wins)."""
        stmt = (
            select(Recipe)
            .options(selectinload(Recipe.ingredients).selectinload(RecipeIngredient.ingredient))
            .where(Recipe.menu_item_id == menu_item_id, Recipe.is_active == True)  # noqa: E712
            .order_by(Recipe.updated_at.desc(), Recipe.created_at.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def explode(self, menu_item_id: UUID, quantity_sold: Decimal) -> RecipeExplosion:
        """
        Convert a sold quantity into ingredient deductions, in recipe order.

        Raises:
            RecipeMissingError: no active recipe, or the recipe has no ingredients
            UnitConversionError: a recipe unit is incompatible with the stock unit
            ValueError: a required ingredient is inactive
        """
        recipe = self.get_active_recipe(menu_item_id)
        if recipe is None:
            raise RecipeMissingError(f"No active recipe for menu item {menu_item_id}")
        if not recipe.ingredients:
            raise RecipeMissingError(f"Recipe {recipe.id} has no ingredients")

        yield_quantity = recipe.yield_quantity or Decimal(1)
        if yield_quantity == 0:
            yield_quantity = Decimal(1)
        scale = Decimal(quantity_sold) / yield_quantity

        deductions: list[IngredientDeduction] = []
        skipped: list[str] = []

        for line in recipe.ingredients:
            ingredient = line.ingredient
            if not ingredient.is_active:
                if line.is_optional:
                    skipped.append(ingredient.name)
                    continue
                raise ValueError(f"Ingredient '{ingredient.name}' is inactive")

            base_qty = line.quantity_per_yield * scale
            waste_adjusted = base_qty * (1 + (line.waste_percentage or Decimal(0)) / 100)

            try:
                stock_qty = convert_quantity(waste_adjusted, line.unit, ingredient.unit)
            except UnitConversionError as e:
                raise UnitConversionError(f"{ingredient.name}: {e.message}") from e

            deductions.append(IngredientDeduction(
                ingredient_id=ingredient.id,
                ingredient_name=ingredient.name,
                quantity=q4(stock_qty),
                unit=ingredient.unit,
                unit_cost=ingredient.unit_cost or Decimal(0),
                is_optional=line.is_optional,
            ))

        return RecipeExplosion(
            menu_item_id=menu_item_id,
            recipe_id=recipe.id,
            quantity_sold=Decimal(quantity_sold),
            deductions=deductions,
            skipped_ingredients=skipped,
        )
