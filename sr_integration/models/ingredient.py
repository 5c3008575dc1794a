"""
Ingredient and recipe models for costing and stock deduction.
"""
import uuid
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, Numeric, DateTime, ForeignKey, Uuid, func,
    CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from sr_integration.db.base import Base


class Ingredient(Base):
    """A raw ingredient tracked in inventory."""
    __tablename__ = "ingredients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    name = Column(String(255), nullable=False)
    unit = Column(String(50), nullable=False)  # kg, l, unit
    unit_cost = Column(Numeric(12, 4), nullable=False, default=0)  # Current purchasing price per unit

    # Alert thresholds
    minimum_stock = Column(Numeric(14, 4), nullable=False, default=0)
    reorder_point = Column(Numeric(14, 4), nullable=False, default=0)
    reorder_quantity = Column(Numeric(14, 4))

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    recipe_lines = relationship("RecipeIngredient", back_populates="ingredient")

    __table_args__ = (
        Index("idx_ingredients_tenant", "tenant_id"),
    )


class Recipe(Base):
    """
    How one catalog item is made.

    Quantities on the lines are per ``yield_quantity`` units of the item.
    Only active recipes are used for deduction; the most recently updated wins.
    """
    __tablename__ = "recipes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid, nullable=False)
    menu_item_id = Column(Uuid, ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False)
    yield_quantity = Column(Numeric(10, 4), nullable=False, default=1)
    yield_unit = Column(String(50), default="portion")
    is_active = Column(Boolean, nullable=False, default=True)
    notes = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    menu_item = relationship("MenuItem", back_populates="recipes")
    ingredients = relationship(
        "RecipeIngredient",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="RecipeIngredient.position",
    )

    __table_args__ = (
        Index("idx_recipes_menu_item_active", "menu_item_id", "is_active"),
    )


class RecipeIngredient(Base):
    """One ingredient line of a recipe."""
    __tablename__ = "recipe_ingredients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    recipe_id = Column(Uuid, ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False)
    ingredient_id = Column(Uuid, ForeignKey("ingredients.id", ondelete="RESTRICT"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    quantity_per_yield = Column(Numeric(12, 4), nullable=False)
    unit = Column(String(50), nullable=False)
    waste_percentage = Column(Numeric(5, 2), nullable=False, default=0)  # 5.00 = 5% trim/spillage
    is_optional = Column(Boolean, nullable=False, default=False)  # Garnishes, sides
    created_at = Column(DateTime, server_default=func.now())

    recipe = relationship("Recipe", back_populates="ingredients")
    ingredient = relationship("Ingredient", back_populates="recipe_lines")

    __table_args__ = (
        CheckConstraint("quantity_per_yield > 0", name="ck_recipe_ingredient_quantity_positive"),
        CheckConstraint(
            "waste_percentage >= 0 AND waste_percentage < 100",
            name="ck_recipe_ingredient_waste_range",
        ),
    )
