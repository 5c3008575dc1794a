"""
Test configuration and fixtures.
"""
import os
import pytest
from decimal import Decimal
from typing import Callable, Generator
from uuid import uuid4

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Set test database URL before importing app
os.environ["DATABASE_URL"] = "sqlite://"

from sr_integration.main import app
from sr_integration.core.security import hash_api_key
from sr_integration.db.base import Base
from sr_integration.db.session import get_db
from sr_integration.models import (
    IntegrationConnection,
    WarehouseMapping,
    PaymentMethodMapping,
    MenuItem,
    Ingredient,
    Recipe,
    RecipeIngredient,
    MovementType,
    ProductMapping,
)
from sr_integration.services.inventory_ledger import InventoryLedgerService


TEST_API_KEY = "sr_test_key_0123456789"
TEST_COMPANY_ID = "SR-EMP-001"
TEST_WAREHOUSE = "ALM1"


# In-memory SQLite shared across threads (TestClient runs handlers in a worker thread)
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine, "connect")
def _disable_pysqlite_transactions(dbapi_connection, connection_record):
    # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works
    dbapi_connection.isolation_level = None


@event.listens_for(engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema per test, seeded with the SR movement type catalog."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    session.add(MovementType(code=1, name="Venta Normal", affects_inventory=True))
    session.commit()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """Create test client with database session override."""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": f"Bearer {TEST_API_KEY}"}


@pytest.fixture
def branch_id():
    return uuid4()


@pytest.fixture
def integration(db: Session, branch_id) -> IntegrationConnection:
    """Connected SR integration with warehouse ALM1 mapped to ``branch_id``."""
    integration = IntegrationConnection(
        tenant_id=uuid4(),
        name="Soft Restaurant Centro",
        api_key_hash=hash_api_key(TEST_API_KEY),
        sr_company_id=TEST_COMPANY_ID,
        status="connected",
        recipe_deduction_enabled=True,
        dedup_scope="warehouse",
        timezone="America/Mexico_City",
    )
    db.add(integration)
    db.flush()

    db.add(WarehouseMapping(integration_id=integration.id, warehouse_code=TEST_WAREHOUSE, branch_id=branch_id))
    db.add(PaymentMethodMapping(integration_id=integration.id, method_name="efectivo", payment_method_id=uuid4()))
    db.commit()
    db.refresh(integration)
    return integration


@pytest.fixture
def ingredient(db: Session, integration: IntegrationConnection) -> Ingredient:
    """Ground beef at $10/kg; alerts at 1kg (minimum) and 2kg (reorder point)."""
    beef = Ingredient(
        tenant_id=integration.tenant_id,
        name="Carne molida",
        unit="kg",
        unit_cost=Decimal("10.00"),
        minimum_stock=Decimal("1"),
        reorder_point=Decimal("2"),
        is_active=True,
    )
    db.add(beef)
    db.commit()
    db.refresh(beef)
    return beef


@pytest.fixture
def menu_item(db: Session, integration: IntegrationConnection) -> MenuItem:
    burger = MenuItem(
        tenant_id=integration.tenant_id,
        name="Hamburguesa Clasica",
        price=Decimal("100.00"),
        is_active=True,
    )
    db.add(burger)
    db.commit()
    db.refresh(burger)
    return burger


@pytest.fixture
def recipe(db: Session, menu_item: MenuItem, ingredient: Ingredient) -> Recipe:
    """One burger uses 0.3kg of beef with 5% waste."""
    recipe = Recipe(
        tenant_id=menu_item.tenant_id,
        menu_item_id=menu_item.id,
        yield_quantity=Decimal("1"),
        is_active=True,
    )
    recipe.ingredients.append(RecipeIngredient(
        ingredient_id=ingredient.id,
        position=0,
        quantity_per_yield=Decimal("0.3"),
        unit="kg",
        waste_percentage=Decimal("5"),
    ))
    db.add(recipe)
    db.commit()
    db.refresh(recipe)
    return recipe


@pytest.fixture
def product_mapping(db: Session, integration: IntegrationConnection, menu_item: MenuItem) -> ProductMapping:
    """SR product 01005 mapped to the burger."""
    mapping = ProductMapping(
        tenant_id=integration.tenant_id,
        integration_id=integration.id,
        external_id="01005",
        external_name="HAMBURGUESA CLASICA",
        menu_item_id=menu_item.id,
        confidence="manual",
        is_active=True,
    )
    db.add(mapping)
    db.commit()
    db.refresh(mapping)
    return mapping


@pytest.fixture
def stocked(db: Session, integration: IntegrationConnection, ingredient: Ingredient, branch_id) -> Decimal:
    """Opening stock of 10kg of beef in the branch."""
    new_stock = InventoryLedgerService(db).apply(
        tenant_id=integration.tenant_id,
        branch_id=branch_id,
        ingredient_id=ingredient.id,
        quantity=Decimal("10"),
        unit="kg",
        reference_type="manual",
        unit_cost=ingredient.unit_cost,
        notes="Opening count",
    )
    db.commit()
    return new_stock


@pytest.fixture
def make_sale() -> Callable[..., dict]:
    """Build one SR sale (a ``Ventas[]`` entry) in the wire format."""
    def _make_sale(
        external_id: str = "51795",
        product_id: str = "01005",
        quantity: float = 1,
        warehouse: str = TEST_WAREHOUSE,
        **overrides,
    ) -> dict:
        sale = {
            "NumeroOrden": external_id,
            "Almacen": warehouse,
            "Estacion": "CAJA1",
            "Area": "Salon",
            "Mesa": "12",
            "IdUsuario": "MESERO01",
            "FechaVenta": "2025-01-15T14:30:00",
            "Total": 100.00 * quantity,
            "Conceptos": [
                {
                    "IdProducto": product_id,
                    "Descripcion": "HAMBURGUESA CLASICA",
                    "Movimiento": 1,
                    "Cantidad": quantity,
                    "PrecioUnitario": 100.00,
                    "ImporteSinImpuestos": 86.21 * quantity,
                    "Descuento": 0,
                    "Impuestos": [
                        {"Impuesto": "IVA", "Tasa": 0.16, "Importe": 13.79 * quantity},
                    ],
                },
            ],
            "Pagos": [
                {"FormaPago": "Efectivo", "Importe": 100.00 * quantity, "Propina": 10.00},
            ],
        }
        sale.update(overrides)
        return sale

    return _make_sale


@pytest.fixture
def make_payload(make_sale) -> Callable[..., dict]:
    """Wrap sales in the webhook envelope."""
    def _make_payload(*sales: dict, company_id: str = TEST_COMPANY_ID) -> dict:
        return {"IdEmpresa": company_id, "Ventas": list(sales) or [make_sale()]}

    return _make_payload
