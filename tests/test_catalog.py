from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError, ProgrammingError
from sqlalchemy.orm import sessionmaker

from digital_store.catalog import ProductCatalog
from digital_store.database import Base
from digital_store.errors import CatalogUnavailableError
from digital_store.models import ProductRow
from digital_store.schemas import Product

SQLALCHEMY_DATABASE_URL = "sqlite:///./test_catalog.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={
                       "check_same_thread": False})
TestingSessionLocal = sessionmaker(
    autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    db.add_all([
        ProductRow(id="p1", name="Design System E-book", price=Decimal("79.90"),
                   download_url="https://files/design-system.pdf", active=True),
        ProductRow(id="p2", name="Node.js Course", price=Decimal("179.90"),
                   download_url="https://files/node.zip", active=True),
        ProductRow(id="p3", name="Retired Pack", price=Decimal("9.90"), active=False),
    ])
    db.commit()
    db.close()
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def catalog():
    return ProductCatalog(session_factory=TestingSessionLocal)


def test_list_active_products(catalog):
    products = catalog.list_products()
    assert [p.id for p in products] == ["p1", "p2"]
    assert products[0].price == Decimal("79.90")


def test_list_all_products(catalog):
    assert len(catalog.list_products(active_only=False)) == 3


def test_get_product(catalog):
    product = catalog.get_product("p2")
    assert product.name == "Node.js Course"
    assert product.download_url == "https://files/node.zip"


def test_get_product_accepts_numeric_ids(catalog):
    catalog.add_product(Product(id=42, name="Icon Pack", price=Decimal("39.90")))
    assert catalog.get_product(42).name == "Icon Pack"


def test_get_missing_product_returns_none(catalog):
    assert catalog.get_product("nope") is None


def test_add_and_remove_product(catalog):
    catalog.add_product(Product(id="p9", name="Dashboard Template", price=Decimal("89.90")))
    assert catalog.get_product("p9").price == Decimal("89.90")

    assert catalog.remove_product("p9") is True
    assert catalog.get_product("p9") is None
    assert catalog.remove_product("p9") is False


def test_connectivity_failure_maps_to_503(catalog, mocker):
    session = mocker.Mock()
    session.get.side_effect = OperationalError("SELECT", {}, Exception("could not connect"))
    catalog.session_factory = lambda: session

    with pytest.raises(CatalogUnavailableError) as exc_info:
        catalog.get_product("p1")

    assert exc_info.value.status_code == 503
    session.close.assert_called_once()


def test_configuration_failure_maps_to_500(catalog, mocker):
    session = mocker.Mock()
    session.query.side_effect = ProgrammingError("SELECT", {}, Exception("relation products does not exist"))
    catalog.session_factory = lambda: session

    with pytest.raises(CatalogUnavailableError) as exc_info:
        catalog.list_products()

    assert exc_info.value.status_code == 500
