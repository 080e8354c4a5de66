import logging

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from digital_store.database import SessionLocal
from digital_store.errors import CatalogUnavailableError
from digital_store.models import ProductRow
from digital_store.schemas import Product

logger = logging.getLogger(__name__)


def _unavailable(exc):
    if isinstance(exc, OperationalError):
        logger.error("Catalog unreachable: %s", exc)
        return CatalogUnavailableError(
            "Catalog store is unreachable", details=str(exc.orig or exc), status_code=503
        )
    logger.error("Catalog error: %s", exc)
    return CatalogUnavailableError("Catalog store error", details=str(exc), status_code=500)


class ProductCatalog:
    """Reads and writes product records in the catalog database."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def list_products(self, active_only=True):
        db = self.session_factory()
        try:
            query = db.query(ProductRow)
            if active_only:
                query = query.filter(ProductRow.active.is_(True))
            rows = query.order_by(ProductRow.name).all()
            return [Product.model_validate(row) for row in rows]
        except SQLAlchemyError as exc:
            raise _unavailable(exc) from exc
        finally:
            db.close()

    def get_product(self, product_id):
        db = self.session_factory()
        try:
            row = db.get(ProductRow, str(product_id))
            return Product.model_validate(row) if row else None
        except SQLAlchemyError as exc:
            raise _unavailable(exc) from exc
        finally:
            db.close()

    def add_product(self, product):
        db = self.session_factory()
        try:
            values = product.model_dump()
            values["price"] = product.price
            db.merge(ProductRow(**values))
            db.commit()
            return product
        except SQLAlchemyError as exc:
            db.rollback()
            raise _unavailable(exc) from exc
        finally:
            db.close()

    def remove_product(self, product_id):
        db = self.session_factory()
        try:
            row = db.get(ProductRow, str(product_id))
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True
        except SQLAlchemyError as exc:
            db.rollback()
            raise _unavailable(exc) from exc
        finally:
            db.close()
