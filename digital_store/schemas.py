import re
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

CURRENCY_PREFIX_RE = re.compile(r"^[^\d,.+-]+")


# Product catalog
class Product(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Catalog identifier")
    name: str = Field(..., description="Display name")
    price: Decimal = Field(Decimal("0"), ge=0, description="Unit price")
    description: Optional[str] = Field(None, description="Product description")
    image_url: Optional[str] = Field(None, description="Product image URL")
    category: Optional[str] = Field(None, description="Product category")
    download_url: Optional[str] = Field(None, description="Released after payment approval")
    active: bool = Field(True, description="Whether product is available")

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        return str(value) if value is not None else value

    @field_serializer("price")
    def _price_as_number(self, value):
        return float(value)


class CartItem(BaseModel):
    """One cart line.

    The storefront sends items in several shapes; all of them are folded into
    this one on parsing:

    * ``{"id": ..., "name": ..., "price": ..., "quantity": ...}``
    * ``{"product": {"id": ..., "name": ..., "price": ...}, "quantity": ...}``
    * a bare product id string
    """

    id: str
    name: str = ""
    price: Optional[Decimal] = None
    quantity: int = Field(1, ge=1)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data):
        if isinstance(data, (str, int)):
            return {"id": str(data), "quantity": 1}
        if isinstance(data, dict) and isinstance(data.get("product"), dict):
            product = data["product"]
            merged = {key: value for key, value in product.items() if key in ("id", "name", "price")}
            merged["quantity"] = data.get("quantity", product.get("quantity", 1))
            return merged
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value):
        if isinstance(value, (int, str)):
            value = str(value).strip()
        if not value:
            raise ValueError("product id is required")
        return value

    @field_validator("price", mode="before")
    @classmethod
    def _parse_price(cls, value):
        if isinstance(value, str):
            value = CURRENCY_PREFIX_RE.sub("", value.strip()).strip()
            if "," in value:
                value = value.replace(".", "").replace(",", ".")
        return value


class CreatePaymentRequest(BaseModel):
    carrinho: List[CartItem]
    nomeCliente: str = ""
    email: str = ""
    total: Union[float, str]


class SingleProductPaymentRequest(BaseModel):
    produtoId: Union[str, int]
    email: str
    nomeCliente: str = ""


class CreateProductRequest(BaseModel):
    id: str
    name: str
    price: Decimal = Field(..., ge=0)
    description: Optional[str] = None
    image_url: Optional[str] = None
    category: Optional[str] = None
    download_url: Optional[str] = None
    active: bool = True
