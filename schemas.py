from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime
from enum import Enum


class CamelModel(BaseModel):
    """Wire payloads are camelCase; snake_case names are accepted too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CartSnapshotModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ─────────────── Cart input ───────────────

class CollectionMembership(CartSnapshotModel):
    collection_id: str
    is_member: bool


class Metafield(CartSnapshotModel):
    value: str  # Raw JSON payload, parsed on demand


class Product(CartSnapshotModel):
    in_collections: List[CollectionMembership] = []
    metafield: Optional[Metafield] = None  # Per-product discount schedule


class ProductVariant(CartSnapshotModel):
    typename: Literal["ProductVariant"] = Field(alias="__typename")
    id: str
    product: Product


class CustomProduct(CartSnapshotModel):
    typename: Literal["CustomProduct"] = Field(alias="__typename")


Merchandise = Annotated[Union[ProductVariant, CustomProduct], Field(discriminator="typename")]


class Money(CartSnapshotModel):
    amount: float  # Numeric strings such as "100.0" are accepted
    currency_code: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def amount_not_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Amount cannot be negative")
        return v


class CartLineCost(CartSnapshotModel):
    amount_per_quantity: Money


class CartLine(CartSnapshotModel):
    id: Optional[str] = None
    quantity: int
    cost: CartLineCost
    merchandise: Merchandise

    @field_validator("quantity")
    @classmethod
    def qty_not_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Quantity cannot be negative")
        return v

    @property
    def unit_cost(self) -> float:
        return self.cost.amount_per_quantity.amount


class Cart(CartSnapshotModel):
    lines: List[CartLine] = []


# ─────────────── Discount configuration ───────────────

class CollectionMapping(BaseModel):
    collection: str   # Collection unlocked by this tier
    threshold: float  # Minimum excluding-subtotal for the tier


class Configuration(BaseModel):
    """Tiered configuration stored on the discount node."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    collection_ids: List[str] = Field(alias="collectionIds")  # Excluded from the subtotal
    mapping: List[CollectionMapping]  # Ordered; duplicate collections are legal


class CollectionDiscount(BaseModel):
    collection_id: str
    discount: float  # Percentage (e.g., 10 => 10%)


class DiscountSchedule(BaseModel):
    """Parsed per-product discount-schedule metafield."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    collection_discounts: List[CollectionDiscount] = Field(alias="collectionDiscounts")


class FixedRuleConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    target_collection: str
    discount_percentage: float
    cart_value_threshold: float
    message: str


class QuantityLimit(BaseModel):
    collection: str
    qty: int  # Maximum quantity per cart line


class QuantityLimits(BaseModel):
    mapping: List[QuantityLimit]


# ─────────────── Function output ───────────────

class DiscountApplicationStrategy(str, Enum):
    first = "FIRST"


class CartLineTarget(CamelModel):
    id: str
    quantity: Optional[int] = None


class ProductVariantTarget(CamelModel):
    id: str
    quantity: Optional[int] = None


class Target(CamelModel):
    cart_line: Optional[CartLineTarget] = None
    product_variant: Optional[ProductVariantTarget] = None

    @model_validator(mode="after")
    def exactly_one_target(self) -> "Target":
        if (self.cart_line is None) == (self.product_variant is None):
            raise ValueError("Target must be either a cart line or a product variant")
        return self


class Percentage(BaseModel):
    value: float


class Value(BaseModel):
    percentage: Percentage


class Discount(CamelModel):
    message: Optional[str] = None
    targets: List[Target]
    value: Value

    @field_validator("targets")
    @classmethod
    def not_empty(cls, v: list) -> list:
        if not v:
            raise ValueError("Target list cannot be empty")
        return v


class FunctionRunResult(CamelModel):
    discounts: List[Discount] = []
    discount_application_strategy: DiscountApplicationStrategy = DiscountApplicationStrategy.first


class FunctionError(CamelModel):
    localized_message: str
    target: str = "cart"


class ValidationRunResult(CamelModel):
    errors: List[FunctionError] = []


# ─────────────── Function requests ───────────────

class CartRunRequest(CamelModel):
    cart: Cart


class DiscountNode(CamelModel):
    metafield: Optional[Metafield] = None  # Raw tiered configuration


class TieredRunRequest(CamelModel):
    discount_node: DiscountNode = Field(default_factory=DiscountNode)
    cart: Cart


class ValidationNode(CamelModel):
    metafield: Metafield  # Raw quantity limits


class CartValidationRequest(CamelModel):
    validation: ValidationNode
    cart: Cart


# ─────────────── Stored configurations ───────────────

class DiscountConfigCreate(BaseModel):
    title: str
    configuration: Configuration
    is_active: bool = True

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title cannot be blank")
        return v


class DiscountConfigUpdate(BaseModel):
    title: Optional[str] = None
    configuration: Optional[Configuration] = None
    is_active: Optional[bool] = None


class DiscountConfigResponse(BaseModel):
    id: int
    title: str
    configuration: Configuration
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
