# importer/models.py
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ImportTarget(BaseModel):
    url: str
    provider: Optional[str] = None


class RawPrice(BaseModel):
    amount: Optional[float] = None
    from_price: Optional[float] = None
    to_price: Optional[float] = None
    currency: str = "USD"

    def lowest(self):
        """Nominal price: the lower bound of a range, else the single amount."""
        return self.from_price or self.amount or 0.0


class RawVariant(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = None
    compare_at_price: Optional[float] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    image: Optional[str] = None
    stock: int = 0


class RawProduct(BaseModel):
    """Provider-specific extraction result. Unknown keys are kept."""

    model_config = ConfigDict(extra="allow")

    title: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    price: Optional[RawPrice] = None
    specs: Dict[str, str] = Field(default_factory=dict)
    variants: List[RawVariant] = Field(default_factory=list)
    moq: Optional[int] = None
    shipping_estimate: Optional[str] = None
    availability: Optional[bool] = None
    warnings: List[str] = Field(default_factory=list)
    extracted_by: List[str] = Field(default_factory=list)

    def has_enough_data(self):
        return bool(self.title and self.title.strip())


class JsonLdHit(BaseModel):
    kind: Literal["json_ld"] = "json_ld"
    product: RawProduct


class EmbeddedJsonHit(BaseModel):
    kind: Literal["embedded_json"] = "embedded_json"
    product: RawProduct
    pattern: str


class HtmlFallbackHit(BaseModel):
    kind: Literal["html_fallback"] = "html_fallback"
    product: RawProduct


class Insufficient(BaseModel):
    kind: Literal["insufficient"] = "insufficient"
    reason: str


ExtractionOutcome = Annotated[
    Union[JsonLdHit, EmbeddedJsonHit, HtmlFallbackHit, Insufficient],
    Field(discriminator="kind"),
]


class Price(BaseModel):
    amount: float = 0.0
    currency: str = "USD"


class ProductVariant(BaseModel):
    name: str = "Standard"
    price: float = 0.0
    compare_at_price: Optional[float] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    image: Optional[str] = None
    stock: int = 0


class MappedProduct(BaseModel):
    supplier: str
    url: str
    title: str
    description: str = ""
    price: Price
    images: List[str] = Field(default_factory=list)
    specs: Dict[str, str] = Field(default_factory=dict)
    variants: List[ProductVariant] = Field(min_length=1)
    shipping_estimate: Optional[str] = None
    availability: bool = True


class ImportStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class BulkImportResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    input_url: str
    normalized_url: str
    provider_used: str
    status: ImportStatus
    message: str
    created_product_id: Optional[str] = None
    warnings: Optional[List[str]] = None

    def to_response(self):
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
