"""
Output schemas for enriched carts (pydantic v2).

EnrichedCart.to_dict() is re-parsed against these models when enrich_cart is
called with validate=True. Besides field types and the tier/method enums the
models check the cross-field guarantees of the result, so a defect in the
merge or summary code surfaces as EnrichmentValidationError instead of a
malformed payload.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from enrichment import EnrichmentValidationError
from models import CONFIDENCE_LEVELS, CONFIDENCE_NONE, MATCH_METHODS, METHOD_PRICE, EnrichedCart

ConfidenceLevel = Literal["high", "medium", "low", "none"]
SignalConfidence = Literal["high", "medium", "low"]
MatchMethod = Literal[
    "stock_code", "variant_stock_code", "image_code", "url",
    "extracted_id", "title_color", "title", "price",
]
Source = Literal["cart", "product", "merged"]

_CAMEL = {"populate_by_name": True, "extra": "forbid"}


class ProductIdentifiersSchema(BaseModel):
    stock_codes: List[str] = Field(default_factory=list, alias="stockCodes")
    extracted_ids: List[str] = Field(default_factory=list, alias="extractedIds")
    catalog_ids: List[str] = Field(default_factory=list, alias="catalogIds")

    model_config = _CAMEL


class MatchedSignalSchema(BaseModel):
    method: MatchMethod
    confidence: SignalConfidence
    exact: bool

    model_config = _CAMEL


class MatchedVariantSchema(BaseModel):
    stock_code: str = Field(..., min_length=1, alias="stockCode")
    url: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    price: Optional[int] = None
    currency: Optional[str] = None
    color: Optional[str] = None

    model_config = _CAMEL


class FieldSourcesSchema(BaseModel):
    title: Optional[Source] = None
    url: Optional[Source] = None
    image_url: Optional[Source] = Field(default=None, alias="imageUrl")
    price: Optional[Source] = None
    currency: Optional[Source] = None
    quantity: Optional[Source] = None
    line_total: Optional[Source] = Field(default=None, alias="lineTotal")
    brand: Optional[Source] = None
    description: Optional[Source] = None
    category: Optional[Source] = None
    rating: Optional[Source] = None
    identifiers: Optional[Source] = None

    model_config = _CAMEL


class EnrichedCartItemSchema(BaseModel):
    title: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    store_id: Optional[str] = Field(default=None, alias="storeId")
    price: Optional[int] = None
    currency: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    rating: Optional[float] = None
    quantity: Optional[int] = None
    line_total: Optional[int] = Field(default=None, alias="lineTotal")
    identifiers: ProductIdentifiersSchema
    in_cart: bool = Field(..., alias="inCart")
    was_viewed: bool = Field(..., alias="wasViewed")
    match_confidence: ConfidenceLevel = Field(..., alias="matchConfidence")
    match_method: Optional[MatchMethod] = Field(default=None, alias="matchMethod")
    matched_signals: List[MatchedSignalSchema] = Field(default_factory=list, alias="matchedSignals")
    sources: FieldSourcesSchema
    enriched_at: str = Field(..., min_length=1, alias="enrichedAt")
    matched_variant: Optional[MatchedVariantSchema] = Field(default=None, alias="matchedVariant")

    model_config = _CAMEL

    @model_validator(mode="after")
    def check_match_consistency(self) -> "EnrichedCartItemSchema":
        if not self.in_cart:
            raise ValueError("inCart must be true for every enriched item")
        if self.was_viewed != (self.match_confidence != CONFIDENCE_NONE):
            raise ValueError(
                f"wasViewed={self.was_viewed} contradicts matchConfidence={self.match_confidence!r}"
            )
        if self.was_viewed and self.match_method is None:
            raise ValueError("a viewed item must report its matchMethod")
        if not self.was_viewed and self.match_method is not None:
            raise ValueError("an unviewed item must not report a matchMethod")
        if self.match_method == METHOD_PRICE:
            raise ValueError("price is a supporting signal and cannot be the matchMethod")
        if not self.was_viewed and self.matched_variant is not None:
            raise ValueError("an unviewed item must not carry a matchedVariant")
        return self


class EnrichmentSummarySchema(BaseModel):
    total_items: int = Field(..., ge=0, alias="totalItems")
    matched_items: int = Field(..., ge=0, alias="matchedItems")
    unmatched_items: int = Field(..., ge=0, alias="unmatchedItems")
    match_rate: float = Field(..., ge=0, le=100, alias="matchRate")
    by_confidence: Dict[ConfidenceLevel, int] = Field(..., alias="byConfidence")
    by_method: Dict[MatchMethod, int] = Field(..., alias="byMethod")

    model_config = _CAMEL

    @model_validator(mode="after")
    def check_totals(self) -> "EnrichmentSummarySchema":
        if self.matched_items + self.unmatched_items != self.total_items:
            raise ValueError(
                f"matchedItems ({self.matched_items}) + unmatchedItems ({self.unmatched_items}) "
                f"!= totalItems ({self.total_items})"
            )
        if sum(self.by_confidence.values()) != self.total_items:
            raise ValueError(
                f"byConfidence counts sum to {sum(self.by_confidence.values())}, "
                f"expected {self.total_items}"
            )
        if set(self.by_confidence) != set(CONFIDENCE_LEVELS):
            raise ValueError("byConfidence must report every confidence level")
        if set(self.by_method) != set(MATCH_METHODS):
            raise ValueError("byMethod must report every match method")
        if self.by_method.get(METHOD_PRICE, 0):
            raise ValueError("byMethod.price must be 0")
        return self


class EnrichedCartSchema(BaseModel):
    items: List[EnrichedCartItemSchema]
    summary: EnrichmentSummarySchema
    enriched_at: str = Field(..., min_length=1, alias="enrichedAt")
    store_id: Optional[str] = Field(default=None, alias="storeId")

    model_config = _CAMEL

    @model_validator(mode="after")
    def check_summary_matches_items(self) -> "EnrichedCartSchema":
        summary = self.summary
        if summary.total_items != len(self.items):
            raise ValueError(f"totalItems ({summary.total_items}) != number of items ({len(self.items)})")
        viewed = sum(1 for item in self.items if item.was_viewed)
        if summary.matched_items != viewed:
            raise ValueError(f"matchedItems ({summary.matched_items}) != viewed items ({viewed})")
        return self


def validate_enriched_cart(enriched: EnrichedCart) -> EnrichedCartSchema:
    """Re-parse an EnrichedCart; raises EnrichmentValidationError on any violation."""
    try:
        return EnrichedCartSchema.model_validate(enriched.to_dict())
    except ValidationError as e:
        raise EnrichmentValidationError(f"Enriched cart failed validation: {e}") from e
