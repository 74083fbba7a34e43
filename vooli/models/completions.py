"""Target schemas for structured completion calls."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class MessageIntent(BaseModel):
    intentIsProductReview: bool = Field(
        description="Whether the user's intent is to search for product reviews."
    )
    queries: list[str] = Field(
        default_factory=list,
        description="The search queries for product reviews.",
    )


class ProductQueries(BaseModel):
    queries: list[str] = Field(
        default_factory=list,
        description="The search queries for ecommerce stores with the product.",
    )


class ProductDetails(BaseModel):
    product_name: Optional[str] = Field(default=None, description="The product name.")
    product_description: Optional[str] = Field(
        default=None, description="A short description of the product."
    )
    product_price: Optional[str] = Field(
        default=None, description="The product price including its currency, e.g. '199.99 USD'."
    )
    product_image_url: Optional[str] = Field(
        default=None, description="Absolute URL of the main product image."
    )

    def missing_fields(self) -> list[str]:
        return [
            name
            for name in ("product_name", "product_description", "product_price", "product_image_url")
            if not (getattr(self, name) or "").strip()
        ]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()
