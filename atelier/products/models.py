from typing import List, Optional
from pydantic import BaseModel, Field


class VariationIn(BaseModel):
    size_id: Optional[int] = None
    color_id: Optional[int] = None
    quantity: int = Field(0, ge=0)
    image_url: Optional[str] = None


class ProductCreateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = Field(None, max_length=280)
    description: Optional[str] = None
    price: int = Field(..., ge=0)
    compare_price: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = Field(None, max_length=64)
    category_id: Optional[int] = None
    in_stock: bool = True
    is_active: bool = True
    images: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    variations: List[VariationIn] = Field(default_factory=list)


class RestockIn(BaseModel):
    delta: int = Field(..., description="positive adds stock, negative removes it")
