from pydantic import BaseModel, Field


class AddLineIn(BaseModel):
    variation_id: int = Field(..., gt=0)
    quantity: int = Field(1, gt=0)


class UpdateLineIn(BaseModel):
    quantity: int  # zero or negative removes the line
