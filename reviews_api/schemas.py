"""
Pydantic v2 schemas for request/response validation.

Request schemas use extra="forbid" to reject unknown fields.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, conint

# Scale shared by ratings and characteristic values
ReviewScore = conint(ge=1, le=5)


class SortOrder(str, Enum):
    """Orderings accepted by the review listing."""
    NEWEST = "newest"
    HELPFUL = "helpful"
    RELEVANT = "relevant"


#
# Request Schemas
#

class CreateReviewRequest(BaseModel):
    """
    Body of POST /reviews.

    characteristics maps characteristic id to the 1-5 value the reviewer chose.
    """
    model_config = ConfigDict(extra="forbid")

    product_id: int
    rating: ReviewScore
    summary: str
    body: str
    recommend: bool
    name: str
    email: str
    photos: Optional[List[str]] = Field(None, description="Photo URLs")
    characteristics: Optional[Dict[int, ReviewScore]] = Field(None, description="characteristic_id -> value")


#
# Response Schemas
#

class ReviewPhotoOut(BaseModel):
    id: int
    url: str


class ReviewOut(BaseModel):
    review_id: int
    rating: int
    summary: str
    recommend: bool
    body: str
    date: Optional[datetime] = None
    reviewer_name: str
    helpfulness: int
    photos: List[ReviewPhotoOut] = Field(default_factory=list)


class ReviewListResponse(BaseModel):
    """One page of reviews. page is zero-indexed."""
    product: str
    page: int
    count: int
    results: List[ReviewOut]


class CharacteristicMeta(BaseModel):
    id: int
    value: Optional[str] = Field(None, description="Average rating to four decimals")


class ReviewMetaResponse(BaseModel):
    product_id: str
    ratings: Dict[str, str]
    recommended: Dict[str, str]
    characteristics: Dict[str, CharacteristicMeta]


class CreateReviewResponse(BaseModel):
    id: int
    message: str = "Review Created"
