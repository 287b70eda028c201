"""Review schemas."""
from datetime import datetime
from pydantic import BaseModel, Field


class ReviewCreate(BaseModel):
    project_id: str
    student_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=5000)


class ReviewResponse(BaseModel):
    id: str
    project_id: str
    student_id: str
    entrepreneur_id: str
    rating: int
    comment: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class StudentReviewsResponse(BaseModel):
    student_id: str
    review_count: int
    average_rating: float | None
    reviews: list[ReviewResponse]
