from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from uuid import UUID
from listing_studio.models.generation import Generation, ImageType


class ImageStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_IMAGE_STATUSES = {ImageStatus.COMPLETED, ImageStatus.FAILED}


def image_storage_path(generation_id: str, image_type: str, version: int = 1) -> str:
    """Object key for one rendered version of a slot."""
    return f"{generation_id}/{ImageType(image_type).value}_v{version}.png"


class GeneratedImageBase(BaseModel):
    """Base generated image model with common fields."""
    image_type: ImageType
    storage_path: Optional[str] = Field(None, description="Object key of the latest successful render")
    prompt_used: Optional[str] = None
    version: int = Field(default=1, ge=1)
    status: ImageStatus = ImageStatus.PENDING
    error: Optional[str] = None


class GeneratedImage(GeneratedImageBase):
    """One slot of a generation: the (generation_id, image_type) pair."""
    id: UUID
    generation_id: UUID
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GeneratedImageResult(BaseModel):
    """Outcome of a successful render returned to the caller."""
    image_id: UUID
    image_type: ImageType
    image_url: Optional[str]
    storage_path: str
    version: int
    credits_used: int = 1


class ImageView(GeneratedImage):
    """A slot with a freshly signed URL for display."""
    image_url: Optional[str] = None


class GenerationDetail(BaseModel):
    generation: Generation
    images: List[ImageView]
