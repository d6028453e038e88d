from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from uuid import UUID
from listing_studio.models.framework import Framework, ProductAnalysis
from listing_studio.utils.exceptions import InvalidStateTransitionException


class GenerationStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class ImageType(str, Enum):
    MAIN = "main"
    INFOGRAPHIC_1 = "infographic_1"
    INFOGRAPHIC_2 = "infographic_2"
    LIFESTYLE = "lifestyle"
    COMPARISON = "comparison"


IMAGE_TYPES: List[ImageType] = list(ImageType)

# Forward-only; completed and failed are terminal
ALLOWED_TRANSITIONS: Dict[GenerationStatus, set] = {
    GenerationStatus.PENDING: {GenerationStatus.ANALYZING, GenerationStatus.FAILED},
    GenerationStatus.ANALYZING: {GenerationStatus.GENERATING, GenerationStatus.FAILED},
    GenerationStatus.GENERATING: {GenerationStatus.COMPLETED, GenerationStatus.FAILED},
    GenerationStatus.COMPLETED: set(),
    GenerationStatus.FAILED: set(),
}


def can_transition(current: GenerationStatus, target: GenerationStatus) -> bool:
    """Check whether a generation may move from current to target status."""
    return GenerationStatus(target) in ALLOWED_TRANSITIONS[GenerationStatus(current)]


def ensure_transition(current: GenerationStatus, target: GenerationStatus) -> None:
    """Raise InvalidStateTransitionException unless current -> target is allowed."""
    if not can_transition(current, target):
        raise InvalidStateTransitionException(
            GenerationStatus(current).value, GenerationStatus(target).value)


class GenerationBase(BaseModel):
    """Base generation model with common fields."""
    product_title: str = Field(..., description="Product name as entered by the user")
    product_description: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    target_audience: Optional[str] = None
    brand_name: Optional[str] = None
    color_mode: Optional[str] = Field(None, description="'extract' or 'locked' in style reference mode")
    locked_colors: Optional[List[str]] = None


class GenerationCreate(GenerationBase):
    """Model for creating a new generation record."""
    user_id: UUID
    status: GenerationStatus = GenerationStatus.PENDING


class Generation(GenerationBase):
    """Complete generation model including database fields."""
    id: UUID
    user_id: UUID
    status: GenerationStatus
    framework_data: Optional[Dict[str, Any]] = None
    selected_framework: Optional[Dict[str, Any]] = None
    image_prompts: Optional[Dict[str, str]] = None
    global_note: Optional[str] = None
    error_message: Optional[str] = None
    credits_used: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def framework_candidates(self) -> List[Dict[str, Any]]:
        return list((self.framework_data or {}).get("frameworks") or [])


# ==============================================================
# Request / Response Models
# ==============================================================
class InlineImage(BaseModel):
    """An image sent inline as base64."""
    base64: str = Field(..., description="Base64-encoded image bytes")
    mime_type: str = Field(..., alias="mimeType", description="e.g. 'image/png'")

    class Config:
        populate_by_name = True


class AnalyzeRequest(BaseModel):
    """Body of POST /generations/analyze."""
    product_image_base64: Optional[str] = Field(None, alias="productImageBase64")
    product_image_mime_type: Optional[str] = Field(None, alias="productImageMimeType")
    product_name: Optional[str] = Field(None, alias="productName")
    brand_name: Optional[str] = Field(None, alias="brandName")
    features: List[str] = Field(default_factory=list)
    target_audience: Optional[str] = Field(None, alias="targetAudience")
    primary_color: Optional[str] = Field(None, alias="primaryColor")
    additional_images: List[InlineImage] = Field(default_factory=list, alias="additionalImages")
    style_reference: Optional[InlineImage] = Field(None, alias="styleReference")
    locked_colors: List[str] = Field(default_factory=list, alias="lockedColors")

    class Config:
        populate_by_name = True

    def product_images(self) -> List[InlineImage]:
        """All product images, primary first."""
        images = []
        if self.product_image_base64 or self.product_image_mime_type:
            images.append(InlineImage(
                base64=self.product_image_base64 or "",
                mime_type=self.product_image_mime_type or ""))
        images.extend(self.additional_images)
        return images


class AnalysisResult(BaseModel):
    generation_id: UUID
    product_analysis: ProductAnalysis
    frameworks: List[Framework]


class SelectFrameworkRequest(BaseModel):
    """Body of POST /generations/{id}/select-framework."""
    framework: Dict[str, Any]
    product_name: Optional[str] = Field(None, alias="productName")
    features: Optional[List[str]] = None
    global_note: Optional[str] = Field(None, alias="globalNote")

    class Config:
        populate_by_name = True


class GenerateImageRequest(BaseModel):
    """Body of POST /generations/{id}/images."""
    image_type: ImageType = Field(..., alias="imageType")
    prompt: str
    reference_image: Optional[InlineImage] = Field(None, alias="referenceImage")

    class Config:
        populate_by_name = True


class RegenerateImageRequest(BaseModel):
    """Body of POST /generations/{id}/images/{image_type}/regenerate."""
    note: Optional[str] = None
    reference_image: Optional[InlineImage] = Field(None, alias="referenceImage")

    class Config:
        populate_by_name = True


class GenerationSummary(BaseModel):
    """Row of the generation history list."""
    id: UUID
    product_title: str
    status: GenerationStatus
    credits_used: int
    image_count: int
    created_at: datetime
