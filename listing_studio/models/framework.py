import re
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional

HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
PALETTE_ROLES = ("primary", "secondary", "accent", "text_dark", "text_light")


class FrameworkColor(BaseModel):
    """One palette entry of a design framework."""
    hex: str = Field(..., description="Hex color, e.g. '#1A2B3C'")
    name: str = ""
    role: str = Field(..., description="primary, secondary, accent, text_dark or text_light")
    usage: str = ""

    @field_validator("hex")
    @classmethod
    def validate_hex(cls, value: str) -> str:
        value = value.strip()
        if not HEX_COLOR_PATTERN.match(value):
            raise ValueError(f"'{value}' is not a #RRGGBB hex color")
        return value.upper()

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        role = value.strip().lower().replace("-", "_").replace(" ", "_")
        if role not in PALETTE_ROLES:
            raise ValueError(f"Unknown palette role '{value}'")
        return role


class Typography(BaseModel):
    headline_font: str
    headline_weight: str = "Bold"
    body_font: str


class StoryArc(BaseModel):
    """Narrative thread across the five listing images, one beat per image."""
    theme: str
    hook: str
    reveal: str
    proof: str
    dream: str
    close: str


class ImageCopy(BaseModel):
    image_number: int
    image_type: str
    headline: str = ""
    subhead: Optional[str] = None


class VisualTreatment(BaseModel):
    lighting_style: str = ""
    background_treatment: str = ""
    mood_keywords: List[str] = Field(default_factory=list)


class Framework(BaseModel):
    """A structured design proposal for a listing image set."""
    framework_id: str
    framework_name: str
    framework_type: str = ""
    design_philosophy: str = ""
    colors: List[FrameworkColor]
    typography: Typography
    story_arc: StoryArc
    image_copy: List[ImageCopy] = Field(default_factory=list)
    brand_voice: str = ""
    visual_treatment: Optional[VisualTreatment] = None
    rationale: str = ""

    @field_validator("colors")
    @classmethod
    def validate_palette(cls, colors: List[FrameworkColor]) -> List[FrameworkColor]:
        roles = sorted(color.role for color in colors)
        if len(colors) != len(PALETTE_ROLES) or roles != sorted(PALETTE_ROLES):
            raise ValueError(
                "Palette must have exactly one color for each of: " + ", ".join(PALETTE_ROLES))
        return colors


class ProductAnalysis(BaseModel):
    """What the vision model saw in the product photo."""
    what_i_see: str = ""
    visual_characteristics: str = ""
    product_category: str = ""
    natural_mood: str = ""
    ideal_customer: str = ""


class FrameworkAnalysis(BaseModel):
    """Adapter output for the analysis stage."""
    product_analysis: ProductAnalysis
    frameworks: List[Framework]


class ImagePrompt(BaseModel):
    """Adapter output for one image type of the prompt synthesis stage."""
    image_type: str
    image_number: int = 0
    prompt: str
    design_notes: str = ""
