import json
import base64
from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import httpx
from pydantic import BaseModel, ValidationError
from listing_studio.models.framework import (Framework, FrameworkAnalysis, ProductAnalysis,
                                             ImagePrompt)
from listing_studio.models.generation import InlineImage, IMAGE_TYPES, ImageType
from listing_studio.services.prompts import (FRAMEWORK_ANALYSIS_PROMPT, STYLE_REFERENCE_PROMPT,
                                             IMAGE_PROMPTS_GENERATION, GLOBAL_NOTE_SUFFIX,
                                             FRAMEWORK_COUNT, FRAMEWORK_JSON_SHAPE,
                                             fill_prompt_template, build_image_inventory,
                                             build_color_mode_instructions)
from listing_studio.utils.exceptions import AnalysisFailureException, ConfigurationException
from listing_studio.utils.logger import get_logger

logger = get_logger(__name__)

SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]

# 1x1 transparent PNG returned by the placeholder renderer
PLACEHOLDER_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII=")


class RenderedImage(BaseModel):
    data: bytes
    mime_type: str = "image/png"


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Pull the first JSON object out of model text.

    Handles a bare object, markdown code fences and prose before or after the
    payload. Raises AnalysisFailureException when no object can be decoded.
    """
    if not text or not text.strip():
        raise AnalysisFailureException("Empty response from AI model")

    content = text.strip()
    if "```json" in content:
        content = content.split("```json", 1)[1].split("```", 1)[0].strip()
    elif content.startswith("```"):
        content = content.split("```", 2)[1].strip()

    try:
        data = json.loads(content)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    decoder = json.JSONDecoder()
    position = content.find("{")
    while position != -1:
        try:
            data, _ = decoder.raw_decode(content, position)
            if isinstance(data, dict):
                return data
        except ValueError:
            pass
        position = content.find("{", position + 1)

    raise AnalysisFailureException("No valid JSON found in AI response")


def _normalize_image_type(entry: Dict[str, Any]) -> Optional[ImageType]:
    raw = str(entry.get("image_type") or "").strip().lower().replace(" ", "_").replace("-", "_")
    aliases = {"hero": "main", "main_image": "main", "infographic1": "infographic_1",
               "infographic2": "infographic_2"}
    raw = aliases.get(raw, raw)
    try:
        return ImageType(raw)
    except ValueError:
        pass
    number = entry.get("image_number")
    if isinstance(number, int) and 1 <= number <= len(IMAGE_TYPES):
        return IMAGE_TYPES[number - 1]
    return None


class DesignAdapter(ABC):
    """External AI capability: analysis, prompt synthesis and rendering."""

    @abstractmethod
    async def analyze_product(self,
                              product_images: List[InlineImage],
                              product_name: str,
                              brand_name: Optional[str] = None,
                              features: Optional[List[str]] = None,
                              target_audience: Optional[str] = None,
                              primary_color: Optional[str] = None,
                              style_reference: Optional[InlineImage] = None,
                              locked_colors: Optional[List[str]] = None) -> FrameworkAnalysis:
        ...

    @abstractmethod
    async def generate_image_prompts(self,
                                     framework: Framework,
                                     product_name: str,
                                     features: Optional[List[str]] = None,
                                     global_note: Optional[str] = None) -> List[ImagePrompt]:
        ...

    @abstractmethod
    async def generate_image(self,
                             prompt: str,
                             reference_image: Optional[InlineImage] = None) -> RenderedImage:
        ...


class GeminiDesignAdapter(DesignAdapter):
    """
    Gemini REST client for the three AI steps of the pipeline.
    With placeholder mode allowed and no API key it returns canned analysis,
    prompts and a 1x1 PNG without calling the API. Without a key and without
    placeholder mode every call fails with ConfigurationException.
    """

    def __init__(self,
                 api_key: str,
                 api_url: str = "https://generativelanguage.googleapis.com/v1beta",
                 vision_model: str = "gemini-2.0-flash-exp",
                 text_model: str = "gemini-2.0-flash-exp",
                 image_model: str = "gemini-2.0-flash-exp",
                 timeout: float = 120.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 allow_placeholder: bool = False):
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.vision_model = vision_model
        self.text_model = text_model
        self.image_model = image_model
        self.timeout = timeout
        self.transport = transport
        self.allow_placeholder = allow_placeholder

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key) and self.api_key != "placeholder"

    @property
    def is_placeholder(self) -> bool:
        return self.allow_placeholder and not self.has_api_key

    # ---------- PUBLIC ADAPTER METHODS ----------

    async def analyze_product(self,
                              product_images: List[InlineImage],
                              product_name: str,
                              brand_name: Optional[str] = None,
                              features: Optional[List[str]] = None,
                              target_audience: Optional[str] = None,
                              primary_color: Optional[str] = None,
                              style_reference: Optional[InlineImage] = None,
                              locked_colors: Optional[List[str]] = None) -> FrameworkAnalysis:
        """
        Analyze product images and propose design frameworks.

        Args:
            product_images: Primary product image first, then additional images
            product_name: Product name
            brand_name: Optional brand
            features: Optional key features
            target_audience: Optional audience description
            primary_color: Optional preferred color (ignored with a style reference)
            style_reference: Optional image whose style the single framework must follow
            locked_colors: Optional hex colors to use verbatim in style reference mode

        Returns:
            FrameworkAnalysis with at least one valid framework
        """
        common = {
            "productName": product_name,
            "brandName": brand_name or "Not specified",
            "features": ", ".join(features or []) or "Not specified",
            "targetAudience": target_audience or "General consumers",
            "frameworkJsonShape": FRAMEWORK_JSON_SHAPE,
        }
        if style_reference:
            prompt = fill_prompt_template(STYLE_REFERENCE_PROMPT, dict(
                common,
                imageInventory=build_image_inventory(len(product_images) - 1),
                colorModeInstructions=build_color_mode_instructions(locked_colors)))
        else:
            prompt = fill_prompt_template(FRAMEWORK_ANALYSIS_PROMPT, dict(
                common,
                frameworkCount=str(FRAMEWORK_COUNT),
                primaryColor=primary_color or "AI to determine based on product image"))

        images = list(product_images)
        if style_reference:
            images.append(style_reference)

        logger.info(f"Analyzing product '{product_name}' with {len(images)} image(s)")

        if self.is_placeholder:
            data = self._placeholder_analysis(product_name)
        else:
            text = await self._generate_text(self.vision_model, prompt, images,
                                             temperature=0.8)
            data = extract_json_object(text)

        return self._parse_analysis(data)

    async def generate_image_prompts(self,
                                     framework: Framework,
                                     product_name: str,
                                     features: Optional[List[str]] = None,
                                     global_note: Optional[str] = None) -> List[ImagePrompt]:
        """Synthesize one generation prompt per image type for the chosen framework."""
        prompt = fill_prompt_template(IMAGE_PROMPTS_GENERATION, {
            "frameworkJson": json.dumps(framework.model_dump(mode="json"), indent=2),
            "productName": product_name,
            "features": ", ".join(features or []) or "Not specified",
        })
        if global_note:
            prompt += fill_prompt_template(GLOBAL_NOTE_SUFFIX, {"globalNote": global_note})

        logger.info(f"Generating image prompts for framework '{framework.framework_name}'")

        if self.is_placeholder:
            data = self._placeholder_prompts(framework, product_name)
        else:
            text = await self._generate_text(self.text_model, prompt, [], temperature=0.7)
            data = extract_json_object(text)

        return self._parse_prompts(data)

    async def generate_image(self,
                             prompt: str,
                             reference_image: Optional[InlineImage] = None) -> RenderedImage:
        """Render one image from a prompt, optionally guided by a reference image."""
        if self.is_placeholder:
            logger.info("Returning placeholder image")
            return RenderedImage(data=PLACEHOLDER_PNG, mime_type="image/png")

        parts = [{"text": prompt}]
        if reference_image:
            parts.append(self._inline_part(reference_image))

        data = await self._generate_content(self.image_model, {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
            "safetySettings": SAFETY_SETTINGS,
        })

        for part in self._candidate_parts(data):
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                try:
                    image_bytes = base64.b64decode(inline["data"])
                except ValueError:
                    raise AnalysisFailureException("Image data in generation response is not valid base64")
                return RenderedImage(
                    data=image_bytes,
                    mime_type=inline.get("mimeType") or inline.get("mime_type") or "image/png")

        raise AnalysisFailureException("No image data in generation response")

    # ---------- PARSING ----------

    def _parse_analysis(self, data: Dict[str, Any]) -> FrameworkAnalysis:
        try:
            product_analysis = ProductAnalysis(**(data.get("product_analysis") or {}))
        except (ValidationError, TypeError) as e:
            raise AnalysisFailureException(f"Malformed product analysis: {str(e)}")

        # A single bad framework is dropped rather than failing the whole set
        frameworks = []
        raw_frameworks = data.get("frameworks")
        if isinstance(raw_frameworks, list):
            for index, raw in enumerate(raw_frameworks):
                try:
                    frameworks.append(Framework(**raw))
                except (ValidationError, TypeError) as e:
                    logger.warning(f"Discarding malformed framework #{index + 1}: {str(e)}")

        if not frameworks:
            raise AnalysisFailureException("AI response contains no frameworks")

        return FrameworkAnalysis(product_analysis=product_analysis, frameworks=frameworks)

    def _parse_prompts(self, data: Dict[str, Any]) -> List[ImagePrompt]:
        raw_prompts = data.get("generation_prompts")
        if not isinstance(raw_prompts, list):
            raise AnalysisFailureException("AI response missing generation_prompts array")

        prompts = []
        for entry in raw_prompts:
            if not isinstance(entry, dict):
                continue
            image_type = _normalize_image_type(entry)
            text = str(entry.get("prompt") or "").strip()
            if image_type is None or not text:
                continue
            prompts.append(ImagePrompt(
                image_type=image_type.value,
                image_number=IMAGE_TYPES.index(image_type) + 1,
                prompt=text,
                design_notes=str(entry.get("design_notes") or "")))
        return prompts

    # ---------- HTTP ----------

    def _inline_part(self, image: InlineImage) -> Dict[str, Any]:
        return {"inline_data": {"mime_type": image.mime_type, "data": image.base64}}

    def _candidate_parts(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise AnalysisFailureException(f"Request blocked by safety filters: {block_reason}")

        candidates = data.get("candidates") or []
        if not candidates:
            raise AnalysisFailureException("No response candidates from AI model")

        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []
        if not parts:
            raise AnalysisFailureException("No content in AI model response")
        return parts

    async def _generate_text(self, model: str, prompt: str, images: List[InlineImage],
                             temperature: float) -> str:
        parts = [{"text": prompt}] + [self._inline_part(image) for image in images]
        data = await self._generate_content(model, {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": 8000,
                "responseMimeType": "application/json",
            },
            "safetySettings": SAFETY_SETTINGS,
        })
        return "".join(part.get("text", "") for part in self._candidate_parts(data))

    async def _generate_content(self, model: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Make actual API call to the Gemini generateContent endpoint."""
        if not self.has_api_key:
            raise ConfigurationException("Gemini API key is not configured")
        url = f"{self.api_url}/models/{model}:generateContent"
        try:
            async with httpx.AsyncClient(timeout=self.timeout,
                                         transport=self.transport) as client:
                response = await client.post(
                    url,
                    headers={
                        "x-goog-api-key": self.api_key,
                        "Content-Type": "application/json"
                    },
                    json=body)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Gemini API error {e.response.status_code}: {e.response.text[:500]}")
            raise AnalysisFailureException(
                f"AI model request failed with status {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"Gemini request error: {str(e)}")
            raise AnalysisFailureException(f"AI model request failed: {str(e)}")
        except ValueError:
            raise AnalysisFailureException("AI model returned a non-JSON response")

    # ---------- PLACEHOLDERS ----------

    def _placeholder_analysis(self, product_name: str) -> Dict[str, Any]:
        """Canned analysis for running without an API key."""
        palettes = [
            ["#1F3A5F", "#F4F6F8", "#FF7A00", "#1A1A1A", "#FFFFFF"],
            ["#6B2D5C", "#F0E6EF", "#00B3A4", "#221122", "#FDFDFD"],
            ["#8C5E3C", "#F7EFE6", "#2E8B57", "#2B2118", "#FFFFFF"],
            ["#111111", "#D4AF37", "#B0B0B0", "#0A0A0A", "#FAFAFA"],
        ]
        names = ["Safe Excellence", "Bold Creative", "Emotional Story", "Premium Elevation"]
        roles = ["primary", "secondary", "accent", "text_dark", "text_light"]
        frameworks = []
        for index, (name, palette) in enumerate(zip(names, palettes)):
            frameworks.append({
                "framework_id": f"framework_{index + 1}",
                "framework_name": name,
                "framework_type": name.lower().replace(" ", "_"),
                "design_philosophy": f"{name} treatment for {product_name}.",
                "colors": [{"hex": hex_code, "name": role.title(), "role": role, "usage": role}
                           for hex_code, role in zip(palette, roles)],
                "typography": {"headline_font": "Montserrat", "headline_weight": "Bold",
                               "body_font": "Inter"},
                "story_arc": {"theme": f"Why {product_name} belongs in your life",
                              "hook": "Hero shot", "reveal": "Key features",
                              "proof": "Benefits", "dream": "In use", "close": "What's included"},
                "image_copy": [{"image_number": number, "image_type": image_type.value,
                                "headline": "" if number == 1 else product_name,
                                "subhead": None}
                               for number, image_type in enumerate(IMAGE_TYPES, start=1)],
                "brand_voice": "Confident and clear",
                "visual_treatment": {"lighting_style": "soft studio light",
                                     "background_treatment": "clean gradient",
                                     "mood_keywords": ["clean", "modern", "trustworthy"]},
                "rationale": "Placeholder framework",
            })
        return {
            "product_analysis": {
                "what_i_see": f"A product photo of {product_name}",
                "visual_characteristics": "Not analyzed (placeholder)",
                "product_category": "General",
                "natural_mood": "Neutral",
                "ideal_customer": "General consumers",
            },
            "frameworks": frameworks,
        }

    def _placeholder_prompts(self, framework: Framework, product_name: str) -> Dict[str, Any]:
        palette = ", ".join(color.hex for color in framework.colors)
        return {
            "generation_prompts": [
                {
                    "image_type": image_type.value,
                    "image_number": number,
                    "prompt": (f"{image_type.value.replace('_', ' ').title()} listing image of "
                               f"{product_name} in the '{framework.framework_name}' style, "
                               f"palette {palette}, fonts {framework.typography.headline_font} "
                               f"and {framework.typography.body_font}."),
                    "design_notes": "Placeholder prompt",
                }
                for number, image_type in enumerate(IMAGE_TYPES, start=1)
            ]
        }
