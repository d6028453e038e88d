"""
Prompt templates for the design pipeline.

Step 1 analyzes the product photo and proposes frameworks, step 2 turns the
chosen framework into one self-contained generation prompt per image type.
Placeholders use {name} and are filled by fill_prompt_template, so literal
JSON braces in the templates are left alone.
"""
from typing import Dict

FRAMEWORK_COUNT = 4

FRAMEWORK_JSON_SHAPE = """{
  "product_analysis": {
    "what_i_see": "Detailed description of the product from the image",
    "visual_characteristics": "Shape, colors, textures, materials observed",
    "product_category": "Category this product belongs to",
    "natural_mood": "The mood the product itself conveys",
    "ideal_customer": "Who would buy this product"
  },
  "frameworks": [
    {
      "framework_id": "framework_1",
      "framework_name": "Creative name for this approach",
      "framework_type": "safe_excellence",
      "design_philosophy": "2-3 sentence design vision",
      "colors": [
        {"hex": "#XXXXXX", "name": "Color Name", "role": "primary", "usage": "60% - where it is used"},
        {"hex": "#XXXXXX", "name": "Color Name", "role": "secondary", "usage": "30% - where it is used"},
        {"hex": "#XXXXXX", "name": "Color Name", "role": "accent", "usage": "10% - where it is used"},
        {"hex": "#XXXXXX", "name": "Color Name", "role": "text_dark", "usage": "Dark text on light backgrounds"},
        {"hex": "#XXXXXX", "name": "Color Name", "role": "text_light", "usage": "Light text on dark backgrounds"}
      ],
      "typography": {"headline_font": "Font Name", "headline_weight": "Bold", "body_font": "Font Name"},
      "story_arc": {
        "theme": "Narrative thread across all five images",
        "hook": "Image 1 (main)",
        "reveal": "Image 2 (infographic_1)",
        "proof": "Image 3 (infographic_2)",
        "dream": "Image 4 (lifestyle)",
        "close": "Image 5 (comparison)"
      },
      "image_copy": [
        {"image_number": 1, "image_type": "main", "headline": "", "subhead": null},
        {"image_number": 2, "image_type": "infographic_1", "headline": "...", "subhead": "..."},
        {"image_number": 3, "image_type": "infographic_2", "headline": "...", "subhead": null},
        {"image_number": 4, "image_type": "lifestyle", "headline": "...", "subhead": null},
        {"image_number": 5, "image_type": "comparison", "headline": "...", "subhead": null}
      ],
      "brand_voice": "Tone of the copy",
      "visual_treatment": {
        "lighting_style": "e.g. soft diffused light from top-left",
        "background_treatment": "e.g. gradient from primary to white",
        "mood_keywords": ["keyword1", "keyword2", "keyword3"]
      },
      "rationale": "Why this framework works for THIS product"
    }
  ]
}"""

FRAMEWORK_ANALYSIS_PROMPT = """You are a principal designer who builds marketplace listing image sets that convert browsers into buyers.

You are given a PRODUCT IMAGE (and possibly additional product images). Study it carefully.

PRODUCT CONTEXT:
Product Name: {productName}
Brand Name: {brandName}
Key Features: {features}
Target Audience: {targetAudience}
Primary Color Preference: {primaryColor}

FIRST, analyze the product: what it is, its shape, colors, textures and materials, its category,
the mood it conveys and who would buy it.

THEN propose {frameworkCount} distinctly different design frameworks for a five-image listing:
1. "Safe Excellence" - polished and most likely to convert
2. "Bold Creative" - an unexpected but compelling design risk
3. "Emotional Story" - feelings and lifestyle aspiration
4. "Premium Elevation" - makes the product feel luxurious

Every framework needs:
- a palette of exactly 5 colors with valid #RRGGBB hex codes and the roles
  primary (60%), secondary (30%), accent (10%), text_dark and text_light
- real font names (e.g. Montserrat, Playfair Display, Inter, Poppins, Oswald, DM Sans)
- a story arc with one beat per image: hook, reveal, proof, dream, close
- headline copy for each of the five images, specific to this product
- a visual treatment (lighting, background, mood keywords) and a rationale

Respond with ONLY a JSON object of this shape:
{frameworkJsonShape}

Base every decision on what you actually see in the product image."""

STYLE_REFERENCE_PROMPT = """You are a principal designer applying the visual style of a STYLE REFERENCE image to a product listing.

{imageInventory}

PRODUCT CONTEXT:
Product Name: {productName}
Brand Name: {brandName}
Key Features: {features}
Target Audience: {targetAudience}

YOUR TASK:
1. Analyze the product image(s).
2. Extract the style reference's visual DNA: colors, typography feel, mood and lighting.
3. Create ONE framework that applies this style to the product.

{colorModeInstructions}

Respond with ONLY a JSON object of this shape, with a single entry in "frameworks":
{frameworkJsonShape}"""

IMAGE_PROMPTS_GENERATION = """You are a principal designer writing image generation prompts for a marketplace listing.

SELECTED FRAMEWORK:
{frameworkJson}

PRODUCT INFO:
Product Name: {productName}
Key Features: {features}

Write 5 detailed prompts, one per image type, in this order:
1. main - clean hero shot of the product on a pure white background
2. infographic_1 - technical features with callouts and icons
3. infographic_2 - benefits grid or comparison
4. lifestyle - the product in use, real person or setting
5. comparison - package contents or multiple uses

Each prompt must stand alone (200+ words) and include the exact hex colors, font names and sizes,
the layout and composition, every piece of text that appears in the image, and the lighting and mood.

Respond with ONLY a JSON object:
{
  "generation_prompts": [
    {"image_type": "main", "image_number": 1, "prompt": "...", "design_notes": "..."}
  ]
}"""

GLOBAL_NOTE_SUFFIX = "\n\nUSER'S ADDITIONAL INSTRUCTIONS (apply to ALL images):\n{globalNote}"


def fill_prompt_template(template: str, variables: Dict[str, str]) -> str:
    """Replace every {key} placeholder with its value."""
    result = template
    for key, value in variables.items():
        result = result.replace("{" + key + "}", value)
    return result


def build_image_inventory(additional_count: int) -> str:
    """Describe the order of inline images sent with a style reference request."""
    lines = ["=== IMAGE INVENTORY ===",
             f"You are shown {additional_count + 2} image(s):",
             "- Image 1: PRIMARY PRODUCT IMAGE"]
    for index in range(additional_count):
        lines.append(f"- Image {index + 2}: ADDITIONAL PRODUCT IMAGE")
    lines.append(f"- Image {additional_count + 2}: STYLE REFERENCE IMAGE - the exact visual style to follow")
    return "\n".join(lines)


def build_color_mode_instructions(locked_colors) -> str:
    if locked_colors:
        return f"LOCKED PALETTE MODE: use EXACTLY these colors: {', '.join(locked_colors)}"
    return "EXTRACT COLORS: study the style reference and extract its color palette."
