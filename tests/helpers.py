import asyncio
import base64
import hashlib
import hmac
import json
import time
from typing import List, Optional
from listing_studio.models.framework import FrameworkAnalysis, ImagePrompt
from listing_studio.models.generation import AnalyzeRequest, InlineImage, IMAGE_TYPES
from listing_studio.services.gemini_client import (DesignAdapter, GeminiDesignAdapter,
                                                   RenderedImage, PLACEHOLDER_PNG)

WEBHOOK_SECRET = "whsec_test_secret"
PNG_BASE64 = base64.b64encode(PLACEHOLDER_PNG).decode()


class FakeDesignAdapter(DesignAdapter):
    """
    Deterministic adapter for tests. Canned content comes from the placeholder
    mode of the Gemini adapter; failures and delays are injected per call.
    """

    def __init__(self):
        self.placeholder = GeminiDesignAdapter(api_key="", allow_placeholder=True)
        self.analysis_error: Optional[Exception] = None
        self.prompts_error: Optional[Exception] = None
        self.image_errors: List[Exception] = []
        self.image_delay = 0.0
        self.on_render = None
        self.analysis_calls = 0
        self.prompt_calls = []
        self.render_calls = []

    async def analyze_product(self, product_images, product_name, brand_name=None,
                              features=None, target_audience=None, primary_color=None,
                              style_reference=None, locked_colors=None) -> FrameworkAnalysis:
        self.analysis_calls += 1
        if self.analysis_error:
            raise self.analysis_error
        return await self.placeholder.analyze_product(product_images, product_name)

    async def generate_image_prompts(self, framework, product_name, features=None,
                                     global_note=None) -> List[ImagePrompt]:
        self.prompt_calls.append({"framework": framework, "global_note": global_note})
        if self.prompts_error:
            raise self.prompts_error
        return await self.placeholder.generate_image_prompts(framework, product_name, features)

    async def generate_image(self, prompt, reference_image=None) -> RenderedImage:
        self.render_calls.append(prompt)
        if self.image_delay:
            await asyncio.sleep(self.image_delay)
        if self.on_render:
            self.on_render()
        if self.image_errors:
            raise self.image_errors.pop(0)
        return RenderedImage(data=PLACEHOLDER_PNG, mime_type="image/png")


def run(coroutine):
    return asyncio.run(coroutine)


def analyze_request(product_name: str = "Steel Water Bottle", **overrides) -> AnalyzeRequest:
    fields = {
        "productImageBase64": PNG_BASE64,
        "productImageMimeType": "image/png",
        "productName": product_name,
        "features": ["Keeps drinks cold 24h", "Leak proof"],
    }
    fields.update(overrides)
    return AnalyzeRequest(**fields)


def inline_png() -> InlineImage:
    return InlineImage(base64=PNG_BASE64, mime_type="image/png")


def analyzed_generation(pipeline, owner_id: str):
    """A generation in 'analyzing' and its first framework candidate."""
    result = run(pipeline.start_analysis(owner_id, analyze_request()))
    return str(result.generation_id), result.frameworks[0]


def generating_generation(pipeline, owner_id: str, global_note: Optional[str] = None):
    """A generation in 'generating' and its prompt for every image type."""
    generation_id, framework = analyzed_generation(pipeline, owner_id)
    prompts = run(pipeline.select_framework(generation_id, owner_id,
                                            framework.model_dump(mode="json"),
                                            global_note=global_note))
    assert set(prompts) == {image_type.value for image_type in IMAGE_TYPES}
    return generation_id, prompts


def checkout_completed_event(user_id: str, payment_intent: str = "pi_test_123",
                             package_id: str = "credits_100", credits: int = 100) -> dict:
    return {
        "id": "evt_test_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_1",
                "object": "checkout.session",
                "payment_intent": payment_intent,
                "metadata": {"user_id": user_id, "package_id": package_id,
                             "credits": str(credits)},
            }
        },
    }


def signed_payload(event: dict, secret: str = WEBHOOK_SECRET):
    """Serialize an event and sign it the way Stripe does (t=...,v1=...)."""
    payload = json.dumps(event)
    timestamp = int(time.time())
    signature = hmac.new(secret.encode("utf-8"),
                         f"{timestamp}.{payload}".encode("utf-8"),
                         hashlib.sha256).hexdigest()
    return payload.encode("utf-8"), f"t={timestamp},v1={signature}"
