import re
import asyncio
import base64
import binascii
from typing import Dict, Any, List, Optional
from pydantic import ValidationError
from listing_studio.database.repositories import GenerationRepository, ImageStorage
from listing_studio.models.framework import Framework
from listing_studio.models.generation import (AnalyzeRequest, AnalysisResult, Generation,
                                              GenerationCreate, GenerationStatus,
                                              GenerationSummary, ImageType, InlineImage,
                                              IMAGE_TYPES)
from listing_studio.models.image import (GeneratedImage, GeneratedImageResult, GenerationDetail,
                                         ImageStatus, ImageView, TERMINAL_IMAGE_STATUSES,
                                         image_storage_path)
from listing_studio.services.credit_ledger import CreditLedger
from listing_studio.services.gemini_client import DesignAdapter
from listing_studio.utils.exceptions import (BaseAPIException, ValidationException,
                                             GenerationNotFoundException,
                                             InsufficientCreditsException,
                                             InvalidStateTransitionException,
                                             AnalysisFailureException,
                                             ImageGenerationFailedException, DatabaseException)
from listing_studio.utils.logger import get_logger, log_to_database

logger = get_logger(__name__)

HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")
IMAGE_COST = 1
IMAGE_READY_STATUSES = {GenerationStatus.GENERATING, GenerationStatus.COMPLETED}


def _validate_image(image: InlineImage, label: str) -> None:
    if not image.base64:
        raise ValidationException(f"Missing image data for {label}")
    if not image.mime_type or not image.mime_type.startswith("image/"):
        raise ValidationException(f"Unsupported mime type for {label}: '{image.mime_type}'")
    try:
        base64.b64decode(image.base64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationException(f"{label} is not valid base64")


class GenerationPipeline:
    """
    Drives a generation from product photo to listing images.

    analyze -> select framework -> generate each image slot. Analysis and prompt
    synthesis are free; each successful render costs one credit, debited after
    the image has been stored (deliver-before-debit).
    """

    def __init__(self,
                 generations: GenerationRepository,
                 storage: ImageStorage,
                 ledger: CreditLedger,
                 adapter: DesignAdapter,
                 analysis_timeout: float = 60.0,
                 prompts_timeout: float = 30.0,
                 image_timeout: float = 120.0,
                 signed_url_expiry: int = 3600):
        self.generations = generations
        self.storage = storage
        self.ledger = ledger
        self.adapter = adapter
        self.analysis_timeout = analysis_timeout
        self.prompts_timeout = prompts_timeout
        self.image_timeout = image_timeout
        self.signed_url_expiry = signed_url_expiry

    # ==============================================================
    # Stage 1: analysis
    # ==============================================================
    async def start_analysis(self, owner_id: str, request: AnalyzeRequest) -> AnalysisResult:
        """
        Analyze product images and persist a new generation with its framework
        candidates.

        Raises:
            ValidationException: missing image or product name, bad colors
            AnalysisFailureException: adapter error, timeout or no frameworks;
                no record is created
            DatabaseException: the generation could not be saved
        """
        product_name = (request.product_name or "").strip()
        product_images = request.product_images()
        if not product_images:
            raise ValidationException("At least one product image is required")
        if not product_name:
            raise ValidationException("Product name is required")
        for index, image in enumerate(product_images):
            _validate_image(image, "product image" if index == 0 else f"additional image {index}")
        if request.style_reference:
            _validate_image(request.style_reference, "style reference")
        for color in request.locked_colors:
            if not HEX_COLOR.match(color.strip()):
                raise ValidationException(f"Locked color '{color}' is not a #RRGGBB hex color")

        features = [feature.strip() for feature in request.features if feature and feature.strip()]
        locked_colors = [color.strip().upper() for color in request.locked_colors]

        analysis = await self._call_adapter(
            self.adapter.analyze_product(
                product_images=product_images,
                product_name=product_name,
                brand_name=request.brand_name,
                features=features,
                target_audience=request.target_audience,
                primary_color=request.primary_color,
                style_reference=request.style_reference,
                locked_colors=locked_colors or None),
            self.analysis_timeout, "Framework analysis")
        if not analysis.frameworks:
            raise AnalysisFailureException("AI response contains no frameworks")

        color_mode = None
        if request.style_reference:
            color_mode = "locked" if locked_colors else "extract"

        generation = self.generations.create_generation(GenerationCreate(
            user_id=owner_id,
            product_title=product_name,
            product_description=", ".join(features),
            features=features,
            target_audience=request.target_audience,
            brand_name=request.brand_name,
            color_mode=color_mode,
            locked_colors=locked_colors or None))

        try:
            generation = self.generations.transition(
                str(generation.id), GenerationStatus.PENDING, GenerationStatus.ANALYZING,
                {"framework_data": analysis.model_dump(mode="json")})
        except BaseAPIException as e:
            await self._mark_failed(generation, GenerationStatus.PENDING, e.detail)
            raise DatabaseException("Failed to save generation")

        await log_to_database(
            "pipeline", "info",
            f"Generation {generation.id} analyzed: {len(analysis.frameworks)} framework(s)",
            user_id=owner_id)

        return AnalysisResult(generation_id=generation.id,
                              product_analysis=analysis.product_analysis,
                              frameworks=analysis.frameworks)

    # ==============================================================
    # Stage 2: framework selection
    # ==============================================================
    async def select_framework(self,
                               generation_id: str,
                               owner_id: str,
                               framework: Dict[str, Any],
                               product_name: Optional[str] = None,
                               features: Optional[List[str]] = None,
                               global_note: Optional[str] = None) -> Dict[str, str]:
        """
        Lock in a framework and synthesize one prompt per image type.

        Returns:
            Mapping of image type to generation prompt
        """
        generation = self._get_owned(generation_id, owner_id)
        if generation.status != GenerationStatus.ANALYZING:
            raise InvalidStateTransitionException(generation.status.value,
                                                  GenerationStatus.GENERATING.value)

        try:
            chosen = Framework(**framework)
        except (ValidationError, TypeError) as e:
            raise ValidationException(f"Invalid framework: {str(e)}")

        note = (global_note or "").strip() or None
        name = (product_name or "").strip() or generation.product_title
        product_features = features if features is not None else generation.features

        image_prompts = await self._call_adapter(
            self.adapter.generate_image_prompts(
                framework=chosen,
                product_name=name,
                features=product_features,
                global_note=note),
            self.prompts_timeout, "Prompt generation")

        prompts: Dict[str, str] = {}
        valid_types = {image_type.value for image_type in IMAGE_TYPES}
        for item in image_prompts:
            if item.image_type in valid_types and item.prompt.strip():
                prompts.setdefault(item.image_type, item.prompt.strip())
        missing = [image_type.value for image_type in IMAGE_TYPES if image_type.value not in prompts]
        if missing:
            raise AnalysisFailureException(
                f"AI response is missing prompts for: {', '.join(missing)}")

        if note:
            prompts = {key: f"{value}\n\nAdditional instructions: {note}"
                       for key, value in prompts.items()}

        self.generations.transition(
            str(generation.id), GenerationStatus.ANALYZING, GenerationStatus.GENERATING,
            {
                "selected_framework": chosen.model_dump(mode="json"),
                "image_prompts": prompts,
                "global_note": note,
            })

        await log_to_database(
            "pipeline", "info",
            f"Framework '{chosen.framework_name}' selected for generation {generation.id}",
            user_id=owner_id)
        return prompts

    # ==============================================================
    # Stage 3: per-image generation
    # ==============================================================
    async def generate_one(self,
                           generation_id: str,
                           owner_id: str,
                           image_type: ImageType,
                           prompt: str,
                           reference_image: Optional[InlineImage] = None) -> GeneratedImageResult:
        """
        Render one slot. Retrying is just calling this again.

        The credit balance is checked before rendering but debited only after
        the image is stored, so a failed render never costs a credit.

        Raises:
            InsufficientCreditsException: balance below one credit; nothing written
            ImageGenerationFailedException: render failed; slot marked failed
            DatabaseException: the image could not be stored; slot marked failed
        """
        generation = self._get_owned(generation_id, owner_id)
        try:
            image_type = ImageType(image_type)
        except ValueError:
            raise ValidationException(f"Unknown image type '{image_type}'")
        prompt = (prompt or "").strip()
        if not prompt:
            raise ValidationException("Prompt is required")
        if reference_image:
            _validate_image(reference_image, "reference image")
        if generation.status not in IMAGE_READY_STATUSES:
            raise InvalidStateTransitionException(generation.status.value,
                                                  GenerationStatus.GENERATING.value)

        if not self.ledger.has_at_least(owner_id, IMAGE_COST):
            raise InsufficientCreditsException(required=IMAGE_COST)

        gid = str(generation.id)
        previous = self.generations.get_image(gid, image_type)
        changes = {"prompt_used": prompt, "error": None}
        if not (previous and previous.storage_path):
            changes["status"] = ImageStatus.GENERATING.value
        slot = self.generations.upsert_image(gid, image_type, changes)

        try:
            rendered = await self._call_adapter(
                self.adapter.generate_image(prompt=prompt, reference_image=reference_image),
                self.image_timeout, f"Generating {image_type.value} image")
        except AnalysisFailureException as e:
            await self._fail_slot(generation, slot, e.detail)
            raise ImageGenerationFailedException(image_type.value, e.detail, str(slot.id))
        except asyncio.CancelledError:
            self._settle_failed_slot(gid, image_type, "Image generation was cancelled")
            raise

        # Versions are claimed only for delivered renders so failures leave no gaps
        try:
            version = self.generations.claim_image_version(gid, image_type)
            storage_path = image_storage_path(gid, image_type.value, version)
            self.storage.upload(storage_path, rendered.data, rendered.mime_type or "image/png")
            slot = self.generations.complete_image(gid, image_type, version, storage_path)
        except BaseAPIException as e:
            logger.error(f"Saving {image_type.value} image for generation {gid} failed: {e.detail}")
            await self._fail_slot(generation, slot, "Failed to save generated image")
            raise DatabaseException(e.detail)

        await self._charge_for_delivered_image(owner_id, gid, image_type)

        image_url = self.storage.create_signed_url(storage_path, self.signed_url_expiry)
        await self._complete_if_all_slots_done(generation)

        logger.info(f"Generated {image_type.value} v{version} for generation {gid}")
        return GeneratedImageResult(
            image_id=slot.id,
            image_type=image_type,
            image_url=image_url,
            storage_path=storage_path,
            version=version,
            credits_used=IMAGE_COST)

    async def regenerate(self,
                         generation_id: str,
                         owner_id: str,
                         image_type: ImageType,
                         note: Optional[str] = None,
                         reference_image: Optional[InlineImage] = None) -> GeneratedImageResult:
        """Render a slot again from its last prompt, optionally with an extra note."""
        generation = self._get_owned(generation_id, owner_id)
        try:
            image_type = ImageType(image_type)
        except ValueError:
            raise ValidationException(f"Unknown image type '{image_type}'")

        slot = self.generations.get_image(str(generation.id), image_type)
        prompt = (slot.prompt_used if slot else None) or \
            (generation.image_prompts or {}).get(image_type.value)
        if not prompt:
            raise ValidationException(f"No prompt available for {image_type.value} image")

        note = (note or "").strip()
        if note:
            prompt = f"{prompt}\n\nAdditional instructions: {note}"

        return await self.generate_one(generation_id, owner_id, image_type, prompt,
                                       reference_image=reference_image)

    # ==============================================================
    # Reads
    # ==============================================================
    def get_generation(self, generation_id: str, owner_id: str) -> GenerationDetail:
        generation = self._get_owned(generation_id, owner_id)
        images = []
        for image in self.generations.list_images(str(generation.id)):
            url = None
            if image.storage_path:
                url = self.storage.create_signed_url(image.storage_path, self.signed_url_expiry)
            images.append(ImageView(**image.model_dump(), image_url=url))
        return GenerationDetail(generation=generation, images=images)

    def list_generations(self, owner_id: str, limit: int = 50) -> List[GenerationSummary]:
        return self.generations.list_generations(str(owner_id), limit=limit)

    # ==============================================================
    # Helpers
    # ==============================================================
    def _get_owned(self, generation_id: str, owner_id: str) -> Generation:
        generation = self.generations.get_generation(str(generation_id), str(owner_id))
        if generation is None:
            raise GenerationNotFoundException(str(generation_id))
        return generation

    async def _call_adapter(self, call, timeout: float, stage: str):
        """Await an adapter call under a deadline; any failure is an AnalysisFailure."""
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"{stage} timed out after {timeout}s")
            raise AnalysisFailureException(f"{stage} timed out")
        except AnalysisFailureException as e:
            logger.error(f"{stage} failed: {e.detail}")
            raise
        except BaseAPIException as e:
            logger.error(f"{stage} failed: {e.detail}")
            raise AnalysisFailureException(f"{stage} failed: {e.detail}")
        except Exception as e:
            logger.error(f"{stage} failed: {str(e)}")
            raise AnalysisFailureException(f"{stage} failed: {str(e)}")

    async def _charge_for_delivered_image(self, owner_id: str, generation_id: str,
                                          image_type: ImageType) -> None:
        """
        Deliver-before-debit: the image is already stored, so a failing debit
        is recorded for reconciliation and never reverses the delivery.
        """
        try:
            await self.ledger.debit(owner_id, IMAGE_COST,
                                    f"Generated {image_type.value} image",
                                    generation_id=generation_id)
        except Exception as e:
            reason = e.detail if isinstance(e, BaseAPIException) else str(e)
            await log_to_database(
                "ledger", "error",
                f"Credit deduction failed after delivering {image_type.value} image "
                f"for generation {generation_id}: {reason}",
                user_id=owner_id,
                details={"generation_id": generation_id, "image_type": image_type.value,
                         "amount": IMAGE_COST, "reconcile": True})

    def _settle_failed_slot(self, generation_id: str, image_type: ImageType, error: str) -> None:
        """
        Record a failed attempt on a slot. A slot that already holds a stored
        render stays completed and keeps serving it; only the error is recorded.
        """
        current = self.generations.get_image(generation_id, image_type)
        changes = {"error": error}
        if not (current and current.storage_path):
            changes["status"] = ImageStatus.FAILED.value
        self.generations.upsert_image(generation_id, image_type, changes)

    async def _fail_slot(self, generation: Generation, slot: GeneratedImage, error: str) -> None:
        self._settle_failed_slot(str(generation.id), slot.image_type, error)
        await log_to_database(
            "pipeline", "warning",
            f"{slot.image_type.value} image failed for generation {generation.id}: {error}",
            user_id=str(generation.user_id))
        await self._complete_if_all_slots_done(generation)

    async def _complete_if_all_slots_done(self, generation: Generation) -> None:
        """Move generating -> completed once every slot is completed or failed."""
        if generation.status != GenerationStatus.GENERATING:
            return
        images = {image.image_type: image for image in self.generations.list_images(str(generation.id))}
        if not all(image_type in images and images[image_type].status in TERMINAL_IMAGE_STATUSES
                   for image_type in IMAGE_TYPES):
            return
        try:
            self.generations.transition(str(generation.id), GenerationStatus.GENERATING,
                                        GenerationStatus.COMPLETED)
        except InvalidStateTransitionException:
            # Another request completed it first
            return
        logger.info(f"Generation {generation.id} completed")

    async def _mark_failed(self, generation: Generation, expected: GenerationStatus,
                           error: str) -> None:
        try:
            self.generations.transition(str(generation.id), expected, GenerationStatus.FAILED,
                                        {"error_message": error})
        except BaseAPIException as e:
            logger.error(f"Could not mark generation {generation.id} failed: {e.detail}")
        await log_to_database("pipeline", "error",
                              f"Generation {generation.id} failed: {error}",
                              user_id=str(generation.user_id))
