from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from uuid import UUID
from listing_studio.dependencies import Services, get_services, get_current_user
from listing_studio.models.generation import (AnalyzeRequest, SelectFrameworkRequest,
                                              GenerateImageRequest, RegenerateImageRequest,
                                              ImageType)
from listing_studio.models.image import GeneratedImageResult
from listing_studio.models.user import AuthenticatedUser
from listing_studio.utils.exceptions import DatabaseException, ImageGenerationFailedException
from listing_studio.utils.logger import log_to_database
from listing_studio.utils.responses import (ErrorResponse, SuccessResponse, error_response,
                                            success_response)

router = APIRouter(prefix="/generations", tags=["generations"])

IMAGE_ERROR_RESPONSES = {
    402: {"model": ErrorResponse, "description": "Insufficient credits"},
    500: {"model": ErrorResponse, "description": "Image generation failed for this slot"},
}


def _image_response(result: GeneratedImageResult) -> dict:
    return {
        "success": True,
        "imageId": str(result.image_id),
        "imageUrl": result.image_url,
        "imageType": result.image_type.value,
        "storagePath": result.storage_path,
        "version": result.version,
        "creditsUsed": result.credits_used
    }


def _slot_failure_response(exc: ImageGenerationFailedException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_response(exc.detail, imageId=exc.image_id, imageType=exc.image_type))


@router.post("/analyze")
async def analyze_product(body: AnalyzeRequest,
                          user: AuthenticatedUser = Depends(get_current_user),
                          services: Services = Depends(get_services)):
    """Analyze product images and propose design frameworks."""
    try:
        result = await services.pipeline.start_analysis(user.id, body)
        return {
            "success": True,
            "generationId": str(result.generation_id),
            "productAnalysis": result.product_analysis.model_dump(),
            "frameworks": [framework.model_dump() for framework in result.frameworks]
        }

    except HTTPException:
        raise
    except Exception as e:
        await log_to_database("api", "error", f"Error analyzing product: {str(e)}", user_id=user.id)
        raise DatabaseException(str(e))


@router.post("/{generation_id}/select-framework")
async def select_framework(generation_id: UUID,
                           body: SelectFrameworkRequest,
                           user: AuthenticatedUser = Depends(get_current_user),
                           services: Services = Depends(get_services)):
    """Choose a framework and receive one prompt per image type."""
    try:
        prompts = await services.pipeline.select_framework(
            str(generation_id), user.id, body.framework,
            product_name=body.product_name,
            features=body.features,
            global_note=body.global_note)
        return {"success": True, "generationId": str(generation_id), "prompts": prompts}

    except HTTPException:
        raise
    except Exception as e:
        await log_to_database("api", "error", f"Error selecting framework: {str(e)}", user_id=user.id)
        raise DatabaseException(str(e))


@router.post("/{generation_id}/images", responses=IMAGE_ERROR_RESPONSES)
async def generate_image(generation_id: UUID,
                         body: GenerateImageRequest,
                         user: AuthenticatedUser = Depends(get_current_user),
                         services: Services = Depends(get_services)):
    """Render one listing image for 1 credit."""
    try:
        result = await services.pipeline.generate_one(
            str(generation_id), user.id, body.image_type, body.prompt,
            reference_image=body.reference_image)
        return _image_response(result)

    except ImageGenerationFailedException as e:
        return _slot_failure_response(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_to_database("api", "error", f"Error generating image: {str(e)}", user_id=user.id)
        raise DatabaseException(str(e))


@router.post("/{generation_id}/images/{image_type}/regenerate", responses=IMAGE_ERROR_RESPONSES)
async def regenerate_image(generation_id: UUID,
                           image_type: ImageType,
                           body: RegenerateImageRequest = None,
                           user: AuthenticatedUser = Depends(get_current_user),
                           services: Services = Depends(get_services)):
    """Render a slot again from its last prompt, with an optional note."""
    body = body or RegenerateImageRequest()
    try:
        result = await services.pipeline.regenerate(
            str(generation_id), user.id, image_type,
            note=body.note, reference_image=body.reference_image)
        return _image_response(result)

    except ImageGenerationFailedException as e:
        return _slot_failure_response(e)
    except HTTPException:
        raise
    except Exception as e:
        await log_to_database("api", "error", f"Error regenerating image: {str(e)}", user_id=user.id)
        raise DatabaseException(str(e))


@router.get("", response_model=SuccessResponse)
async def list_generations(limit: int = 50,
                           user: AuthenticatedUser = Depends(get_current_user),
                           services: Services = Depends(get_services)):
    """Generation history, newest first."""
    generations = services.pipeline.list_generations(user.id, limit=min(max(limit, 1), 100))
    return success_response(f"{len(generations)} generation(s)",
                            [item.model_dump(mode="json") for item in generations])


@router.get("/{generation_id}", response_model=SuccessResponse, status_code=status.HTTP_200_OK)
async def get_generation(generation_id: UUID,
                         user: AuthenticatedUser = Depends(get_current_user),
                         services: Services = Depends(get_services)):
    """A generation with its image slots and signed URLs."""
    detail = services.pipeline.get_generation(str(generation_id), user.id)
    return success_response("Generation retrieved", detail.model_dump(mode="json"))
