from .user import Profile, AuthenticatedUser
from .framework import Framework, FrameworkAnalysis, ProductAnalysis, ImagePrompt
from .generation import (Generation, GenerationCreate, GenerationStatus, ImageType,
                         IMAGE_TYPES)
from .image import GeneratedImage, ImageStatus, GeneratedImageResult, GenerationDetail
from .credit import (CreditTransaction, CreditResult, TransactionType, CreditPackage,
                     CREDIT_PACKAGES)
from .system_log import SystemLogCreate

__all__ = [
    "Profile", "AuthenticatedUser",
    "Framework", "FrameworkAnalysis", "ProductAnalysis", "ImagePrompt",
    "Generation", "GenerationCreate", "GenerationStatus", "ImageType", "IMAGE_TYPES",
    "GeneratedImage", "ImageStatus", "GeneratedImageResult", "GenerationDetail",
    "CreditTransaction", "CreditResult", "TransactionType", "CreditPackage",
    "CREDIT_PACKAGES",
    "SystemLogCreate"
]
