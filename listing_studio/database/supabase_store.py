"""Supabase implementations of the repository interfaces."""
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Tuple
from fastapi import HTTPException
from postgrest.exceptions import APIError
from supabase import Client
from listing_studio.database.repositories import (ProfileRepository, LedgerRepository,
                                                  GenerationRepository, ImageStorage,
                                                  SystemLogRepository, AuthProvider)
from listing_studio.models.credit import CreditTransaction, CreditResult, TransactionType
from listing_studio.models.generation import (Generation, GenerationCreate, GenerationStatus,
                                              GenerationSummary, ImageType, ensure_transition)
from listing_studio.models.image import GeneratedImage
from listing_studio.models.system_log import SystemLogCreate
from listing_studio.models.user import Profile, AuthenticatedUser
from listing_studio.utils.exceptions import (DatabaseException, InsufficientCreditsException,
                                             InvalidStateTransitionException,
                                             GenerationNotFoundException, UserNotFoundException,
                                             ValidationException)
from listing_studio.utils.logger import get_logger

logger = get_logger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _execute(query, action: str):
    """Run a PostgREST query, turning driver errors into DatabaseException."""
    try:
        return query.execute()
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Supabase error while trying to {action}: {str(e)}")
        raise DatabaseException(f"Failed to {action}")


def _to_generation(row: Dict[str, Any]) -> Generation:
    row = dict(row)
    row["features"] = row.get("features") or []
    return Generation(**row)


class SupabaseProfileRepository(ProfileRepository):

    def __init__(self, client: Client):
        self.client = client

    def get_profile(self, user_id: str) -> Optional[Profile]:
        result = _execute(
            self.client.table("profiles").select("*").eq("id", user_id),
            "fetch profile")
        return Profile(**result.data[0]) if result.data else None

    def set_stripe_customer_id(self, user_id: str, customer_id: str) -> None:
        _execute(
            self.client.table("profiles").update({
                "stripe_customer_id": customer_id,
                "updated_at": _now()
            }).eq("id", user_id),
            "save Stripe customer")


class SupabaseLedgerRepository(LedgerRepository):
    """Ledger backed by the deduct_credits / add_credits Postgres functions."""

    def __init__(self, client: Client):
        self.client = client

    def get_balance(self, user_id: str) -> int:
        result = _execute(
            self.client.table("profiles").select("credits").eq("id", user_id),
            "fetch credit balance")
        if not result.data:
            raise UserNotFoundException(user_id)
        return int(result.data[0]["credits"])

    def debit(self, user_id: str, amount: int, description: str,
              generation_id: Optional[str] = None) -> Tuple[CreditTransaction, int]:
        try:
            result = self.client.rpc("deduct_credits", {
                "p_user_id": user_id,
                "p_amount": amount,
                "p_description": description,
                "p_generation_id": generation_id
            }).execute()
        except APIError as e:
            message = str(e.message or e)
            if "insufficient_credits" in message:
                raise InsufficientCreditsException(required=amount)
            if "invalid_amount" in message:
                raise ValidationException("Debit amount must be positive")
            logger.error(f"deduct_credits failed for user {user_id}: {message}")
            raise DatabaseException("Failed to deduct credits")

        payload = result.data or {}
        return CreditTransaction(**payload["transaction"]), int(payload["balance"])

    def credit(self, user_id: str, amount: int, type: TransactionType,
               stripe_payment_id: Optional[str] = None,
               description: Optional[str] = None) -> CreditResult:
        try:
            result = self.client.rpc("add_credits", {
                "p_user_id": user_id,
                "p_amount": amount,
                "p_type": TransactionType(type).value,
                "p_stripe_payment_id": stripe_payment_id,
                "p_description": description
            }).execute()
        except APIError as e:
            message = str(e.message or e)
            if "user_not_found" in message:
                raise UserNotFoundException(user_id)
            if "invalid_amount" in message:
                raise ValidationException("Credit amount must be positive")
            logger.error(f"add_credits failed for user {user_id}: {message}")
            raise DatabaseException("Failed to add credits")

        payload = result.data or {}
        return CreditResult(
            transaction=CreditTransaction(**payload["transaction"]),
            balance=int(payload["balance"]),
            created=bool(payload.get("created", True)))

    def list_transactions(self, user_id: str, limit: int = 50) -> List[CreditTransaction]:
        result = _execute(
            self.client.table("credit_transactions").select("*").eq("user_id", user_id)
            .order("created_at", desc=True).limit(limit),
            "fetch credit transactions")
        return [CreditTransaction(**row) for row in result.data]


class SupabaseGenerationRepository(GenerationRepository):

    def __init__(self, client: Client):
        self.client = client

    def create_generation(self, generation: GenerationCreate) -> Generation:
        result = _execute(
            self.client.table("generations").insert(generation.model_dump(mode="json")),
            "save generation")
        if not result.data:
            raise DatabaseException("Failed to save generation")
        return _to_generation(result.data[0])

    def get_generation(self, generation_id: str, user_id: str) -> Optional[Generation]:
        result = _execute(
            self.client.table("generations").select("*")
            .eq("id", generation_id).eq("user_id", user_id),
            "fetch generation")
        return _to_generation(result.data[0]) if result.data else None

    def list_generations(self, user_id: str, limit: int = 50) -> List[GenerationSummary]:
        result = _execute(
            self.client.table("generations")
            .select("id, product_title, status, credits_used, created_at, generated_images(id)")
            .eq("user_id", user_id).order("created_at", desc=True).limit(limit),
            "fetch generations")
        return [
            GenerationSummary(
                id=row["id"],
                product_title=row["product_title"],
                status=row["status"],
                credits_used=row["credits_used"],
                image_count=len(row.get("generated_images") or []),
                created_at=row["created_at"])
            for row in result.data
        ]

    def transition(self, generation_id: str, expected: GenerationStatus,
                   target: GenerationStatus,
                   updates: Optional[Dict[str, Any]] = None) -> Generation:
        ensure_transition(expected, target)
        payload = dict(updates or {})
        payload["status"] = GenerationStatus(target).value
        payload["updated_at"] = _now()

        result = _execute(
            self.client.table("generations").update(payload)
            .eq("id", generation_id).eq("status", GenerationStatus(expected).value),
            "update generation")
        if result.data:
            return _to_generation(result.data[0])

        current = _execute(
            self.client.table("generations").select("status").eq("id", generation_id),
            "fetch generation status")
        if not current.data:
            raise GenerationNotFoundException(generation_id)
        raise InvalidStateTransitionException(current.data[0]["status"],
                                              GenerationStatus(target).value)

    def get_image(self, generation_id: str, image_type: ImageType) -> Optional[GeneratedImage]:
        result = _execute(
            self.client.table("generated_images").select("*")
            .eq("generation_id", generation_id).eq("image_type", ImageType(image_type).value),
            "fetch generated image")
        return GeneratedImage(**result.data[0]) if result.data else None

    def list_images(self, generation_id: str) -> List[GeneratedImage]:
        result = _execute(
            self.client.table("generated_images").select("*")
            .eq("generation_id", generation_id).order("created_at"),
            "fetch generated images")
        return [GeneratedImage(**row) for row in result.data]

    def upsert_image(self, generation_id: str, image_type: ImageType,
                     fields: Dict[str, Any]) -> GeneratedImage:
        row = dict(fields)
        row["generation_id"] = generation_id
        row["image_type"] = ImageType(image_type).value
        row["updated_at"] = _now()
        result = _execute(
            self.client.table("generated_images").upsert(
                row, on_conflict="generation_id,image_type"),
            "save generated image")
        if not result.data:
            raise DatabaseException("Failed to save generated image")
        return GeneratedImage(**result.data[0])

    def claim_image_version(self, generation_id: str, image_type: ImageType) -> int:
        result = _execute(
            self.client.rpc("claim_image_version", {
                "p_generation_id": generation_id,
                "p_image_type": ImageType(image_type).value
            }),
            "reserve image version")
        return int(result.data)

    def complete_image(self, generation_id: str, image_type: ImageType, version: int,
                       storage_path: str) -> GeneratedImage:
        result = _execute(
            self.client.rpc("complete_image_version", {
                "p_generation_id": generation_id,
                "p_image_type": ImageType(image_type).value,
                "p_version": version,
                "p_storage_path": storage_path
            }),
            "save generated image")
        return GeneratedImage(**result.data)


class SupabaseImageStorage(ImageStorage):
    """Private Supabase Storage bucket for rendered images."""

    def __init__(self, client: Client, bucket: str = "generated"):
        self.client = client
        self.bucket = bucket

    def upload(self, path: str, data: bytes, content_type: str = "image/png") -> None:
        try:
            self.client.storage.from_(self.bucket).upload(
                path, data, {"content-type": content_type, "upsert": "true"})
        except Exception as e:
            logger.error(f"Storage upload error for {path}: {str(e)}")
            raise DatabaseException("Failed to save generated image")

    def create_signed_url(self, path: str, expires_in: int) -> Optional[str]:
        try:
            data = self.client.storage.from_(self.bucket).create_signed_url(path, expires_in)
        except Exception as e:
            logger.error(f"Could not sign URL for {path}: {str(e)}")
            return None
        return data.get("signedURL") or data.get("signedUrl")


class SupabaseSystemLogRepository(SystemLogRepository):

    def __init__(self, client: Client):
        self.client = client

    def insert_log(self, log_data: Dict[str, Any]) -> None:
        row = SystemLogCreate(**log_data).model_dump(mode="json", exclude_none=True)
        self.client.table("system_logs").insert(row).execute()


class SupabaseAuthProvider(AuthProvider):
    """Resolves Supabase Auth access tokens."""

    def __init__(self, client: Client):
        self.client = client

    def get_user(self, access_token: str) -> Optional[AuthenticatedUser]:
        try:
            response = self.client.auth.get_user(access_token)
        except Exception as e:
            logger.warning(f"Rejected access token: {str(e)}")
            return None
        if not response or not response.user:
            return None
        return AuthenticatedUser(id=str(response.user.id), email=response.user.email)
