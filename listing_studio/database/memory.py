"""
In-process backend with the same guarantees as the Supabase one.

One lock guards every table, so each repository call is a single atomic unit
(the equivalent of one Postgres statement or function call). Used with
DATA_BACKEND=memory and by the test suite.
"""
import threading
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Tuple
from uuid import uuid4
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


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryDatabase:
    """Tables as dicts of rows keyed by id."""

    def __init__(self):
        self.lock = threading.RLock()
        self.profiles: Dict[str, Dict[str, Any]] = {}
        self.generations: Dict[str, Dict[str, Any]] = {}
        self.generated_images: Dict[str, Dict[str, Any]] = {}
        self.credit_transactions: List[Dict[str, Any]] = []
        self.system_logs: List[Dict[str, Any]] = []
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.tokens: Dict[str, AuthenticatedUser] = {}

    def create_user(self, user_id: Optional[str] = None, email: str = "user@example.com",
                    credits: int = 0, full_name: Optional[str] = None) -> Profile:
        """Insert a profile; starting credits are recorded as a bonus transaction."""
        user_id = user_id or str(uuid4())
        with self.lock:
            self.profiles[user_id] = {
                "id": user_id,
                "email": email,
                "full_name": full_name,
                "credits": 0,
                "stripe_customer_id": None,
                "created_at": _now(),
                "updated_at": _now()
            }
            if credits > 0:
                self._append_credit(user_id, credits, TransactionType.BONUS, None,
                                    "Welcome bonus")
            return Profile(**self.profiles[user_id])

    def register_token(self, access_token: str, user_id: str,
                       email: Optional[str] = None) -> None:
        with self.lock:
            self.tokens[access_token] = AuthenticatedUser(id=user_id, email=email)

    def _append_credit(self, user_id: str, amount: int, type: TransactionType,
                       stripe_payment_id: Optional[str],
                       description: Optional[str]) -> Dict[str, Any]:
        profile = self.profiles[user_id]
        profile["credits"] += amount
        profile["updated_at"] = _now()
        row = {
            "id": str(uuid4()),
            "user_id": user_id,
            "amount": amount,
            "type": TransactionType(type).value,
            "description": description,
            "generation_id": None,
            "stripe_payment_id": stripe_payment_id,
            "created_at": _now()
        }
        self.credit_transactions.append(row)
        return row


class InMemoryProfileRepository(ProfileRepository):

    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def get_profile(self, user_id: str) -> Optional[Profile]:
        with self.db.lock:
            row = self.db.profiles.get(user_id)
            return Profile(**row) if row else None

    def set_stripe_customer_id(self, user_id: str, customer_id: str) -> None:
        with self.db.lock:
            if user_id not in self.db.profiles:
                raise UserNotFoundException(user_id)
            self.db.profiles[user_id]["stripe_customer_id"] = customer_id
            self.db.profiles[user_id]["updated_at"] = _now()


class InMemoryLedgerRepository(LedgerRepository):

    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def get_balance(self, user_id: str) -> int:
        with self.db.lock:
            if user_id not in self.db.profiles:
                raise UserNotFoundException(user_id)
            return self.db.profiles[user_id]["credits"]

    def debit(self, user_id: str, amount: int, description: str,
              generation_id: Optional[str] = None) -> Tuple[CreditTransaction, int]:
        if amount <= 0:
            raise ValidationException("Debit amount must be positive")
        with self.db.lock:
            profile = self.db.profiles.get(user_id)
            if profile is None:
                raise UserNotFoundException(user_id)
            if profile["credits"] < amount:
                raise InsufficientCreditsException(required=amount, available=profile["credits"])

            profile["credits"] -= amount
            profile["updated_at"] = _now()
            row = {
                "id": str(uuid4()),
                "user_id": user_id,
                "amount": -amount,
                "type": TransactionType.USAGE.value,
                "description": description,
                "generation_id": generation_id,
                "stripe_payment_id": None,
                "created_at": _now()
            }
            self.db.credit_transactions.append(row)
            if generation_id and generation_id in self.db.generations:
                generation = self.db.generations[generation_id]
                generation["credits_used"] += amount
                generation["updated_at"] = _now()
            return CreditTransaction(**row), profile["credits"]

    def credit(self, user_id: str, amount: int, type: TransactionType,
               stripe_payment_id: Optional[str] = None,
               description: Optional[str] = None) -> CreditResult:
        if amount <= 0:
            raise ValidationException("Credit amount must be positive")
        with self.db.lock:
            if stripe_payment_id is not None:
                for row in self.db.credit_transactions:
                    if row["stripe_payment_id"] == stripe_payment_id:
                        balance = self.db.profiles[row["user_id"]]["credits"]
                        return CreditResult(transaction=CreditTransaction(**row),
                                            balance=balance, created=False)
            if user_id not in self.db.profiles:
                raise UserNotFoundException(user_id)
            row = self.db._append_credit(user_id, amount, type, stripe_payment_id, description)
            return CreditResult(transaction=CreditTransaction(**row),
                                balance=self.db.profiles[user_id]["credits"])

    def list_transactions(self, user_id: str, limit: int = 50) -> List[CreditTransaction]:
        with self.db.lock:
            rows = [row for row in self.db.credit_transactions if row["user_id"] == user_id]
        rows.reverse()
        return [CreditTransaction(**row) for row in rows[:limit]]


class InMemoryGenerationRepository(GenerationRepository):

    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def create_generation(self, generation: GenerationCreate) -> Generation:
        row = generation.model_dump(mode="json")
        row.update({
            "id": str(uuid4()),
            "framework_data": None,
            "selected_framework": None,
            "image_prompts": None,
            "global_note": None,
            "error_message": None,
            "credits_used": 0,
            "created_at": _now(),
            "updated_at": _now()
        })
        with self.db.lock:
            self.db.generations[row["id"]] = row
            return Generation(**row)

    def get_generation(self, generation_id: str, user_id: str) -> Optional[Generation]:
        with self.db.lock:
            row = self.db.generations.get(str(generation_id))
            if row is None or row["user_id"] != str(user_id):
                return None
            return Generation(**row)

    def list_generations(self, user_id: str, limit: int = 50) -> List[GenerationSummary]:
        with self.db.lock:
            rows = [row for row in self.db.generations.values() if row["user_id"] == user_id]
            rows.sort(key=lambda row: row["created_at"], reverse=True)
            counts = {}
            for image in self.db.generated_images.values():
                counts[image["generation_id"]] = counts.get(image["generation_id"], 0) + 1
            return [
                GenerationSummary(
                    id=row["id"],
                    product_title=row["product_title"],
                    status=row["status"],
                    credits_used=row["credits_used"],
                    image_count=counts.get(row["id"], 0),
                    created_at=row["created_at"])
                for row in rows[:limit]
            ]

    def transition(self, generation_id: str, expected: GenerationStatus,
                   target: GenerationStatus,
                   updates: Optional[Dict[str, Any]] = None) -> Generation:
        ensure_transition(expected, target)
        with self.db.lock:
            row = self.db.generations.get(str(generation_id))
            if row is None:
                raise GenerationNotFoundException(str(generation_id))
            if row["status"] != GenerationStatus(expected).value:
                raise InvalidStateTransitionException(row["status"],
                                                      GenerationStatus(target).value)
            row.update(updates or {})
            row["status"] = GenerationStatus(target).value
            row["updated_at"] = _now()
            return Generation(**row)

    def _find_image(self, generation_id: str, image_type: ImageType) -> Optional[Dict[str, Any]]:
        for row in self.db.generated_images.values():
            if (row["generation_id"] == str(generation_id)
                    and row["image_type"] == ImageType(image_type).value):
                return row
        return None

    def get_image(self, generation_id: str, image_type: ImageType) -> Optional[GeneratedImage]:
        with self.db.lock:
            row = self._find_image(generation_id, image_type)
            return GeneratedImage(**row) if row else None

    def list_images(self, generation_id: str) -> List[GeneratedImage]:
        with self.db.lock:
            rows = [row for row in self.db.generated_images.values()
                    if row["generation_id"] == str(generation_id)]
        rows.sort(key=lambda row: row["created_at"])
        return [GeneratedImage(**row) for row in rows]

    def upsert_image(self, generation_id: str, image_type: ImageType,
                     fields: Dict[str, Any]) -> GeneratedImage:
        with self.db.lock:
            row = self._find_image(generation_id, image_type)
            if row is None:
                row = {
                    "id": str(uuid4()),
                    "generation_id": str(generation_id),
                    "image_type": ImageType(image_type).value,
                    "storage_path": None,
                    "prompt_used": None,
                    "version": 1,
                    "next_version": 1,
                    "status": "pending",
                    "error": None,
                    "created_at": _now()
                }
                self.db.generated_images[row["id"]] = row
            row.update(fields)
            row["updated_at"] = _now()
            return GeneratedImage(**row)

    def claim_image_version(self, generation_id: str, image_type: ImageType) -> int:
        with self.db.lock:
            row = self._find_image(generation_id, image_type)
            if row is None:
                raise DatabaseException("Failed to reserve image version")
            version = row["next_version"]
            row["next_version"] += 1
            row["updated_at"] = _now()
            return version

    def complete_image(self, generation_id: str, image_type: ImageType, version: int,
                       storage_path: str) -> GeneratedImage:
        with self.db.lock:
            row = self._find_image(generation_id, image_type)
            if row is None:
                raise DatabaseException("Failed to save generated image")
            if row["storage_path"] is None or version > row["version"]:
                row["storage_path"] = storage_path
                row["version"] = version
            row["status"] = "completed"
            row["error"] = None
            row["updated_at"] = _now()
            return GeneratedImage(**row)


class InMemoryImageStorage(ImageStorage):

    def __init__(self, db: InMemoryDatabase, base_url: str = "memory://generated"):
        self.db = db
        self.base_url = base_url

    def upload(self, path: str, data: bytes, content_type: str = "image/png") -> None:
        with self.db.lock:
            self.db.objects[path] = (data, content_type)

    def create_signed_url(self, path: str, expires_in: int) -> Optional[str]:
        with self.db.lock:
            if path not in self.db.objects:
                return None
        return f"{self.base_url}/{path}?expires_in={expires_in}"


class InMemorySystemLogRepository(SystemLogRepository):

    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def insert_log(self, log_data: Dict[str, Any]) -> None:
        row = SystemLogCreate(**log_data).model_dump(mode="json")
        row.update({"id": str(uuid4()), "created_at": _now()})
        with self.db.lock:
            self.db.system_logs.append(row)


class InMemoryAuthProvider(AuthProvider):
    """Tokens registered through InMemoryDatabase.register_token."""

    def __init__(self, db: InMemoryDatabase):
        self.db = db

    def get_user(self, access_token: str) -> Optional[AuthenticatedUser]:
        with self.db.lock:
            return self.db.tokens.get(access_token)
