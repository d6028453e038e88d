"""
Typed repository interfaces.

Every query or mutation the core needs has exactly one method here, so call
sites never talk to a table directly. Two backends implement them: Supabase
(``supabase_store``) and an in-process store (``memory``).
"""
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any, Tuple
from listing_studio.models.credit import CreditTransaction, CreditResult, TransactionType
from listing_studio.models.generation import (Generation, GenerationCreate, GenerationStatus,
                                              GenerationSummary, ImageType)
from listing_studio.models.image import GeneratedImage
from listing_studio.models.user import Profile, AuthenticatedUser


class ProfileRepository(ABC):

    @abstractmethod
    def get_profile(self, user_id: str) -> Optional[Profile]:
        ...

    @abstractmethod
    def set_stripe_customer_id(self, user_id: str, customer_id: str) -> None:
        ...


class LedgerRepository(ABC):

    @abstractmethod
    def get_balance(self, user_id: str) -> int:
        """Current balance. Raises UserNotFoundException for unknown users."""

    @abstractmethod
    def debit(self, user_id: str, amount: int, description: str,
              generation_id: Optional[str] = None) -> Tuple[CreditTransaction, int]:
        """
        Atomically check balance >= amount, decrement it, append a usage
        transaction and add amount to the generation's credits_used.

        Returns the transaction and the new balance. Raises
        InsufficientCreditsException without mutating anything.
        """

    @abstractmethod
    def credit(self, user_id: str, amount: int, type: TransactionType,
               stripe_payment_id: Optional[str] = None,
               description: Optional[str] = None) -> CreditResult:
        """
        Increase the balance and append a transaction. A repeated
        stripe_payment_id returns the original transaction with created=False.
        """

    @abstractmethod
    def list_transactions(self, user_id: str, limit: int = 50) -> List[CreditTransaction]:
        ...


class GenerationRepository(ABC):

    @abstractmethod
    def create_generation(self, generation: GenerationCreate) -> Generation:
        ...

    @abstractmethod
    def get_generation(self, generation_id: str, user_id: str) -> Optional[Generation]:
        """Fetch a generation only if it belongs to user_id."""

    @abstractmethod
    def list_generations(self, user_id: str, limit: int = 50) -> List[GenerationSummary]:
        ...

    @abstractmethod
    def transition(self, generation_id: str, expected: GenerationStatus,
                   target: GenerationStatus,
                   updates: Optional[Dict[str, Any]] = None) -> Generation:
        """
        Compare-and-set the status from expected to target, writing updates in
        the same statement. Raises InvalidStateTransitionException when the
        transition is not allowed or the stored status is no longer expected.
        """

    @abstractmethod
    def get_image(self, generation_id: str, image_type: ImageType) -> Optional[GeneratedImage]:
        ...

    @abstractmethod
    def list_images(self, generation_id: str) -> List[GeneratedImage]:
        ...

    @abstractmethod
    def upsert_image(self, generation_id: str, image_type: ImageType,
                     fields: Dict[str, Any]) -> GeneratedImage:
        """Create or update the single row of a (generation, image_type) slot."""

    @abstractmethod
    def claim_image_version(self, generation_id: str, image_type: ImageType) -> int:
        """Atomically take the next version number of an existing slot."""

    @abstractmethod
    def complete_image(self, generation_id: str, image_type: ImageType, version: int,
                       storage_path: str) -> GeneratedImage:
        """
        Mark a slot completed with a stored render. The slot keeps pointing at
        the newest version when renders finish out of order.
        """


class ImageStorage(ABC):

    @abstractmethod
    def upload(self, path: str, data: bytes, content_type: str = "image/png") -> None:
        """Write an object, replacing any object at the same path."""

    @abstractmethod
    def create_signed_url(self, path: str, expires_in: int) -> Optional[str]:
        ...


class SystemLogRepository(ABC):

    @abstractmethod
    def insert_log(self, log_data: Dict[str, Any]) -> None:
        ...


class AuthProvider(ABC):

    @abstractmethod
    def get_user(self, access_token: str) -> Optional[AuthenticatedUser]:
        """Resolve a bearer token, or None when it is invalid."""
