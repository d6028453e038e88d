from typing import Optional, List
from listing_studio.database.repositories import LedgerRepository
from listing_studio.models.credit import CreditTransaction, CreditResult, TransactionType
from listing_studio.utils.exceptions import ValidationException
from listing_studio.utils.logger import get_logger, log_to_database

logger = get_logger(__name__)


class CreditLedger:
    """
    Per-user credit balance with an immutable transaction log.

    Balance checks and mutations happen inside the repository as one atomic
    unit, so concurrent debits can never drive a balance negative and a
    replayed payment id never credits twice.
    """

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    def balance(self, user_id: str) -> int:
        return self.repository.get_balance(str(user_id))

    def has_at_least(self, user_id: str, amount: int) -> bool:
        return self.balance(user_id) >= amount

    def transactions(self, user_id: str, limit: int = 50) -> List[CreditTransaction]:
        return self.repository.list_transactions(str(user_id), limit=limit)

    async def debit(self,
                    user_id: str,
                    amount: int,
                    reason: str,
                    generation_id: Optional[str] = None) -> CreditTransaction:
        """
        Spend credits.

        Raises:
            InsufficientCreditsException: balance < amount; nothing is changed
            ValidationException: amount is not positive
        """
        if amount <= 0:
            raise ValidationException("Debit amount must be positive")

        transaction, balance = self.repository.debit(
            str(user_id), amount, reason,
            str(generation_id) if generation_id else None)

        logger.info(f"Debited {amount} credit(s) from user {user_id}, balance now {balance}")
        return transaction

    async def credit(self,
                     user_id: str,
                     amount: int,
                     type: TransactionType = TransactionType.PURCHASE,
                     external_payment_id: Optional[str] = None,
                     description: Optional[str] = None) -> CreditResult:
        """
        Grant credits. Idempotent when external_payment_id is given: a second
        call with the same id returns the first transaction with created=False.
        """
        if amount <= 0:
            raise ValidationException("Credit amount must be positive")

        result = self.repository.credit(str(user_id), amount, TransactionType(type),
                                        stripe_payment_id=external_payment_id,
                                        description=description)

        if result.created:
            await log_to_database(
                "ledger", "info",
                f"Credited {amount} credit(s) ({TransactionType(type).value}), balance now {result.balance}",
                user_id=str(user_id),
                details={"external_payment_id": external_payment_id})
        else:
            logger.info(f"Payment {external_payment_id} already credited, skipping")
        return result
