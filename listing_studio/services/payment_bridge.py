import json
from typing import Dict, Any, Optional
import stripe
from listing_studio.database.repositories import ProfileRepository
from listing_studio.models.credit import (CheckoutSession, PaymentOutcome, TransactionType,
                                          get_package_by_id)
from listing_studio.models.user import AuthenticatedUser
from listing_studio.services.credit_ledger import CreditLedger
from listing_studio.utils.exceptions import (ValidationException, ConfigurationException,
                                             PaymentVerificationException, DatabaseException)
from listing_studio.utils.logger import get_logger, log_to_database

logger = get_logger(__name__)


class StripePaymentBridge:
    """
    Stripe Checkout for credit packages, and the webhook side that turns a
    completed checkout into an idempotent ledger credit.
    """

    def __init__(self,
                 ledger: CreditLedger,
                 profiles: ProfileRepository,
                 secret_key: str,
                 webhook_secret: str,
                 app_url: str = "http://localhost:3000",
                 currency: str = "usd"):
        self.ledger = ledger
        self.profiles = profiles
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.app_url = app_url.rstrip("/")
        self.currency = currency

    # ---------- CHECKOUT ----------

    async def create_checkout_session(self, user: AuthenticatedUser,
                                      package_id: str) -> CheckoutSession:
        """Create a hosted checkout session for one package of the catalog."""
        package = get_package_by_id(package_id)
        if not package:
            raise ValidationException("Invalid package")
        if not self.secret_key:
            raise ConfigurationException("Stripe is not configured")

        customer_id = self._get_or_create_customer(user)

        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": package.name,
                            "description": f"{package.credits} image generation credits",
                        },
                        "unit_amount": package.price,
                    },
                    "quantity": 1,
                }],
                mode="payment",
                success_url=f"{self.app_url}/credits?success=true",
                cancel_url=f"{self.app_url}/credits?canceled=true",
                metadata={
                    "user_id": user.id,
                    "package_id": package.id,
                    "credits": str(package.credits),
                },
            )
        except stripe.StripeError as e:
            logger.error(f"Checkout session error: {str(e)}")
            raise DatabaseException("Checkout failed")

        logger.info(f"Created checkout session {session['id']} for user {user.id} ({package.id})")
        return CheckoutSession(session_id=session["id"], url=session.get("url"))

    def _get_or_create_customer(self, user: AuthenticatedUser) -> str:
        profile = self.profiles.get_profile(user.id)
        if profile and profile.stripe_customer_id:
            return profile.stripe_customer_id

        try:
            customer = stripe.Customer.create(
                api_key=self.secret_key,
                email=user.email or (profile.email if profile else None),
                metadata={"supabase_user_id": user.id},
            )
        except stripe.StripeError as e:
            logger.error(f"Customer creation error: {str(e)}")
            raise DatabaseException("Checkout failed")

        self.profiles.set_stripe_customer_id(user.id, customer["id"])
        return customer["id"]

    # ---------- WEBHOOK ----------

    def verify_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Check the Stripe-Signature header and parse the event.

        Raises:
            PaymentVerificationException: missing or invalid signature
            ConfigurationException: no webhook secret configured
        """
        if not signature:
            raise PaymentVerificationException("Missing stripe-signature header")
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET not configured")
            raise ConfigurationException("Webhook not configured")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError:
            raise PaymentVerificationException("Invalid payload")
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {str(e)}")
            raise PaymentVerificationException("Invalid signature")

        # Verified; handle the event as plain JSON
        return json.loads(payload)

    async def handle_event(self, event) -> PaymentOutcome:
        """
        Apply a verified event. Safe to call again for a redelivered event:
        the ledger credit is keyed on the payment id.
        """
        event_type = event["type"]
        data = event["data"]["object"]

        if event_type == "checkout.session.completed":
            return await self._handle_checkout_completed(data)

        if event_type == "payment_intent.payment_failed":
            error = data.get("last_payment_error") or {}
            await log_to_database("stripe", "warning",
                                  f"Payment failed: {data.get('id')} {error.get('message', '')}")
            return PaymentOutcome(handled=True, event_type=event_type)

        logger.info(f"Unhandled event type: {event_type}")
        return PaymentOutcome(handled=False, event_type=event_type)

    async def _handle_checkout_completed(self, session) -> PaymentOutcome:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("user_id")
        package_id = metadata.get("package_id")
        try:
            credits = int(metadata.get("credits") or 0)
        except (TypeError, ValueError):
            credits = 0

        if not user_id or credits <= 0:
            await log_to_database("stripe", "error",
                                  f"Missing metadata in checkout session: {session.get('id')}")
            return PaymentOutcome(handled=False, event_type="checkout.session.completed")

        payment_id = session.get("payment_intent") or session.get("id")
        logger.info(f"Processing credit purchase: {credits} credits for user {user_id}")

        result = await self.ledger.credit(
            user_id, credits, TransactionType.PURCHASE,
            external_payment_id=payment_id,
            description=f"Purchased {package_id}: {credits} credits")

        return PaymentOutcome(handled=True, event_type="checkout.session.completed",
                              credited=result.created, balance=result.balance)
