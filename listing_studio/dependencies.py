"""
Explicit construction of every collaborator, and the FastAPI dependencies
that hand them to routes.
"""
from dataclasses import dataclass
from typing import Optional
from fastapi import Header, Request
from listing_studio.config import Settings, get_settings
from listing_studio.database.repositories import (AuthProvider, ProfileRepository,
                                                  SystemLogRepository)
from listing_studio.models.user import AuthenticatedUser
from listing_studio.services.credit_ledger import CreditLedger
from listing_studio.services.gemini_client import DesignAdapter, GeminiDesignAdapter
from listing_studio.services.generation_pipeline import GenerationPipeline
from listing_studio.services.payment_bridge import StripePaymentBridge
from listing_studio.utils.exceptions import UnauthenticatedException
from listing_studio.utils.logger import get_logger, set_log_sink

logger = get_logger(__name__)


@dataclass
class Services:
    pipeline: GenerationPipeline
    ledger: CreditLedger
    payments: StripePaymentBridge
    profiles: ProfileRepository
    auth: AuthProvider
    system_logs: SystemLogRepository


def build_adapter(settings: Settings) -> GeminiDesignAdapter:
    return GeminiDesignAdapter(
        api_key=settings.gemini_api_key,
        api_url=settings.gemini_api_url,
        vision_model=settings.gemini_vision_model,
        text_model=settings.gemini_text_model,
        image_model=settings.gemini_image_model,
        timeout=max(settings.analysis_timeout_seconds, settings.image_timeout_seconds),
        allow_placeholder=settings.gemini_placeholder_mode or settings.data_backend == "memory")


def assemble_services(settings: Settings, generations, storage, ledger_repository, profiles,
                      auth, system_logs, adapter: Optional[DesignAdapter] = None) -> Services:
    """Wire repositories and clients into the pipeline, ledger and payment bridge."""
    ledger = CreditLedger(ledger_repository)
    pipeline = GenerationPipeline(
        generations=generations,
        storage=storage,
        ledger=ledger,
        adapter=adapter or build_adapter(settings),
        analysis_timeout=settings.analysis_timeout_seconds,
        prompts_timeout=settings.prompts_timeout_seconds,
        image_timeout=settings.image_timeout_seconds,
        signed_url_expiry=settings.signed_url_expiry_seconds)
    payments = StripePaymentBridge(
        ledger=ledger,
        profiles=profiles,
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        app_url=settings.app_url,
        currency=settings.stripe_currency)
    return Services(pipeline=pipeline, ledger=ledger, payments=payments, profiles=profiles,
                    auth=auth, system_logs=system_logs)


def build_supabase_services(settings: Settings) -> Services:
    from listing_studio.database.supabase_client import (get_supabase_client,
                                                         get_supabase_admin_client)
    from listing_studio.database import supabase_store

    admin = get_supabase_admin_client()
    return assemble_services(
        settings,
        generations=supabase_store.SupabaseGenerationRepository(admin),
        storage=supabase_store.SupabaseImageStorage(admin, settings.storage_bucket),
        ledger_repository=supabase_store.SupabaseLedgerRepository(admin),
        profiles=supabase_store.SupabaseProfileRepository(admin),
        auth=supabase_store.SupabaseAuthProvider(get_supabase_client()),
        system_logs=supabase_store.SupabaseSystemLogRepository(admin))


def build_memory_services(settings: Settings, db=None,
                          adapter: Optional[DesignAdapter] = None) -> Services:
    from listing_studio.database import memory

    db = db or memory.InMemoryDatabase()
    return assemble_services(
        settings,
        generations=memory.InMemoryGenerationRepository(db),
        storage=memory.InMemoryImageStorage(db),
        ledger_repository=memory.InMemoryLedgerRepository(db),
        profiles=memory.InMemoryProfileRepository(db),
        auth=memory.InMemoryAuthProvider(db),
        system_logs=memory.InMemorySystemLogRepository(db),
        adapter=adapter)


def build_services(settings: Settings) -> Services:
    """Build the backend selected by DATA_BACKEND."""
    if settings.data_backend == "memory":
        logger.warning("Using in-memory data backend; data is lost on restart")
        return build_memory_services(settings)
    return build_supabase_services(settings)


# ==============================================================
# FastAPI dependencies
# ==============================================================
def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services(get_settings())
        request.app.state.services = services
        set_log_sink(services.system_logs.insert_log)
    return services


def get_current_user(request: Request,
                     authorization: Optional[str] = Header(None)) -> AuthenticatedUser:
    """Resolve 'Authorization: Bearer <token>' to the calling user."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise UnauthenticatedException()
    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise UnauthenticatedException()

    user = get_services(request).auth.get_user(token)
    if user is None:
        raise UnauthenticatedException()
    return user
