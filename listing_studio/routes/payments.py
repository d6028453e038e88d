from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from listing_studio.dependencies import Services, get_services, get_current_user
from listing_studio.models.credit import CheckoutRequest
from listing_studio.models.user import AuthenticatedUser
from listing_studio.utils.logger import get_logger, log_to_database
from listing_studio.utils.responses import error_response

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/checkout")
async def create_checkout(body: CheckoutRequest,
                          user: AuthenticatedUser = Depends(get_current_user),
                          services: Services = Depends(get_services)):
    """Start a Stripe Checkout session for a credit package."""
    session = await services.payments.create_checkout_session(user, body.package_id)
    return {"success": True, "sessionId": session.session_id, "url": session.url}


@router.post("/webhook")
async def stripe_webhook(request: Request, services: Services = Depends(get_services)):
    """
    Receive Stripe events. Signature failures are 400; processing failures
    are 500 so Stripe redelivers, which is safe because credits are keyed on
    the payment id.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    event = services.payments.verify_event(payload, signature)

    try:
        await services.payments.handle_event(event)
    except HTTPException as e:
        await log_to_database("stripe", "error", f"Error processing webhook: {e.detail}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_response("Webhook processing failed"))
    except Exception as e:
        await log_to_database("stripe", "error", f"Error processing webhook: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_response("Webhook processing failed"))

    return {"received": True}
