from fastapi import APIRouter, Depends
from listing_studio.dependencies import Services, get_services, get_current_user
from listing_studio.models.credit import CREDIT_PACKAGES
from listing_studio.models.user import AuthenticatedUser
from listing_studio.utils.responses import SuccessResponse, success_response

router = APIRouter(prefix="/credits", tags=["credits"])


@router.get("")
async def get_credits(user: AuthenticatedUser = Depends(get_current_user),
                      services: Services = Depends(get_services)):
    """Current balance and the packages available for purchase."""
    return {
        "success": True,
        "credits": services.ledger.balance(user.id),
        "packages": [package.model_dump() for package in CREDIT_PACKAGES]
    }


@router.get("/transactions", response_model=SuccessResponse)
async def get_transactions(limit: int = 50,
                           user: AuthenticatedUser = Depends(get_current_user),
                           services: Services = Depends(get_services)):
    """Credit transactions, newest first."""
    transactions = services.ledger.transactions(user.id, limit=min(max(limit, 1), 200))
    return success_response(f"{len(transactions)} transaction(s)",
                            [tx.model_dump(mode="json") for tx in transactions])
