"""User endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db import get_db
from app.models.api_key import ApiScope
from app.models.user import User
from app.schemas.user import StripeAccountLinkRead, UserCreate, UserRead
from app.security import get_current_user, require_admin, require_scope
from app.services.gateway import AccountLinkInfo, PaymentGateway, get_payment_gateway
from app.services.onboarding import start_payout_onboarding
from app.utils.audit import actor_for_user, log_audit
from app.utils.errors import error_response

router = APIRouter(prefix="/users", tags=["users"])


@router.post(
    "",
    response_model=UserRead,
    status_code=status.HTTP_201_CREATED,
)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> User:
    """Create a new user."""

    user = User(**payload.model_dump())
    db.add(user)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_response("USER_CREATE_FAILED", "Could not create user."),
        ) from exc

    log_audit(
        db,
        actor=actor_for_user(admin),
        action="CREATE_USER",
        entity="User",
        entity_id=user.id,
        data={"name": user.name, "email": user.email, "role": user.role},
    )

    db.commit()
    db.refresh(user)
    return user


@router.get(
    "/{user_id}",
    response_model=UserRead,
)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> User:
    """Retrieve a user by identifier."""

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_response("USER_NOT_FOUND", "User not found."))
    return user


def _link_response(user: User, link: AccountLinkInfo) -> StripeAccountLinkRead:
    return StripeAccountLinkRead(
        url=link.url,
        expires_at=link.expires_at,
        stripe_account_id=user.stripe_account_id,
        stripe_onboarding_complete=user.stripe_onboarding_complete,
    )


@router.post(
    "/me/stripe/onboarding",
    response_model=StripeAccountLinkRead,
    dependencies=[Depends(require_scope({ApiScope.handyman}))],
)
def start_own_onboarding(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> StripeAccountLinkRead:
    """Onboarding link for the calling handyman's payout account."""

    link = start_payout_onboarding(db, gateway, user=user, actor=actor_for_user(user))
    return _link_response(user, link)


@router.post(
    "/{user_id}/stripe/account-link",
    response_model=StripeAccountLinkRead,
    status_code=status.HTTP_201_CREATED,
)
def create_stripe_account_link_for_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    gateway: PaymentGateway = Depends(get_payment_gateway),
) -> StripeAccountLinkRead:
    """Create a Stripe Connect onboarding link for the given handyman."""

    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_response("USER_NOT_FOUND", "User not found."))
    link = start_payout_onboarding(db, gateway, user=user, actor=actor_for_user(admin))
    return _link_response(user, link)
