from fastapi import APIRouter, Depends, Request, status
from models.user import User
from schemas.auth import (
    SignupRequest, LoginRequest, VerifyContactRequest, RequestPasswordResetRequest,
    ResetPasswordRequest, ContactChangeRequest, ChangeContactRequest,
    AuthResponse, CodeSentResponse, MessageResponse, AccountOut
)
from services.account import AccountService
from services.auth import get_account_service, get_current_user, require_verified_contact
from services.contact import mask_contact
from services.security import SecurityUtils
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

PASSWORD_RESET_SENT_MESSAGE = (
    "If an account with a verified contact exists for this email, a reset code has been sent."
)

@router.post("/signup", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def signup(body: SignupRequest, accounts: AccountService = Depends(get_account_service)):
    """Create an account and send a signup code to its contact."""
    result = await accounts.signup(body.email, body.password, body.contact)
    return AuthResponse(
        token=result.token,
        contact_verified=result.contact_verified,
        requires_verification=result.requires_verification,
    )

@router.post("/login", response_model=AuthResponse)
async def login(body: LoginRequest, request: Request,
                accounts: AccountService = Depends(get_account_service)):
    """Issue a session token. Unverified accounts still get one; protected routes gate on verification."""
    result = await accounts.login(
        body.email,
        body.password,
        client_ip=SecurityUtils.get_client_ip(request, request.app.state.config.trusted_proxies),
        user_agent=request.headers.get("user-agent"),
    )
    return AuthResponse(
        token=result.token,
        contact_verified=result.contact_verified,
        requires_verification=result.requires_verification,
    )

@router.post("/send-verification-code", response_model=CodeSentResponse)
async def send_verification_code(current_user: User = Depends(get_current_user),
                                 accounts: AccountService = Depends(get_account_service)):
    masked = await accounts.resend_signup_code(current_user.id)
    return CodeSentResponse(message="Verification code sent.", masked_contact=masked)

@router.post("/verify-contact", response_model=MessageResponse)
async def verify_contact(body: VerifyContactRequest,
                         accounts: AccountService = Depends(get_account_service)):
    result = await accounts.verify_signup_contact(body.contact, body.code)
    return MessageResponse(message=result.message)

@router.post("/request-password-reset", response_model=CodeSentResponse)
async def request_password_reset(body: RequestPasswordResetRequest,
                                 accounts: AccountService = Depends(get_account_service)):
    # Same response whether or not a code went out
    await accounts.request_password_reset(body.email)
    return CodeSentResponse(message=PASSWORD_RESET_SENT_MESSAGE)

@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(body: ResetPasswordRequest,
                         accounts: AccountService = Depends(get_account_service)):
    await accounts.reset_password(body.email, body.code, body.new_password)
    return MessageResponse(message="Password has been reset. You can now log in with your new password.")

@router.post("/request-contact-change", response_model=CodeSentResponse)
async def request_contact_change(body: ContactChangeRequest,
                                 current_user: User = Depends(get_current_user),
                                 accounts: AccountService = Depends(get_account_service)):
    masked = await accounts.request_contact_change(current_user.id, body.new_contact)
    return CodeSentResponse(message="Verification code sent to the new contact.", masked_contact=masked)

@router.post("/change-contact", response_model=MessageResponse)
async def change_contact(body: ChangeContactRequest,
                         current_user: User = Depends(get_current_user),
                         accounts: AccountService = Depends(get_account_service)):
    await accounts.change_contact(current_user.id, body.new_contact, body.code)
    return MessageResponse(message="Contact updated and verified.")

@router.get("/me", response_model=AccountOut)
async def me(current_user: User = Depends(get_current_user),
             accounts: AccountService = Depends(get_account_service)):
    return await accounts.get_account(current_user.id)

@router.get("/contact", response_model=CodeSentResponse)
async def verified_contact(current_user: User = Depends(require_verified_contact)):
    """Masked verified contact, for confirming where reset codes will go."""
    return CodeSentResponse(message="Contact is verified.", masked_contact=mask_contact(current_user.contact))
