"""
Authentication endpoints: registration, email verification, login and password flows.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from database.models import User
from auth.dependencies import get_db_session, get_current_user, get_mail
from services.auth_service import AuthService
from services.audit_service import AuditService
from core.exceptions import InvalidCredentialError


router = APIRouter(prefix="/auth", tags=["authentication"])


# Request Models
class RegisterRequest(BaseModel):
    username: str
    email: EmailStr
    password: str


class VerifyEmailRequest(BaseModel):
    email: EmailStr
    otp: str


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Reset a forgotten password with the emailed code."""
    model_config = ConfigDict(populate_by_name=True)

    email: EmailStr
    otp: str
    new_password: str = Field(alias="newPassword")


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(alias="newPassword")


class ConfirmPasswordChangeRequest(BaseModel):
    email: EmailStr
    otp: str


class ResendOtpRequest(BaseModel):
    """purpose: verification | passwordReset | passwordChangeConfirmation"""
    email: EmailStr
    purpose: str


class ChangeUsernameRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    new_username: str = Field(alias="newUsername")


@router.post("/register")
async def register(
    body: RegisterRequest,
    request: Request,
    db: Session = Depends(get_db_session),
    fm=Depends(get_mail)
):
    """
    Create an account and email a verification code.
    The email must belong to one of the configured campus domains.
    """
    user = await AuthService.register(db, body.username, body.email, body.password, fm)
    AuditService.log_from_request(
        db=db,
        request=request,
        action="user_register",
        user_id=user.id,
        resource_type="user",
        resource_id=user.id
    )
    return {
        "message": "Registration successful. Please check your email for the verification code.",
        "userId": user.id
    }


@router.post("/verify-email")
async def verify_email(body: VerifyEmailRequest, db: Session = Depends(get_db_session)):
    AuthService.verify_email(db, body.email, body.otp)
    return {"message": "Email verified successfully. You can now log in."}


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    db: Session = Depends(get_db_session)
):
    """
    Login with email + password.
    Returns a session token and the public user projection.
    """
    try:
        token, user = await AuthService.login(db, body.email, body.password)
    except InvalidCredentialError:
        AuditService.log_from_request(
            db=db,
            request=request,
            action="login_failed",
            resource_type="user",
            details={"email": body.email.lower()}
        )
        raise

    AuditService.log_from_request(
        db=db,
        request=request,
        action="user_login",
        user_id=user.id,
        resource_type="user",
        resource_id=user.id
    )
    return {"token": token, "user": AuthService.public_user(user)}


@router.post("/forgot-password")
@router.post("/request-password-reset")
async def forgot_password(
    body: EmailRequest,
    db: Session = Depends(get_db_session),
    fm=Depends(get_mail)
):
    message = await AuthService.forgot_password(db, body.email, fm)
    return {"message": message}


@router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    request: Request,
    db: Session = Depends(get_db_session),
    fm=Depends(get_mail)
):
    user = await AuthService.reset_password(db, body.email, body.otp, body.new_password, fm)
    AuditService.log_from_request(
        db=db,
        request=request,
        action="password_reset",
        user_id=user.id,
        resource_type="user",
        resource_id=user.id
    )
    return {"message": "Password has been reset successfully. You can now log in."}


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
    fm=Depends(get_mail)
):
    """Start a password change. The new password takes effect once the emailed code is confirmed."""
    await AuthService.initiate_password_change(
        db, current_user, body.current_password, body.new_password, fm
    )
    return {"message": "A confirmation code has been sent to your email."}


@router.post("/confirm-password-change")
async def confirm_password_change(
    body: ConfirmPasswordChangeRequest,
    request: Request,
    db: Session = Depends(get_db_session),
    fm=Depends(get_mail)
):
    user = await AuthService.confirm_password_change(db, body.email, body.otp, fm)
    AuditService.log_from_request(
        db=db,
        request=request,
        action="password_change",
        user_id=user.id,
        resource_type="user",
        resource_id=user.id
    )
    return {"message": "Password changed successfully."}


@router.post("/resend-otp")
async def resend_otp(
    body: ResendOtpRequest,
    db: Session = Depends(get_db_session),
    fm=Depends(get_mail)
):
    await AuthService.resend_otp(db, body.email, body.purpose, fm)
    return {"message": "A new code has been sent to your email."}


@router.post("/resend-verification")
async def resend_verification(
    body: EmailRequest,
    db: Session = Depends(get_db_session),
    fm=Depends(get_mail)
):
    """Shorthand for resend-otp with purpose=verification."""
    await AuthService.resend_otp(db, body.email, "verification", fm)
    return {"message": "A new verification code has been sent to your email."}


@router.post("/change-username")
async def change_username(
    body: ChangeUsernameRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session)
):
    user = AuthService.change_username(db, current_user, body.new_username)
    return {"message": "Username updated successfully.", "user": AuthService.public_user(user)}


@router.get("/me")
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Get the public profile of the session user."""
    return {"user": AuthService.public_user(current_user)}
