"""
Authentication service: registration, OTP verification, login and password flows.
"""
import asyncio
from datetime import datetime
from functools import lru_cache
from typing import Optional, Tuple, TYPE_CHECKING
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import User, PendingVerification, OtpPurpose
from auth.security import (
    verify_password, get_password_hash, validate_password, create_session_token,
    generate_otp, hash_otp, verify_otp, otp_expiry
)
from core.exceptions import (
    ValidationError, InvalidCredentialError, InvalidOtpError, OtpExpiredError,
    ForbiddenError, NotFoundError, ConflictError
)
from core.validators import normalize_email, is_allowed_registration_email, require_text
from services.email_service import EmailService
from core.logger import logger
import config

if TYPE_CHECKING:
    from fastapi_mail import FastMail

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a password reset code has been sent."

# Names used by clients when asking for a code to be re-sent
RESEND_PURPOSES = {
    "verification": OtpPurpose.VERIFICATION,
    "passwordReset": OtpPurpose.PASSWORD_RESET,
    "passwordChangeConfirmation": OtpPurpose.PASSWORD_CHANGE,
}

MIN_USERNAME_LENGTH = 3


@lru_cache(maxsize=1)
def _dummy_password_hash() -> str:
    """Stand-in hash so an unknown email costs the same bcrypt work as a wrong password."""
    return get_password_hash("lost-and-found-dummy-password")


def _burn_password_check(password: str) -> bool:
    return verify_password(password, _dummy_password_hash())


def _ensure_strong(password: str):
    is_valid, error_message = validate_password(password)
    if not is_valid:
        raise ValidationError(error_message)


class AuthService:
    """Service for authentication operations."""

    @staticmethod
    def get_user_by_email(db: Session, email: str) -> Optional[User]:
        return db.query(User).filter(User.email == normalize_email(email)).first()

    @staticmethod
    def public_user(user: User) -> dict:
        """Public projection of a user; never includes the password hash."""
        return {"id": user.id, "email": user.email, "username": user.username}

    @staticmethod
    def issue_otp(
        db: Session,
        user: User,
        purpose: OtpPurpose,
        staged_password_hash: Optional[str] = None
    ) -> str:
        """
        Create (or replace) the user's single pending code and commit.

        Returns:
            The plaintext code, to be emailed. Only its hash is stored.
        """
        code = generate_otp()
        pending = user.pending_verification
        if pending is None:
            pending = PendingVerification(user=user)
            db.add(pending)
        # Updated in place: user_id is unique, so delete-then-insert would collide on flush
        pending.purpose = purpose
        pending.code_hash = hash_otp(code)
        pending.expires_at = otp_expiry()
        pending.staged_password_hash = staged_password_hash
        pending.created_at = datetime.utcnow()
        db.commit()
        logger.info(f"Issued {purpose.value} code for user {user.id}")
        return code

    @staticmethod
    def consume_otp(
        db: Session,
        email: str,
        otp: str,
        purpose: OtpPurpose
    ) -> Tuple[User, PendingVerification]:
        """
        Check a submitted code against the user's pending code for a purpose.

        The caller finishes the flow and deletes the pending row.

        Raises:
            InvalidOtpError: Unknown user, nothing pending for the purpose, or wrong code
            OtpExpiredError: Code matched but is past expiry; the pending row is removed
        """
        user = AuthService.get_user_by_email(db, email)
        if user is None:
            raise InvalidOtpError()

        pending = db.query(PendingVerification).filter(
            PendingVerification.user_id == user.id,
            PendingVerification.purpose == purpose
        ).first()
        if pending is None or not verify_otp(otp, pending.code_hash):
            raise InvalidOtpError()

        if pending.expires_at < datetime.utcnow():
            db.delete(pending)
            db.commit()
            logger.info(f"Expired {purpose.value} code cleared for user {user.id}")
            raise OtpExpiredError()

        return user, pending

    @staticmethod
    async def register(
        db: Session,
        username: str,
        email: str,
        password: str,
        fm: Optional["FastMail"] = None
    ) -> User:
        """
        Create an unverified account and email a verification code.

        Succeeds even when the email cannot be delivered; the failure is logged.
        """
        username = require_text(username, "Username", max_length=100)
        email = normalize_email(email)
        if not is_allowed_registration_email(email):
            allowed = ", ".join(config.USER_EMAIL_DOMAINS + config.ADMIN_EMAIL_DOMAINS)
            raise ValidationError(f"Registration is only allowed for these email domains: {allowed}")

        if AuthService.get_user_by_email(db, email):
            raise ConflictError("An account with this email already exists")

        _ensure_strong(password)
        hashed_password = await asyncio.to_thread(get_password_hash, password)

        user = User(
            username=username,
            email=email,
            hashed_password=hashed_password,
            is_verified=False,
            password_changed_at=datetime.utcnow(),
        )
        db.add(user)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            raise ConflictError("An account with this email already exists")

        code = AuthService.issue_otp(db, user, OtpPurpose.VERIFICATION)
        logger.info(f"Registered user {user.id} ({email})")

        sent = await EmailService.send_otp_email(email, code, OtpPurpose.VERIFICATION, fm)
        if not sent:
            logger.warning(f"Verification email for user {user.id} was not delivered")
        return user

    @staticmethod
    def verify_email(db: Session, email: str, otp: str) -> User:
        user, pending = AuthService.consume_otp(db, email, otp, OtpPurpose.VERIFICATION)
        user.is_verified = True
        db.delete(pending)
        db.commit()
        logger.info(f"Email verified for user {user.id}")
        return user

    @staticmethod
    async def login(db: Session, email: str, password: str) -> Tuple[str, User]:
        """
        Authenticate and issue a session token.

        Raises:
            InvalidCredentialError: Unknown email or wrong password (same message)
            ForbiddenError: Account not verified yet
        """
        user = AuthService.get_user_by_email(db, email)
        if user is None:
            await asyncio.to_thread(_burn_password_check, password or "")
            raise InvalidCredentialError()

        matches = await asyncio.to_thread(verify_password, password or "", user.hashed_password)
        if not matches:
            logger.warning(f"Failed login for {user.email}")
            raise InvalidCredentialError()

        if not user.is_verified:
            raise ForbiddenError("Please verify your email before logging in")

        user.last_login = datetime.utcnow()
        db.commit()

        token = create_session_token(user.id, user.email)
        logger.info(f"User {user.id} logged in")
        return token, user

    @staticmethod
    async def initiate_password_change(
        db: Session,
        user: User,
        current_password: str,
        new_password: str,
        fm: Optional["FastMail"] = None
    ) -> None:
        """Stage a new password hash behind a confirmation code. The password is unchanged until confirmed."""
        matches = await asyncio.to_thread(verify_password, current_password or "", user.hashed_password)
        if not matches:
            raise InvalidCredentialError("Current password is incorrect")

        if new_password == current_password:
            raise ValidationError("New password must be different from the current password")
        _ensure_strong(new_password)

        staged = await asyncio.to_thread(get_password_hash, new_password)
        code = AuthService.issue_otp(db, user, OtpPurpose.PASSWORD_CHANGE, staged_password_hash=staged)
        await EmailService.send_otp_email(user.email, code, OtpPurpose.PASSWORD_CHANGE, fm)

    @staticmethod
    async def confirm_password_change(
        db: Session,
        email: str,
        otp: str,
        fm: Optional["FastMail"] = None
    ) -> User:
        user, pending = AuthService.consume_otp(db, email, otp, OtpPurpose.PASSWORD_CHANGE)
        if not pending.staged_password_hash:
            db.delete(pending)
            db.commit()
            raise ValidationError("No password change is pending for this account")

        # Swap and clear in one commit
        user.hashed_password = pending.staged_password_hash
        user.password_changed_at = datetime.utcnow()
        db.delete(pending)
        db.commit()
        logger.info(f"Password changed for user {user.id}")

        await EmailService.send_password_changed_email(user.email, fm)
        return user

    @staticmethod
    async def forgot_password(db: Session, email: str, fm: Optional["FastMail"] = None) -> str:
        """
        Start a password reset. Returns the same message whether or not the account exists.
        """
        user = AuthService.get_user_by_email(db, email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return FORGOT_PASSWORD_MESSAGE
        if not user.is_verified:
            logger.info(f"Password reset requested for unverified user {user.id}; no code issued")
            return FORGOT_PASSWORD_MESSAGE

        code = AuthService.issue_otp(db, user, OtpPurpose.PASSWORD_RESET)
        await EmailService.send_otp_email(user.email, code, OtpPurpose.PASSWORD_RESET, fm)
        return FORGOT_PASSWORD_MESSAGE

    @staticmethod
    async def reset_password(
        db: Session,
        email: str,
        otp: str,
        new_password: str,
        fm: Optional["FastMail"] = None
    ) -> User:
        _ensure_strong(new_password)
        user, pending = AuthService.consume_otp(db, email, otp, OtpPurpose.PASSWORD_RESET)

        user.hashed_password = await asyncio.to_thread(get_password_hash, new_password)
        user.password_changed_at = datetime.utcnow()
        db.delete(pending)
        db.commit()
        logger.info(f"Password reset for user {user.id}")

        await EmailService.send_password_changed_email(user.email, fm)
        return user

    @staticmethod
    async def resend_otp(
        db: Session,
        email: str,
        purpose_name: str,
        fm: Optional["FastMail"] = None
    ) -> OtpPurpose:
        """
        Regenerate and re-send a code with a fresh expiry.

        A staged password change is carried over to the new code.

        Raises:
            ValidationError: Unknown purpose, or verification requested for a verified account
            NotFoundError: No such user, or nothing pending for a reset/change
        """
        purpose = RESEND_PURPOSES.get(purpose_name)
        if purpose is None:
            raise ValidationError(
                f"Invalid purpose. Expected one of: {', '.join(RESEND_PURPOSES)}"
            )

        user = AuthService.get_user_by_email(db, email)
        if user is None:
            raise NotFoundError("User not found")

        pending = user.pending_verification
        if purpose == OtpPurpose.VERIFICATION:
            if user.is_verified:
                raise ValidationError("Email is already verified")
            staged = None
        else:
            if pending is None or pending.purpose != purpose:
                raise NotFoundError("No pending request found for this purpose")
            staged = pending.staged_password_hash

        code = AuthService.issue_otp(db, user, purpose, staged_password_hash=staged)
        await EmailService.send_otp_email(user.email, code, purpose, fm)
        return purpose

    @staticmethod
    def change_username(db: Session, user: User, new_username: str) -> User:
        new_username = require_text(new_username, "New username", max_length=100)
        if len(new_username) < MIN_USERNAME_LENGTH:
            raise ValidationError(f"Username must be at least {MIN_USERNAME_LENGTH} characters long")
        if new_username == user.username:
            raise ValidationError("New username must be different from the current one")

        user.username = new_username
        db.commit()
        db.refresh(user)
        logger.info(f"User {user.id} changed username")
        return user
