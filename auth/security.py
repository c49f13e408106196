"""
Security utilities for authentication and authorization.
Includes password hashing, one-time codes and JWT session tokens.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Tuple
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi.security import HTTPBearer
import bcrypt
import secrets
import hashlib

from core.logger import logger
from core.validators import is_admin_email, is_user_email, normalize_email
import config

# Password hashing
# Configure to avoid wrap bug detection issues
pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__ident="2b",  # Use bcrypt 2b identifier
    bcrypt__rounds=12  # Standard rounds
)

# Security schemes. auto_error is off so a missing header becomes our 401, not FastAPI's.
security = HTTPBearer(auto_error=False)

SPECIAL_CHARS = "!@#$%^&*()_+-=[]{}|;:,.<>?"


# Password utilities
def validate_password(password: str) -> Tuple[bool, Optional[str]]:
    """
    Validate password strength.

    Requirements:
    - Minimum 6 characters
    - At least 1 number
    - At least 1 special character
    - Maximum 72 bytes (bcrypt limit)

    Args:
        password: Password to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not password:
        return False, "Password is required"

    if len(password) < 6:
        return False, "Password must be at least 6 characters long"

    if len(password.encode('utf-8')) > 72:
        return False, "Password cannot be longer than 72 bytes. Please use a shorter password."

    if not any(char.isdigit() for char in password):
        return False, "Password must contain at least one number"

    if not any(char in SPECIAL_CHARS for char in password):
        return False, f"Password must contain at least one special character ({SPECIAL_CHARS})"

    return True, None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against a hash."""
    try:
        # Try direct bcrypt first
        return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))
    except ValueError:
        # Fallback to passlib for hashes bcrypt cannot parse directly
        try:
            return pwd_context.verify(plain_password, hashed_password)
        except ValueError:
            return False


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Note: Password validation should be done before calling this function.
    Use validate_password() to check password requirements.
    """
    password_bytes = password.encode('utf-8')
    if len(password_bytes) > 72:
        raise ValueError("Password cannot be longer than 72 bytes. Please use a shorter password.")

    # Use bcrypt directly to avoid passlib initialization issues
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(password_bytes, salt).decode('utf-8')


# One-time codes
def generate_otp(length: Optional[int] = None) -> str:
    """Generate a numeric one-time code."""
    length = length or config.OTP_LENGTH
    return "".join(secrets.choice("0123456789") for _ in range(length))


def hash_otp(code: str) -> str:
    """
    Hash a one-time code for storage/comparison.

    OTPs are short-lived, so an unsalted SHA-256 is enough to keep them out of the
    table in plaintext.
    """
    return hashlib.sha256(code.strip().encode()).hexdigest()


def verify_otp(provided_code: str, stored_hash: str) -> bool:
    """
    Verify a one-time code against stored hash.

    Args:
        provided_code: Code submitted by the user
        stored_hash: Stored hash to compare against

    Returns:
        True if code matches
    """
    if not provided_code or not stored_hash:
        return False
    return secrets.compare_digest(hash_otp(provided_code), stored_hash)


def otp_expiry() -> datetime:
    return datetime.utcnow() + timedelta(minutes=config.OTP_EXPIRY_MINUTES)


# JWT Token utilities
def create_access_token(
    data: Dict[str, Any],
    secret_key: str,
    expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token.

    Tokens carry no "exp" claim unless an expiry is given or
    ACCESS_TOKEN_EXPIRE_MINUTES is positive.

    Args:
        data: Data to encode in token
        secret_key: Secret key for signing
        expires_delta: Optional expiration time

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()
    if expires_delta is None and config.ACCESS_TOKEN_EXPIRE_MINUTES > 0:
        expires_delta = timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    if expires_delta is not None:
        to_encode["exp"] = datetime.utcnow() + expires_delta

    to_encode.update({
        "iat": datetime.utcnow(),
        "type": "access"
    })
    return jwt.encode(to_encode, secret_key, algorithm=config.ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a JWT access token.

    Args:
        token: JWT token string
        secret_key: Secret key for verification

    Returns:
        Decoded token data or None if invalid
    """
    try:
        payload = jwt.decode(token, secret_key, algorithms=[config.ALGORITHM])
        if payload.get("type") != "access":
            return None
        return payload
    except JWTError:
        return None


@dataclass(frozen=True)
class SessionIdentity:
    """Identity decoded from a session token. Role follows the email domain."""
    user_id: int
    email: str

    @property
    def is_admin(self) -> bool:
        return is_admin_email(self.email)

    @property
    def is_user(self) -> bool:
        return is_user_email(self.email)


def create_session_token(user_id: int, email: str) -> str:
    return create_access_token(
        {"sub": str(user_id), "email": normalize_email(email)},
        config.SECRET_KEY
    )


def identity_from_token(token: Optional[str]) -> Optional[SessionIdentity]:
    """
    Decode a session token into an identity.

    Returns:
        SessionIdentity, or None if the token is missing, malformed or badly signed
    """
    if not token:
        return None
    payload = decode_access_token(token, config.SECRET_KEY)
    if payload is None:
        return None

    sub = payload.get("sub")
    email = payload.get("email")
    if not sub or not email:
        return None
    try:
        user_id = int(sub)
    except (TypeError, ValueError):
        logger.warning(f"Session token with non-numeric subject rejected: {sub!r}")
        return None
    return SessionIdentity(user_id=user_id, email=normalize_email(email))
