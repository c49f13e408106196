"""
Email service for sending OTPs and account notices.
Uses fastapi-mail; every send is bounded by EMAIL_SEND_TIMEOUT_SECONDS and
never raises, so account state is not coupled to the mail provider.
"""
import asyncio
from typing import Optional, TYPE_CHECKING

from database.models import OtpPurpose
from core.logger import logger
import config

if TYPE_CHECKING:
    from fastapi_mail import FastMail


_OTP_SUBJECTS = {
    OtpPurpose.VERIFICATION: "Verify your LPU Lost & Found Account",
    OtpPurpose.PASSWORD_RESET: "LPU Lost & Found - Password Reset Request",
    OtpPurpose.PASSWORD_CHANGE: "LPU Lost & Found - Confirm Your Password Change",
}

_OTP_INTROS = {
    OtpPurpose.VERIFICATION: "Welcome to LPU Lost & Found! Use the code below to verify your email address and activate your account.",
    OtpPurpose.PASSWORD_RESET: "You (or someone else) requested a password reset for your LPU Lost & Found account.",
    OtpPurpose.PASSWORD_CHANGE: "A password change was requested for your LPU Lost & Found account. Enter the code below to confirm it.",
}


def build_mail_client() -> Optional["FastMail"]:
    """
    Build the FastMail client from SMTP settings.

    Returns:
        FastMail instance, or None when SMTP credentials are not configured
    """
    if not config.SMTP_USER or not config.SMTP_PASSWORD:
        logger.warning("SMTP credentials not configured; outgoing email is disabled")
        return None

    from fastapi_mail import FastMail, ConnectionConfig

    conf = ConnectionConfig(
        MAIL_USERNAME=config.SMTP_USER,
        MAIL_PASSWORD=config.SMTP_PASSWORD,
        MAIL_FROM=config.SMTP_FROM_EMAIL or config.SMTP_USER,
        MAIL_FROM_NAME=config.SMTP_FROM_NAME,
        MAIL_PORT=config.SMTP_PORT,
        MAIL_SERVER=config.SMTP_HOST,
        MAIL_STARTTLS=config.SMTP_USE_TLS,
        MAIL_SSL_TLS=config.SMTP_USE_SSL,
        USE_CREDENTIALS=True,
        VALIDATE_CERTS=True,
    )
    return FastMail(conf)


class EmailService:
    """Service for sending emails via fastapi-mail."""

    @staticmethod
    async def send_html(to_email: str, subject: str, html_body: str, fm: Optional["FastMail"]) -> bool:
        """
        Send an HTML email.

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_body: HTML body
            fm: FastMail instance (from request.app.state.mail), may be None

        Returns:
            True if sent successfully, False otherwise
        """
        if fm is None:
            logger.warning(f"Email to {to_email} not sent: mail client not configured")
            return False

        from fastapi_mail import MessageSchema, MessageType

        message = MessageSchema(
            subject=subject,
            recipients=[to_email],
            body=html_body,
            subtype=MessageType.html,
        )
        try:
            await asyncio.wait_for(fm.send_message(message), timeout=config.EMAIL_SEND_TIMEOUT_SECONDS)
            logger.info(f"Email '{subject}' sent to {to_email}")
            return True
        except asyncio.TimeoutError:
            logger.error(f"Timed out sending email '{subject}' to {to_email}")
            return False
        except Exception as e:
            logger.error(f"Failed to send email '{subject}' to {to_email}: {e}", exc_info=True)
            return False

    @staticmethod
    async def send_otp_email(to_email: str, otp: str, purpose: OtpPurpose, fm: Optional["FastMail"]) -> bool:
        """Send a one-time code for the given purpose."""
        html_body = f"""
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                <h2 style="color: #8b0000;">LPU Lost &amp; Found</h2>
                <p>{_OTP_INTROS[purpose]}</p>
                <div style="background-color: #f4f4f4; padding: 20px; text-align: center; margin: 20px 0; border-radius: 5px;">
                    <h1 style="color: #8b0000; font-size: 32px; margin: 0; letter-spacing: 5px;">{otp}</h1>
                </div>
                <p>This code will expire in {config.OTP_EXPIRY_MINUTES} minutes.</p>
                <p style="color: #666; font-size: 12px;">If you didn't request this code, please ignore this email.</p>
            </div>
        </body>
        </html>
        """
        return await EmailService.send_html(to_email, _OTP_SUBJECTS[purpose], html_body, fm)

    @staticmethod
    async def send_password_changed_email(to_email: str, fm: Optional["FastMail"]) -> bool:
        """Tell the account holder their password was changed."""
        html_body = """
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                <h2 style="color: #8b0000;">Your password was changed</h2>
                <p>The password for your LPU Lost &amp; Found account was just changed.</p>
                <p>If you did not make this change, reset your password immediately or contact the Lost &amp; Found office.</p>
            </div>
        </body>
        </html>
        """
        return await EmailService.send_html(
            to_email, "LPU Lost & Found - Your Password Was Changed", html_body, fm
        )
