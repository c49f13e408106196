"""Registration, verification, login and password flows over HTTP."""
from datetime import datetime, timedelta

import pytest

from auth.security import verify_password
from database.models import User, PendingVerification, OtpPurpose, AuditLog
from services.auth_service import FORGOT_PASSWORD_MESSAGE
from conftest import DEFAULT_PASSWORD


async def register(client, email="new.student@lpu.edu.ph", password="Secret1!", username="newbie"):
    return await client.post(
        "/auth/register",
        json={"username": username, "email": email, "password": password},
    )


def load_user(database, email):
    with database.get_session() as session:
        user = session.query(User).filter(User.email == email).first()
        session.expunge(user)
        return user


def load_pending(database, email):
    with database.get_session() as session:
        user = session.query(User).filter(User.email == email).first()
        pending = session.query(PendingVerification).filter(PendingVerification.user_id == user.id).first()
        if pending is not None:
            session.expunge(pending)
        return pending


def expire_pending(database, email):
    with database.get_session() as session:
        user = session.query(User).filter(User.email == email).first()
        pending = session.query(PendingVerification).filter(PendingVerification.user_id == user.id).first()
        pending.expires_at = datetime.utcnow() - timedelta(minutes=1)


# =============================================================================
# Registration & verification
# =============================================================================

async def test_register_creates_unverified_user_and_emails_code(client, database, mail, otp):
    response = await register(client)
    assert response.status_code == 200
    body = response.json()
    assert body["userId"] > 0

    user = load_user(database, "new.student@lpu.edu.ph")
    assert user.is_verified is False
    assert user.hashed_password != "Secret1!"

    pending = load_pending(database, "new.student@lpu.edu.ph")
    assert pending.purpose == OtpPurpose.VERIFICATION
    assert pending.code_hash != otp.last

    assert len(mail.sent) == 1
    assert otp.last in mail.sent[0].body


async def test_register_normalizes_email_case(client, database):
    response = await register(client, email="Mixed.Case@LPU.edu.ph")
    assert response.status_code == 200
    assert load_user(database, "mixed.case@lpu.edu.ph") is not None


async def test_register_admin_domain_is_allowed(client):
    response = await register(client, email="staff@lpunetwork.edu.ph")
    assert response.status_code == 200


@pytest.mark.parametrize("password", ["Secret1!", "x", ""])
async def test_register_outside_allowed_domains_is_400_regardless_of_password(client, password):
    response = await register(client, email="someone@gmail.com", password=password)
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


async def test_register_duplicate_email_is_conflict(client, student):
    response = await register(client, email=student.email)
    assert response.status_code == 409


async def test_register_weak_password_is_400(client):
    response = await register(client, password="password")
    assert response.status_code == 400
    assert "number" in response.json()["detail"]


async def test_register_succeeds_even_when_email_delivery_fails(client, mail, database):
    mail.fail = True
    response = await register(client)
    assert response.status_code == 200
    assert load_pending(database, "new.student@lpu.edu.ph") is not None


async def test_verify_email_then_login(client, database, otp):
    await register(client)
    code = otp.last

    response = await client.post("/auth/verify-email", json={"email": "new.student@lpu.edu.ph", "otp": code})
    assert response.status_code == 200
    assert load_user(database, "new.student@lpu.edu.ph").is_verified is True
    assert load_pending(database, "new.student@lpu.edu.ph") is None

    response = await client.post("/auth/login", json={"email": "new.student@lpu.edu.ph", "password": "Secret1!"})
    assert response.status_code == 200
    body = response.json()
    assert body["token"]
    assert body["user"] == {"id": body["user"]["id"], "email": "new.student@lpu.edu.ph", "username": "newbie"}
    assert "hashed_password" not in body["user"]


async def test_verify_email_wrong_code(client, otp):
    await register(client)
    response = await client.post("/auth/verify-email", json={"email": "new.student@lpu.edu.ph", "otp": "000000"})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_otp"


async def test_verify_email_unknown_user(client):
    response = await client.post("/auth/verify-email", json={"email": "ghost@lpu.edu.ph", "otp": "123456"})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_otp"


async def test_expired_code_is_rejected_and_cleared(client, database, otp):
    await register(client)
    code = otp.last
    expire_pending(database, "new.student@lpu.edu.ph")

    response = await client.post("/auth/verify-email", json={"email": "new.student@lpu.edu.ph", "otp": code})
    assert response.status_code == 400
    assert response.json()["error"] == "otp_expired"
    assert load_pending(database, "new.student@lpu.edu.ph") is None

    # Same code a second time: nothing left to match
    response = await client.post("/auth/verify-email", json={"email": "new.student@lpu.edu.ph", "otp": code})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_otp"
    assert load_user(database, "new.student@lpu.edu.ph").is_verified is False


# =============================================================================
# Login
# =============================================================================

async def test_login_unverified_is_403_without_token(client, make_account):
    account = make_account("pending@lpu.edu.ph", verified=False)
    response = await client.post("/auth/login", json={"email": account.email, "password": account.password})
    assert response.status_code == 403
    assert "token" not in response.json()


async def test_login_wrong_password_and_unknown_email_look_the_same(client, student, database):
    wrong = await client.post("/auth/login", json={"email": student.email, "password": "Wrong1!!"})
    unknown = await client.post("/auth/login", json={"email": "ghost@lpu.edu.ph", "password": "Wrong1!!"})
    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json()

    with database.get_session() as session:
        assert session.query(AuditLog).filter(AuditLog.action == "login_failed").count() == 2


async def test_login_is_case_insensitive_on_email(client, student):
    response = await client.post("/auth/login", json={"email": student.email.upper(), "password": student.password})
    assert response.status_code == 200


# =============================================================================
# Session guards
# =============================================================================

async def test_me_requires_token(client):
    response = await client.get("/auth/me")
    assert response.status_code == 401
    assert response.json()["error"] == "unauthorized"


async def test_me_rejects_garbage_token(client):
    response = await client.get("/auth/me", headers={"Authorization": "Bearer nonsense"})
    assert response.status_code == 401


async def test_me_returns_public_projection(client, student):
    response = await client.get("/auth/me", headers=student.headers)
    assert response.status_code == 200
    assert response.json()["user"] == {"id": student.id, "email": student.email, "username": student.username}


async def test_user_token_cannot_reach_admin_routes(client, student):
    response = await client.get("/admin/reports", headers=student.headers)
    assert response.status_code == 403
    assert response.json()["error"] == "forbidden"


async def test_admin_token_cannot_submit_user_reports(client, admin):
    response = await client.post(
        "/user/report",
        json={"name": "Pen", "type": "found", "location": "Gym", "contact": "x", "date_reported": "2025-06-01"},
        headers=admin.headers,
    )
    assert response.status_code == 403


# =============================================================================
# Forgot / reset password
# =============================================================================

async def test_forgot_password_is_generic(client, student, make_account, mail):
    make_account("unverified@lpu.edu.ph", verified=False)

    known = await client.post("/auth/forgot-password", json={"email": student.email})
    unknown = await client.post("/auth/forgot-password", json={"email": "ghost@lpu.edu.ph"})
    unverified = await client.post("/auth/forgot-password", json={"email": "unverified@lpu.edu.ph"})

    assert known.status_code == unknown.status_code == unverified.status_code == 200
    assert known.json() == unknown.json() == unverified.json() == {"message": FORGOT_PASSWORD_MESSAGE}
    # Only the verified account actually gets a code
    assert len(mail.sent) == 1


async def test_reset_password_flow(client, student, database, otp, mail):
    await client.post("/auth/request-password-reset", json={"email": student.email})
    code = otp.last

    response = await client.post(
        "/auth/reset-password",
        json={"email": student.email, "otp": code, "newPassword": "Brand9new!"},
    )
    assert response.status_code == 200
    assert verify_password("Brand9new!", load_user(database, student.email).hashed_password)
    assert load_pending(database, student.email) is None
    assert any("Password Was Changed" in s for s in mail.subjects())

    # Code is single use
    response = await client.post(
        "/auth/reset-password",
        json={"email": student.email, "otp": code, "newPassword": "Another9!"},
    )
    assert response.status_code == 400


async def test_reset_password_weak_password_keeps_code(client, student, database, otp):
    await client.post("/auth/forgot-password", json={"email": student.email})
    response = await client.post(
        "/auth/reset-password",
        json={"email": student.email, "otp": otp.last, "newPassword": "weak"},
    )
    assert response.status_code == 400
    assert load_pending(database, student.email) is not None


# =============================================================================
# Change password
# =============================================================================

async def test_change_password_is_staged_until_confirmed(client, student, database, otp):
    response = await client.post(
        "/auth/change-password",
        json={"currentPassword": student.password, "newPassword": "Changed7!"},
        headers=student.headers,
    )
    assert response.status_code == 200

    # Old password still works until the code is confirmed
    assert verify_password(student.password, load_user(database, student.email).hashed_password)
    pending = load_pending(database, student.email)
    assert pending.purpose == OtpPurpose.PASSWORD_CHANGE
    assert pending.staged_password_hash

    response = await client.post(
        "/auth/confirm-password-change",
        json={"email": student.email, "otp": otp.last},
    )
    assert response.status_code == 200
    user = load_user(database, student.email)
    assert verify_password("Changed7!", user.hashed_password)
    assert not verify_password(student.password, user.hashed_password)
    assert load_pending(database, student.email) is None


async def test_change_password_wrong_current(client, student):
    response = await client.post(
        "/auth/change-password",
        json={"currentPassword": "Nope123!", "newPassword": "Changed7!"},
        headers=student.headers,
    )
    assert response.status_code == 401


async def test_change_password_reuse_rejected(client, student):
    response = await client.post(
        "/auth/change-password",
        json={"currentPassword": student.password, "newPassword": student.password},
        headers=student.headers,
    )
    assert response.status_code == 400


async def test_change_password_requires_session(client):
    response = await client.post(
        "/auth/change-password",
        json={"currentPassword": DEFAULT_PASSWORD, "newPassword": "Changed7!"},
    )
    assert response.status_code == 401


# =============================================================================
# Resend OTP
# =============================================================================

async def test_resend_unknown_purpose(client, student):
    response = await client.post("/auth/resend-otp", json={"email": student.email, "purpose": "sms"})
    assert response.status_code == 400


async def test_resend_unknown_user(client):
    response = await client.post("/auth/resend-otp", json={"email": "ghost@lpu.edu.ph", "purpose": "verification"})
    assert response.status_code == 404


async def test_resend_verification_for_verified_user(client, student):
    response = await client.post("/auth/resend-otp", json={"email": student.email, "purpose": "verification"})
    assert response.status_code == 400


async def test_resend_reset_with_nothing_pending(client, student):
    response = await client.post("/auth/resend-otp", json={"email": student.email, "purpose": "passwordReset"})
    assert response.status_code == 404


async def test_resend_verification_replaces_old_code(client, otp):
    await register(client)
    first = otp.last

    response = await client.post("/auth/resend-verification", json={"email": "new.student@lpu.edu.ph"})
    assert response.status_code == 200
    second = otp.last
    assert second != first

    stale = await client.post("/auth/verify-email", json={"email": "new.student@lpu.edu.ph", "otp": first})
    assert stale.status_code == 400
    fresh = await client.post("/auth/verify-email", json={"email": "new.student@lpu.edu.ph", "otp": second})
    assert fresh.status_code == 200


async def test_resend_change_confirmation_keeps_staged_password(client, student, database, otp):
    await client.post(
        "/auth/change-password",
        json={"currentPassword": student.password, "newPassword": "Changed7!"},
        headers=student.headers,
    )
    staged = load_pending(database, student.email).staged_password_hash

    response = await client.post(
        "/auth/resend-otp",
        json={"email": student.email, "purpose": "passwordChangeConfirmation"},
    )
    assert response.status_code == 200
    assert load_pending(database, student.email).staged_password_hash == staged

    response = await client.post("/auth/confirm-password-change", json={"email": student.email, "otp": otp.last})
    assert response.status_code == 200
    assert verify_password("Changed7!", load_user(database, student.email).hashed_password)


# =============================================================================
# Username
# =============================================================================

async def test_change_username(client, student):
    response = await client.post("/auth/change-username", json={"newUsername": "  juanito  "}, headers=student.headers)
    assert response.status_code == 200
    assert response.json()["user"]["username"] == "juanito"

    me = await client.get("/auth/me", headers=student.headers)
    assert me.json()["user"]["username"] == "juanito"


@pytest.mark.parametrize("new_username", ["", "ab", "juan"])
async def test_change_username_rejects_bad_values(client, student, new_username):
    response = await client.post("/auth/change-username", json={"newUsername": new_username}, headers=student.headers)
    assert response.status_code == 400


# =============================================================================
# Request validation and enumeration resistance
# =============================================================================

async def test_register_malformed_email_is_400(client):
    response = await register(client, email="not-an-email")
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["detail"].startswith("email:")


async def test_login_missing_password_is_400(client, student):
    response = await client.post("/auth/login", json={"email": student.email})
    assert response.status_code == 400
    assert response.json() == {"detail": "password: Field required", "error": "validation_error"}


async def test_login_unknown_email_still_runs_password_check(client, monkeypatch):
    import services.auth_service as auth_service

    checked = []
    real_verify = auth_service.verify_password

    def recording_verify(password, hashed):
        checked.append(password)
        return real_verify(password, hashed)

    monkeypatch.setattr(auth_service, "verify_password", recording_verify)

    response = await client.post("/auth/login", json={"email": "ghost@lpu.edu.ph", "password": "Wrong1!!"})
    assert response.status_code == 401
    assert checked == ["Wrong1!!"]
