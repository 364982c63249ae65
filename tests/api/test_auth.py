"""
API Tests for Signup, Email Verification and Login
"""
from datetime import timedelta

import pytest
from faker import Faker
from httpx import AsyncClient
from sqlmodel import select

from core.database import utcnow
from core.security import decode_token
from models.models import EmailVerification, SubscriptionType, User, UserRole

fake = Faker()


def signup_payload(**overrides) -> dict:
    payload = {
        "name": fake.name(),
        "email": f"{fake.unique.user_name()}@university.edu".lower(),
        "password": "securePassword123!",
        "account_type": "SUPERVISOR",
    }
    payload.update(overrides)
    return payload


class TestSignup:
    """Account creation"""

    @pytest.mark.asyncio
    async def test_supervisor_starts_free_trial(self, client: AsyncClient, session, settings, mailer):
        payload = signup_payload()
        response = await client.post("/auth/signup", json=payload)

        assert response.status_code == 201
        data = response.json()
        assert data["user"]["email"] == payload["email"]
        assert data["user"]["subscription_type"] == "FREE_TRIAL"
        assert "password" not in data["user"]
        assert "password_hash" not in data["user"]

        user = session.exec(select(User).where(User.email == payload["email"])).one()
        assert user.subscription_expires_at - user.subscription_started_at == timedelta(days=settings.FREE_TRIAL_DAYS)
        assert user.email_verified_at is None

        verification = session.exec(select(EmailVerification).where(EmailVerification.user_id == user.id)).one()
        assert verification.expires_at - verification.created_at == timedelta(
            hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS
        )

        mailer.send.assert_called_once()
        to, subject, body = mailer.send.call_args.args
        assert to == payload["email"]
        assert verification.token in body

    @pytest.mark.asyncio
    async def test_student_requests_sponsorship(self, client: AsyncClient, session, supervisor, mailer):
        payload = signup_payload(account_type="STUDENT", sponsor_email=supervisor.email.upper())
        response = await client.post("/auth/signup", json=payload)

        assert response.status_code == 201
        assert response.json()["user"]["subscription_type"] == "SPONSORED"

        user = session.exec(select(User).where(User.email == payload["email"])).one()
        assert user.is_awaiting_sponsorship
        assert user.supervisor_id == supervisor.id

        recipients = [c.args[0] for c in mailer.send.call_args_list]
        assert recipients == [supervisor.email, payload["email"]]

    @pytest.mark.asyncio
    async def test_member_signup_requires_sponsor_email(self, client: AsyncClient):
        response = await client.post("/auth/signup", json=signup_payload(account_type="COLLABORATOR"))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_supervisor(self, client: AsyncClient, make_user):
        student = make_user(role=UserRole.STUDENT)
        response = await client.post(
            "/auth/signup",
            json=signup_payload(account_type="STUDENT", sponsor_email=student.email),
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_admin_account_type_rejected(self, client: AsyncClient):
        response = await client.post("/auth/signup", json=signup_payload(account_type="ADMIN"))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, client: AsyncClient):
        response = await client.post("/auth/signup", json=signup_payload(name="   "))
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_duplicate_email(self, client: AsyncClient, supervisor):
        response = await client.post("/auth/signup", json=signup_payload(email=supervisor.email))
        assert response.status_code == 409
        assert "already exists" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_invalid_payload(self, client: AsyncClient):
        response = await client.post("/auth/signup", json=signup_payload(email="not-an-email", password="short"))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_placeholder_keeps_sponsorship(self, client: AsyncClient, session, make_user, supervisor, mailer):
        placeholder = make_user(
            role=UserRole.STUDENT,
            subscription_type=SubscriptionType.SPONSORED,
            password=None,
            verified=False,
            sponsor_id=supervisor.id,
            supervisor_id=supervisor.id,
        )
        payload = signup_payload(email=placeholder.email, account_type="STUDENT", sponsor_email=supervisor.email)

        response = await client.post("/auth/signup", json=payload)

        assert response.status_code == 201
        session.refresh(placeholder)
        assert placeholder.password_hash is not None
        assert placeholder.sponsor_id == supervisor.id
        assert placeholder.subscription_type == SubscriptionType.SPONSORED
        # No sponsorship request for an account that is already sponsored
        assert [c.args[0] for c in mailer.send.call_args_list] == [placeholder.email]

    @pytest.mark.asyncio
    async def test_placeholder_claimed_as_supervisor_drops_links(self, client: AsyncClient, session, make_user,
                                                                 supervisor):
        placeholder = make_user(
            role=UserRole.STUDENT,
            subscription_type=SubscriptionType.SPONSORED,
            password=None,
            verified=False,
            sponsor_id=supervisor.id,
            supervisor_id=supervisor.id,
            sponsor_subscription_inactive=True,
        )

        response = await client.post("/auth/signup", json=signup_payload(email=placeholder.email))

        assert response.status_code == 201
        session.refresh(placeholder)
        assert placeholder.role == UserRole.SUPERVISOR
        assert placeholder.subscription_type == SubscriptionType.FREE_TRIAL
        assert placeholder.sponsor_id is None
        assert placeholder.supervisor_id is None
        assert placeholder.sponsor_subscription_inactive is False


class TestVerifyEmail:
    @pytest.mark.asyncio
    async def test_verify_then_login(self, client: AsyncClient, session):
        payload = signup_payload()
        await client.post("/auth/signup", json=payload)
        token = session.exec(select(EmailVerification)).one().token

        response = await client.post("/auth/verify-email", json={"token": token})
        assert response.status_code == 200

        session.expire_all()
        assert session.exec(select(EmailVerification)).first() is None

        login = await client.post("/auth/login", json={"email": payload["email"], "password": payload["password"]})
        assert login.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_token(self, client: AsyncClient):
        response = await client.post("/auth/verify-email", json={"token": "nope"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid verification link"

    @pytest.mark.asyncio
    async def test_expired_token_is_removed(self, client: AsyncClient, session, make_user):
        user = make_user(verified=False)
        session.add(EmailVerification(user_id=user.id, token="old-token", expires_at=utcnow() - timedelta(minutes=1)))
        session.commit()

        response = await client.post("/auth/verify-email", json={"token": "old-token"})

        assert response.status_code == 400
        assert "expired" in response.json()["detail"]
        session.expire_all()
        assert session.exec(select(EmailVerification)).first() is None
        assert session.get(User, user.id).email_verified_at is None


class TestLogin:
    """Login responses mirror the authentication gate"""

    @pytest.mark.asyncio
    async def test_login_returns_token_and_claims(self, client: AsyncClient, settings, supervisor, test_password):
        response = await client.post("/auth/login", json={"email": supervisor.email, "password": test_password})

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["user"]["id"] == supervisor.id
        assert data["claims"]["subscription_type"] == "SUBSCRIBED"
        assert data["claims"]["sponsor_subscription_inactive"] is False

        claims = decode_token(data["access_token"], settings)
        assert claims["user_id"] == supervisor.id
        assert claims["role"] == "SUPERVISOR"

    @pytest.mark.asyncio
    async def test_unknown_user(self, client: AsyncClient):
        response = await client.post("/auth/login", json={"email": "ghost@university.edu", "password": "x"})
        assert response.status_code == 404
        assert response.json()["detail"] == "No user found"

    @pytest.mark.asyncio
    async def test_wrong_password(self, client: AsyncClient, supervisor):
        response = await client.post("/auth/login", json={"email": supervisor.email, "password": "wrong"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid password"

    @pytest.mark.asyncio
    async def test_unverified_sends_new_link(self, client: AsyncClient, make_user, mailer, test_password):
        user = make_user(verified=False)
        response = await client.post("/auth/login", json={"email": user.email, "password": test_password})

        assert response.status_code == 403
        assert response.json()["detail"] == "Email not verified"
        mailer.send.assert_called_once()

    @pytest.mark.asyncio
    async def test_expired_trial(self, client: AsyncClient, make_user, test_password):
        user = make_user(
            subscription_type=SubscriptionType.FREE_TRIAL,
            subscription_expires_at=utcnow() - timedelta(hours=1),
        )
        response = await client.post("/auth/login", json={"email": user.email, "password": test_password})
        assert response.status_code == 403
        assert response.json()["detail"] == "Your free trial has ended"

    @pytest.mark.asyncio
    async def test_cancelled_supervisor(self, client: AsyncClient, make_user, test_password):
        user = make_user(subscription_type=SubscriptionType.CANCELLED)
        response = await client.post("/auth/login", json={"email": user.email, "password": test_password})
        assert response.status_code == 403
        assert response.json()["detail"] == "Subscription cancelled"


class TestCurrentUser:
    @pytest.mark.asyncio
    async def test_me(self, client: AsyncClient, supervisor, auth_headers):
        response = await client.get("/auth/me", headers=auth_headers(supervisor))
        assert response.status_code == 200
        assert response.json()["email"] == supervisor.email

    @pytest.mark.asyncio
    async def test_me_requires_token(self, client: AsyncClient):
        response = await client.get("/auth/me")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_me_rejects_bad_token(self, client: AsyncClient):
        response = await client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
