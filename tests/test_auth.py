"""Tests for registration, login, password reset and profile update."""
from datetime import datetime, timedelta

import pytest
from bson import ObjectId

from services import auth_service
from services.auth_service import InvalidCredentialsError, PasswordResetError, UserExistsError
from utils.security import create_access_token, decode_access_token, hash_password, verify_password


class TestSecurity:
    def test_password_hash_roundtrip(self):
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_malformed_hash_does_not_verify(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")

    def test_token_carries_user_id(self):
        assert decode_access_token(create_access_token("abc123")) == "abc123"

    def test_expired_token(self):
        token = create_access_token("abc123", expires_delta=timedelta(seconds=-1))
        assert decode_access_token(token) is None

    def test_garbage_token(self):
        assert decode_access_token("a.b.c") is None


class TestAuthService:
    @pytest.mark.asyncio
    async def test_register_and_authenticate(self, users_collection):
        user = await auth_service.register_user(users_collection, "Ann@Example.com", "secret-pass", "Ann")
        assert user.email == "ann@example.com"
        assert user.password_hash != "secret-pass"

        logged_in = await auth_service.authenticate_user(users_collection, "ann@example.com", "secret-pass")
        assert logged_in.id == user.id

    @pytest.mark.asyncio
    async def test_duplicate_email(self, users_collection):
        await auth_service.register_user(users_collection, "ann@example.com", "secret-pass")
        with pytest.raises(UserExistsError):
            await auth_service.register_user(users_collection, "ANN@example.com", "other-pass")

    @pytest.mark.asyncio
    async def test_wrong_password_is_checked_every_time(self, users_collection):
        await auth_service.register_user(users_collection, "ann@example.com", "secret-pass")
        await auth_service.authenticate_user(users_collection, "ann@example.com", "secret-pass")
        # Same three-character prefix as the real password
        with pytest.raises(InvalidCredentialsError):
            await auth_service.authenticate_user(users_collection, "ann@example.com", "secXXXXX")

    @pytest.mark.asyncio
    async def test_unknown_user(self, users_collection):
        with pytest.raises(InvalidCredentialsError):
            await auth_service.authenticate_user(users_collection, "nobody@example.com", "x")

    @pytest.mark.asyncio
    async def test_reset_flow(self, users_collection):
        await auth_service.register_user(users_collection, "ann@example.com", "secret-pass")
        message = await auth_service.request_password_reset(users_collection, "ann@example.com")
        assert message == auth_service.RESET_REQUESTED_MESSAGE

        stored = users_collection.docs[0]
        otp = stored["reset_otp"]
        assert len(otp) == 4 and otp.isdigit()
        assert stored["reset_otp_expires"] > datetime.utcnow()

        with pytest.raises(PasswordResetError, match="Invalid OTP"):
            await auth_service.reset_password(users_collection, "ann@example.com", "wrong", "new-password")

        await auth_service.reset_password(users_collection, "ann@example.com", otp, "new-password")
        assert stored["reset_otp"] is None and stored["reset_otp_expires"] is None
        await auth_service.authenticate_user(users_collection, "ann@example.com", "new-password")

    @pytest.mark.asyncio
    async def test_expired_otp(self, users_collection):
        await auth_service.register_user(users_collection, "ann@example.com", "secret-pass")
        users_collection.docs[0].update(reset_otp="1234", reset_otp_expires=datetime.utcnow() - timedelta(minutes=1))
        with pytest.raises(PasswordResetError, match="expired"):
            await auth_service.reset_password(users_collection, "ann@example.com", "1234", "new-password")

    @pytest.mark.asyncio
    async def test_reset_for_unknown_email_is_indistinguishable(self, users_collection):
        message = await auth_service.request_password_reset(users_collection, "nobody@example.com")
        assert message == auth_service.RESET_REQUESTED_MESSAGE
        with pytest.raises(PasswordResetError, match="Invalid or expired OTP"):
            await auth_service.reset_password(users_collection, "nobody@example.com", "1234", "new-password")

    @pytest.mark.asyncio
    async def test_update_profile(self, users_collection):
        user = await auth_service.register_user(users_collection, "ann@example.com", "secret-pass", "Ann")
        await auth_service.update_profile(users_collection, user.id, "  ")
        assert users_collection.docs[0]["name"] is None
        with pytest.raises(LookupError):
            await auth_service.update_profile(users_collection, str(ObjectId()), "Bob")


class TestAuthRoutes:
    def test_register_login_and_use_token(self, client, expenses_collection):
        response = client.post("/api/auth/register", json={"email": "ann@example.com", "password": "secret-pass"})
        assert response.status_code == 201
        user_id = response.json()["id"]

        response = client.post("/api/auth/login", json={"email": "ann@example.com", "password": "secret-pass"})
        assert response.status_code == 200
        token = response.json()["access_token"]

        response = client.get("/api/expenses", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert decode_access_token(token) == user_id

    def test_bad_login(self, client):
        response = client.post("/api/auth/login", json={"email": "ann@example.com", "password": "nope"})
        assert response.status_code == 401

    def test_register_short_password_is_400(self, client):
        response = client.post("/api/auth/register", json={"email": "ann@example.com", "password": "short"})
        assert response.status_code == 400
        assert "password" in response.json()["detail"]

    def test_forgot_and_reset(self, client, users_collection):
        client.post("/api/auth/register", json={"email": "ann@example.com", "password": "secret-pass"})
        response = client.post("/api/auth/forgot-password", json={"email": "ann@example.com"})
        assert response.status_code == 200
        otp = users_collection.docs[0]["reset_otp"]

        response = client.post("/api/auth/reset-password",
                               json={"email": "ann@example.com", "otp": otp, "newPassword": "brand-new-pass"})
        assert response.status_code == 200
        response = client.post("/api/auth/login", json={"email": "ann@example.com", "password": "brand-new-pass"})
        assert response.status_code == 200

    def test_profile_update_requires_auth(self, client, users_collection, auth_header):
        assert client.post("/api/user/update", json={"name": "Ann"}).status_code == 401
        user_id = client.post("/api/auth/register",
                              json={"email": "ann@example.com", "password": "secret-pass"}).json()["id"]
        response = client.post("/api/user/update", json={"name": "Ann"}, headers=auth_header(user_id))
        assert response.status_code == 200
        assert users_collection.docs[0]["name"] == "Ann"
