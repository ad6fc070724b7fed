"""Tests for the authentication API endpoints."""

from unittest.mock import patch

import pytest

from otpgate.core.exceptions import StoreUnavailableError

TEST_PASSWORD = "correct horse battery"


async def signup(client, notifier, email="new@example.com", password=TEST_PASSWORD):
    response = await client.post("/auth/otp/send", json={"email": email, "purpose": "signup"})
    assert response.status_code == 200
    return await client.post(
        "/auth/signup",
        json={
            "email": email,
            "code": notifier.last_code(),
            "name": "New User",
            "password": password,
        },
    )


async def password_login(client, email="user@example.com", password=TEST_PASSWORD):
    return await client.post("/auth/login", json={"email": email, "password": password})


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestSignup:
    @pytest.mark.asyncio
    async def test_signup_flow(self, async_client, notifier):
        response = await signup(async_client, notifier)

        assert response.status_code == 201
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["account"]["email"] == "new@example.com"
        assert data["account"]["is_verified"] is True
        assert data["account"]["role"] == "student"

        me = await async_client.get("/auth/me", headers=bearer(data["access_token"]))
        assert me.status_code == 200
        assert me.json()["name"] == "New User"

    @pytest.mark.asyncio
    async def test_signup_code_for_existing_account_rejected(self, async_client, account_factory):
        await account_factory(email="user@example.com")

        response = await async_client.post(
            "/auth/otp/send", json={"email": "user@example.com", "purpose": "signup"}
        )

        assert response.status_code == 422
        assert "already exists" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_signup_with_wrong_code(self, async_client, notifier):
        await async_client.post(
            "/auth/otp/send", json={"email": "new@example.com", "purpose": "signup"}
        )
        wrong_code = "111111" if notifier.last_code() != "111111" else "222222"

        response = await async_client.post(
            "/auth/signup", json={"email": "new@example.com", "code": wrong_code}
        )

        assert response.status_code == 400
        assert response.json()["reason"] == "invalid"

    @pytest.mark.asyncio
    async def test_identifier_is_normalised(self, async_client, notifier):
        await async_client.post(
            "/auth/otp/send", json={"email": "  New@Example.COM ", "purpose": "signup"}
        )
        assert notifier.sent[-1][0] == "new@example.com"

    @pytest.mark.asyncio
    async def test_invalid_email_rejected(self, async_client):
        response = await async_client.post(
            "/auth/otp/send", json={"email": "bad@address", "purpose": "login"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_purpose_rejected(self, async_client):
        response = await async_client.post(
            "/auth/otp/send", json={"email": "a@example.com", "purpose": "admin"}
        )
        assert response.status_code == 422


class TestOTPEndpoints:
    @pytest.mark.asyncio
    async def test_unknown_account_gets_generic_answer(self, async_client, notifier):
        response = await async_client.post(
            "/auth/otp/send", json={"email": "nobody@example.com", "purpose": "login"}
        )

        assert response.status_code == 200
        assert response.json()["message"] == "OTP sent successfully"
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_verify_reports_reasons(self, async_client, notifier, account_factory, clock):
        await account_factory()
        await async_client.post("/auth/otp/send", json={"email": "user@example.com"})
        code = notifier.last_code()

        ok = await async_client.post(
            "/auth/otp/verify", json={"email": "user@example.com", "code": code}
        )
        assert ok.status_code == 200
        assert ok.json() == {
            "valid": True,
            "reason": "verified",
            "message": "OTP verified successfully",
        }

        reused = await async_client.post(
            "/auth/otp/verify", json={"email": "user@example.com", "code": code}
        )
        assert reused.status_code == 400
        assert reused.json()["reason"] == "already used"

        await async_client.post("/auth/otp/send", json={"email": "user@example.com"})
        clock.advance(minutes=11)
        expired = await async_client.post(
            "/auth/otp/verify", json={"email": "user@example.com", "code": notifier.last_code()}
        )
        assert expired.status_code == 400
        assert expired.json()["detail"] == "OTP has expired. Please request a new one."

    @pytest.mark.asyncio
    async def test_delivery_failure_is_bad_gateway(self, async_client, notifier, account_factory):
        await account_factory()
        notifier.fail = True

        response = await async_client.post("/auth/otp/send", json={"email": "user@example.com"})

        assert response.status_code == 502
        assert response.json()["detail"] == "Failed to send OTP. Please try again."


class TestLogin:
    @pytest.mark.asyncio
    async def test_password_login(self, async_client, account_factory):
        await account_factory()

        response = await password_login(async_client)

        assert response.status_code == 200
        assert response.json()["expires_in"] == 30 * 24 * 3600

    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_email_look_the_same(
        self, async_client, account_factory
    ):
        await account_factory()

        wrong = await password_login(async_client, password="wrong password")
        unknown = await password_login(async_client, email="nobody@example.com")

        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json() == {"detail": "Invalid email or password"}

    @pytest.mark.asyncio
    async def test_lockout_after_repeated_failures(self, async_client, account_factory):
        await account_factory()

        for _ in range(4):
            response = await password_login(async_client, password="wrong password")
            assert response.status_code == 401

        locked = await password_login(async_client, password="wrong password")
        assert locked.status_code == 423
        assert locked.headers["Retry-After"] == "1800"
        assert locked.json()["retry_after"] == 1800

        # Even the right password is refused while locked
        response = await password_login(async_client)
        assert response.status_code == 423

    @pytest.mark.asyncio
    async def test_lock_expires(self, async_client, account_factory, clock):
        await account_factory()
        for _ in range(5):
            await password_login(async_client, password="wrong password")

        clock.advance(minutes=31)

        response = await password_login(async_client)
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_inactive_account_cannot_log_in(self, async_client, account_factory):
        await account_factory(is_active=False)

        response = await password_login(async_client)

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_otp_login(self, async_client, notifier, account_factory):
        await account_factory(password=None)
        await async_client.post("/auth/otp/send", json={"email": "user@example.com"})

        response = await async_client.post(
            "/auth/login/otp", json={"email": "user@example.com", "code": notifier.last_code()}
        )

        assert response.status_code == 200
        me = await async_client.get("/auth/me", headers=bearer(response.json()["access_token"]))
        assert me.json()["last_login_at"] is not None

    @pytest.mark.asyncio
    async def test_malformed_otp_not_counted(self, async_client, services, account_factory):
        account = await account_factory()

        response = await async_client.post(
            "/auth/login/otp", json={"email": "user@example.com", "code": "١٢٣٤٥٦"}
        )

        assert response.status_code == 422
        state = await services.lockout.get_state(account.id)
        assert state.failed_attempts == 0

    @pytest.mark.asyncio
    async def test_wrong_otp_counts_toward_lockout(self, async_client, services, account_factory):
        account = await account_factory()

        response = await async_client.post(
            "/auth/login/otp", json={"email": "user@example.com", "code": "999999"}
        )

        assert response.status_code == 400
        assert response.json()["reason"] == "invalid"
        state = await services.lockout.get_state(account.id)
        assert state.failed_attempts == 1


class TestSessions:
    @pytest.mark.asyncio
    async def test_refresh_rotates_tokens(self, async_client, account_factory):
        await account_factory()
        tokens = (await password_login(async_client)).json()

        rotated = await async_client.post(
            "/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        assert rotated.status_code == 200
        assert rotated.json()["refresh_token"] != tokens["refresh_token"]

        reused = await async_client.post(
            "/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        assert reused.status_code == 401
        assert reused.json()["detail"] == "Please log in again."

    @pytest.mark.asyncio
    async def test_access_token_cannot_refresh(self, async_client, account_factory):
        await account_factory()
        tokens = (await password_login(async_client)).json()

        response = await async_client.post(
            "/auth/refresh", json={"refresh_token": tokens["access_token"]}
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_revokes_tokens(self, async_client, account_factory):
        await account_factory()
        tokens = (await password_login(async_client)).json()

        response = await async_client.post(
            "/auth/logout",
            json={"refresh_token": tokens["refresh_token"]},
            headers=bearer(tokens["access_token"]),
        )
        assert response.status_code == 200

        me = await async_client.get("/auth/me", headers=bearer(tokens["access_token"]))
        assert me.status_code == 401
        assert me.json()["detail"] == "Please log in again."

        refreshed = await async_client.post(
            "/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        assert refreshed.status_code == 401

    @pytest.mark.asyncio
    async def test_logout_leaves_other_accounts_refresh_token(self, async_client, account_factory):
        await account_factory(email="alice@example.com")
        await account_factory(email="bob@example.com")
        alice = (await password_login(async_client, email="alice@example.com")).json()
        bob = (await password_login(async_client, email="bob@example.com")).json()

        response = await async_client.post(
            "/auth/logout",
            json={"refresh_token": bob["refresh_token"]},
            headers=bearer(alice["access_token"]),
        )
        assert response.status_code == 200

        refreshed = await async_client.post(
            "/auth/refresh", json={"refresh_token": bob["refresh_token"]}
        )
        assert refreshed.status_code == 200

    @pytest.mark.asyncio
    async def test_logout_without_body(self, async_client, account_factory):
        await account_factory()
        tokens = (await password_login(async_client)).json()

        response = await async_client.post("/auth/logout", headers=bearer(tokens["access_token"]))

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_logout_all(self, async_client, account_factory):
        await account_factory()
        first = (await password_login(async_client)).json()
        second = (await password_login(async_client)).json()

        response = await async_client.post(
            "/auth/logout-all", headers=bearer(first["access_token"])
        )

        assert response.status_code == 200
        assert response.json()["revoked"] == 4
        me = await async_client.get("/auth/me", headers=bearer(second["access_token"]))
        assert me.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_bearer_token(self, async_client):
        response = await async_client.get("/auth/me")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_reset_revokes_sessions(self, async_client, notifier, account_factory):
        await account_factory()
        tokens = (await password_login(async_client)).json()
        await async_client.post(
            "/auth/otp/send", json={"email": "user@example.com", "purpose": "forgot-password"}
        )
        assert notifier.sent[-1][2] == "password-reset"

        response = await async_client.post(
            "/auth/password/reset",
            json={
                "email": "user@example.com",
                "code": notifier.last_code(),
                "new_password": "a brand new password",
            },
        )
        assert response.status_code == 200

        me = await async_client.get("/auth/me", headers=bearer(tokens["access_token"]))
        assert me.status_code == 401
        assert (await password_login(async_client)).status_code == 401
        assert (
            await password_login(async_client, password="a brand new password")
        ).status_code == 200

    @pytest.mark.asyncio
    async def test_reset_clears_lock(self, async_client, notifier, services, account_factory):
        account = await account_factory()
        for _ in range(5):
            await password_login(async_client, password="wrong password")
        await async_client.post(
            "/auth/otp/send", json={"email": "user@example.com", "purpose": "password-reset"}
        )

        await async_client.post(
            "/auth/password/reset",
            json={
                "email": "user@example.com",
                "code": notifier.last_code(),
                "new_password": "a brand new password",
            },
        )

        assert await services.lockout.is_locked(account.id) is False

    @pytest.mark.asyncio
    async def test_login_code_cannot_reset(self, async_client, notifier, account_factory):
        await account_factory()
        await async_client.post("/auth/otp/send", json={"email": "user@example.com"})

        response = await async_client.post(
            "/auth/password/reset",
            json={
                "email": "user@example.com",
                "code": notifier.last_code(),
                "new_password": "a brand new password",
            },
        )

        assert response.status_code == 400


class TestErrorsAndHealth:
    @pytest.mark.asyncio
    async def test_storage_failure_is_service_unavailable(self, async_client, services):
        with patch.object(
            services.auth,
            "get_account_by_email",
            side_effect=StoreUnavailableError("connection refused"),
        ):
            response = await password_login(async_client)

        assert response.status_code == 503
        assert response.json()["detail"] == "Service temporarily unavailable. Please try again."

    @pytest.mark.asyncio
    async def test_health(self, async_client):
        response = await async_client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    @pytest.mark.asyncio
    async def test_health_detail(self, async_client, account_factory):
        await account_factory()
        tokens = (await password_login(async_client)).json()
        await async_client.post("/auth/logout", headers=bearer(tokens["access_token"]))

        response = await async_client.get("/health/detail")

        assert response.status_code == 200
        data = response.json()
        assert data["blacklist"]["cache_entries"] == 1
        assert data["blacklist"]["durable_entries"] == 1
        assert data["sweeper_running"] is False

    @pytest.mark.asyncio
    async def test_health_reports_database_down(self, async_client):
        with patch("otpgate.api.health.check_db_connection", return_value=False):
            response = await async_client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_root(self, async_client):
        response = await async_client.get("/")

        assert response.status_code == 200
        assert response.json()["name"] == "otpgate"
