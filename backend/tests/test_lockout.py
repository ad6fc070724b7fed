"""Tests for failed-attempt counting and account locks."""

import asyncio

import pytest

from otpgate.core.exceptions import LockedError


class TestLockoutPolicy:
    @pytest.mark.asyncio
    async def test_locks_at_threshold(self, services, account_factory, clock):
        account = await account_factory()
        lockout = services.lockout

        for attempt in range(1, 5):
            state = await lockout.record_failure(account.id)
            assert state.failed_attempts == attempt
            assert state.locked_until is None

        state = await lockout.record_failure(account.id)
        assert state.failed_attempts == 5
        assert state.locked_until == clock() + lockout.lock_duration
        assert await lockout.is_locked(account.id) is True

    @pytest.mark.asyncio
    async def test_failures_during_lock_do_not_extend_it(self, services, account_factory, clock):
        account = await account_factory()
        for _ in range(5):
            await services.lockout.record_failure(account.id)
        locked_until = (await services.lockout.get_state(account.id)).locked_until

        clock.advance(minutes=10)
        state = await services.lockout.record_failure(account.id)

        assert state.locked_until == locked_until
        assert state.failed_attempts == 6

    @pytest.mark.asyncio
    async def test_lock_clears_after_window(self, services, account_factory, clock):
        account = await account_factory()
        for _ in range(5):
            await services.lockout.record_failure(account.id)

        clock.advance(minutes=30, seconds=1)
        assert await services.lockout.is_locked(account.id) is False

        # Next failure starts a fresh count
        state = await services.lockout.record_failure(account.id)
        assert state.failed_attempts == 1
        assert state.locked_until is None

    @pytest.mark.asyncio
    async def test_success_resets(self, services, account_factory, clock):
        account = await account_factory()
        for _ in range(3):
            await services.lockout.record_failure(account.id)

        await services.lockout.record_success(account.id)

        state = await services.lockout.get_state(account.id)
        assert state.failed_attempts == 0
        assert state.locked_until is None

    @pytest.mark.asyncio
    async def test_ensure_unlocked_reports_wait(self, services, account_factory, clock):
        account = await account_factory()
        for _ in range(5):
            await services.lockout.record_failure(account.id)
        clock.advance(minutes=20)

        with pytest.raises(LockedError) as exc_info:
            await services.lockout.ensure_unlocked(account.id)
        assert exc_info.value.retry_after == 600

    @pytest.mark.asyncio
    async def test_concurrent_failures_all_counted(self, services, account_factory):
        account = await account_factory()

        await asyncio.gather(*[services.lockout.record_failure(account.id) for _ in range(7)])

        state = await services.lockout.get_state(account.id)
        assert state.failed_attempts == 7
        assert state.locked_until is not None

    @pytest.mark.asyncio
    async def test_unknown_account(self, services):
        with pytest.raises(LookupError):
            await services.lockout.get_state("00000000-0000-0000-0000-000000000000")
