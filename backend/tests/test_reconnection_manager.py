from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError

from booking_chat.client.reconnection import (
    ReconnectionConfig,
    ReconnectionManager,
    ReconnectionPhase,
    backoff_delay,
    jittered_delay,
)
from tests.fakes import FakeScheduler


async def settle() -> None:
    """Let spawned attempt tasks run to completion."""
    for _ in range(5):
        await asyncio.sleep(0)


def no_jitter() -> float:
    return 0.5


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


def make_manager(
    scheduler: FakeScheduler,
    on_reconnect: AsyncMock,
    **kwargs,
) -> ReconnectionManager:
    kwargs.setdefault("rng", no_jitter)
    return ReconnectionManager(on_reconnect, scheduler=scheduler, **kwargs)


class TestBackoffDelay:
    """Delay calculation, independent of the state machine."""

    @pytest.fixture
    def config(self) -> ReconnectionConfig:
        return ReconnectionConfig()

    def test_defaults(self, config: ReconnectionConfig) -> None:
        assert config.max_attempts == 10
        assert config.initial_delay == 1.0
        assert config.max_delay == 30.0
        assert config.backoff_factor == 1.5
        assert config.jitter_range == 0.3

    def test_unjittered_growth(self, config: ReconnectionConfig) -> None:
        assert backoff_delay(0, config) == pytest.approx(1.0)
        assert backoff_delay(1, config) == pytest.approx(1.5)
        assert backoff_delay(5, config) == pytest.approx(7.59375)
        assert backoff_delay(20, config) == 30.0

    def test_monotonic_and_clamped(self, config: ReconnectionConfig) -> None:
        delays = [backoff_delay(n, config) for n in range(30)]
        assert delays == sorted(delays)
        assert max(delays) == config.max_delay

    def test_jitter_bounds(self, config: ReconnectionConfig) -> None:
        assert jittered_delay(1, config, rng=lambda: 0.0) == pytest.approx(1.5 * 0.7)
        assert jittered_delay(1, config, rng=lambda: 0.5) == pytest.approx(1.5)
        assert jittered_delay(1, config, rng=lambda: 1.0) == pytest.approx(1.5 * 1.3)

    def test_floor(self) -> None:
        config = ReconnectionConfig(initial_delay=0.05, jitter_range=0.5)
        assert jittered_delay(0, config, rng=lambda: 0.0) == 0.1

    def test_invalid_config_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ReconnectionConfig(max_attempts=0)
        with pytest.raises(ValidationError):
            ReconnectionConfig(backoff_factor=0.5)
        with pytest.raises(ValidationError):
            ReconnectionConfig(jitter_range=1.0)


class TestReconnectionCycle:
    @pytest.mark.asyncio
    async def test_first_attempt_is_immediate(self, scheduler: FakeScheduler) -> None:
        on_reconnect = AsyncMock(return_value=True)
        on_success = MagicMock()
        manager = make_manager(scheduler, on_reconnect, on_reconnection_success=on_success)

        manager.start()
        await settle()

        on_reconnect.assert_awaited_once()
        on_success.assert_called_once_with()
        assert manager.phase is ReconnectionPhase.CONNECTED
        state = manager.state
        assert state.is_reconnecting is False
        assert state.attempt_count == 1
        assert state.next_retry_in == 0
        assert state.last_success_at is not None
        assert scheduler.pending == []

    @pytest.mark.asyncio
    async def test_failure_schedules_retry_with_initial_delay(
        self, scheduler: FakeScheduler
    ) -> None:
        on_reconnect = AsyncMock(side_effect=[False, True])
        on_failed = MagicMock()
        manager = make_manager(scheduler, on_reconnect, on_reconnection_failed=on_failed)

        manager.start()
        await settle()

        on_failed.assert_called_once_with(1)
        assert manager.phase is ReconnectionPhase.WAITING
        assert manager.state.next_retry_in == 1
        assert on_reconnect.await_count == 1

        scheduler.advance(0.5)
        await settle()
        assert on_reconnect.await_count == 1

        scheduler.advance(0.5)
        await settle()
        assert on_reconnect.await_count == 2
        assert manager.phase is ReconnectionPhase.CONNECTED

    @pytest.mark.asyncio
    async def test_delays_grow_between_attempts(self, scheduler: FakeScheduler) -> None:
        on_reconnect = AsyncMock(return_value=False)
        manager = make_manager(scheduler, on_reconnect)

        manager.start()
        await settle()
        for expected in (1.0, 1.5, 2.25):
            before = on_reconnect.await_count
            scheduler.advance(expected * 0.99)
            await settle()
            assert on_reconnect.await_count == before
            scheduler.advance(expected * 0.02)
            await settle()
            assert on_reconnect.await_count == before + 1

    @pytest.mark.asyncio
    async def test_countdown_ticks_every_second(self, scheduler: FakeScheduler) -> None:
        on_reconnect = AsyncMock(return_value=False)
        config = ReconnectionConfig(initial_delay=3.0)
        manager = make_manager(scheduler, on_reconnect, config=config)

        manager.start()
        await settle()
        assert manager.state.next_retry_in == 3

        scheduler.advance(1.0)
        assert manager.state.next_retry_in == 2
        scheduler.advance(1.0)
        assert manager.state.next_retry_in == 1

    @pytest.mark.asyncio
    async def test_exception_is_treated_as_failure(self, scheduler: FakeScheduler) -> None:
        on_reconnect = AsyncMock(side_effect=ConnectionError("network down"))
        on_failed = MagicMock()
        manager = make_manager(scheduler, on_reconnect, on_reconnection_failed=on_failed)

        manager.start()
        await settle()

        on_failed.assert_called_once_with(1)
        assert manager.phase is ReconnectionPhase.WAITING
        assert manager.state.is_reconnecting is False

    @pytest.mark.asyncio
    async def test_callback_errors_do_not_break_scheduling(
        self, scheduler: FakeScheduler
    ) -> None:
        on_reconnect = AsyncMock(return_value=False)
        manager = make_manager(
            scheduler, on_reconnect, on_reconnection_failed=MagicMock(side_effect=ValueError)
        )

        manager.start()
        await settle()

        assert manager.phase is ReconnectionPhase.WAITING


class TestAttemptCeiling:
    @pytest.mark.asyncio
    async def test_stops_after_max_attempts(self, scheduler: FakeScheduler) -> None:
        on_reconnect = AsyncMock(return_value=False)
        on_exhausted = MagicMock()
        manager = make_manager(
            scheduler,
            on_reconnect,
            config=ReconnectionConfig(max_attempts=3),
            on_max_attempts_reached=on_exhausted,
        )

        manager.start()
        await settle()
        for _ in range(10):
            scheduler.advance(60)
            await settle()

        assert on_reconnect.await_count == 3
        on_exhausted.assert_called_once_with()
        assert manager.phase is ReconnectionPhase.EXHAUSTED
        assert manager.can_reconnect() is False
        assert scheduler.pending == []

        manager.start()
        await settle()
        scheduler.advance(60)
        await settle()
        assert on_reconnect.await_count == 3
        on_exhausted.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_reset_rearms_from_attempt_zero(self, scheduler: FakeScheduler) -> None:
        on_reconnect = AsyncMock(return_value=False)
        manager = make_manager(scheduler, on_reconnect, config=ReconnectionConfig(max_attempts=2))

        manager.start()
        await settle()
        scheduler.advance(60)
        await settle()
        assert manager.phase is ReconnectionPhase.EXHAUSTED

        manager.reset()
        assert manager.state.attempt_count == 0
        assert manager.phase is ReconnectionPhase.IDLE

        manager.start()
        await settle()
        assert on_reconnect.await_count == 3
        assert manager.state.attempt_count == 1
        assert manager.get_next_delay() == pytest.approx(1.0)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_stop_while_waiting_prevents_attempt(self, scheduler: FakeScheduler) -> None:
        on_reconnect = AsyncMock(return_value=False)
        manager = make_manager(scheduler, on_reconnect)

        manager.start()
        await settle()
        assert manager.phase is ReconnectionPhase.WAITING

        manager.stop()
        scheduler.advance(120)
        await settle()

        assert on_reconnect.await_count == 1
        state = manager.state
        assert state.is_reconnecting is False
        assert state.next_retry_in == 0
        assert state.attempt_count == 1
        assert scheduler.pending == []

    @pytest.mark.asyncio
    async def test_start_after_stop_resumes_with_backoff(self, scheduler: FakeScheduler) -> None:
        on_reconnect = AsyncMock(return_value=False)
        manager = make_manager(scheduler, on_reconnect)

        manager.start()
        await settle()
        manager.stop()

        manager.start()
        assert manager.phase is ReconnectionPhase.WAITING
        await settle()
        assert on_reconnect.await_count == 1

        scheduler.advance(1.0)
        await settle()
        assert on_reconnect.await_count == 2

    @pytest.mark.asyncio
    async def test_result_of_in_flight_attempt_is_discarded_after_stop(
        self, scheduler: FakeScheduler
    ) -> None:
        release = asyncio.Event()

        async def slow_reconnect() -> bool:
            await release.wait()
            return True

        on_success = MagicMock()
        manager = ReconnectionManager(
            slow_reconnect,
            scheduler=scheduler,
            rng=no_jitter,
            on_reconnection_success=on_success,
        )

        manager.start()
        await settle()
        assert manager.state.is_reconnecting is True

        manager.stop()
        release.set()
        await manager.wait()

        on_success.assert_not_called()
        assert manager.phase is ReconnectionPhase.IDLE
        assert manager.state.last_success_at is None

    @pytest.mark.asyncio
    async def test_close_silences_all_callbacks(self, scheduler: FakeScheduler) -> None:
        release = asyncio.Event()

        async def slow_failure() -> bool:
            await release.wait()
            return False

        on_failed = MagicMock()
        manager = ReconnectionManager(
            slow_failure, scheduler=scheduler, on_reconnection_failed=on_failed
        )

        manager.start()
        await settle()
        manager.close()
        release.set()
        await manager.wait()

        on_failed.assert_not_called()
        assert scheduler.pending == []
        assert manager.can_reconnect() is False


class TestReentrancy:
    @pytest.mark.asyncio
    async def test_start_is_noop_while_attempt_in_flight(self, scheduler: FakeScheduler) -> None:
        release = asyncio.Event()
        calls = 0

        async def slow_reconnect() -> bool:
            nonlocal calls
            calls += 1
            await release.wait()
            return True

        manager = ReconnectionManager(slow_reconnect, scheduler=scheduler)

        manager.start()
        await settle()
        manager.start()
        assert await manager.attempt_reconnection() is False
        await settle()

        release.set()
        await manager.wait()
        assert calls == 1
        assert manager.phase is ReconnectionPhase.CONNECTED

    @pytest.mark.asyncio
    async def test_manual_attempt_refused_until_stopped_attempt_resolves(
        self, scheduler: FakeScheduler
    ) -> None:
        release = asyncio.Event()
        calls = 0

        async def slow_reconnect() -> bool:
            nonlocal calls
            calls += 1
            await release.wait()
            return True

        manager = ReconnectionManager(slow_reconnect, scheduler=scheduler)

        manager.start()
        await settle()
        manager.stop()

        assert await manager.attempt_reconnection() is False
        assert calls == 1

        release.set()
        await manager.wait()
        assert await manager.attempt_reconnection() is True
        assert calls == 2

    @pytest.mark.asyncio
    async def test_start_is_noop_while_waiting(self, scheduler: FakeScheduler) -> None:
        on_reconnect = AsyncMock(return_value=False)
        manager = make_manager(scheduler, on_reconnect)

        manager.start()
        await settle()
        timers_before = len(scheduler.pending)

        manager.start()
        assert len(scheduler.pending) == timers_before

    @pytest.mark.asyncio
    async def test_disabled_manager_never_attempts(self, scheduler: FakeScheduler) -> None:
        on_reconnect = AsyncMock(return_value=True)
        manager = make_manager(scheduler, on_reconnect, enabled=False)

        manager.start()
        await settle()

        on_reconnect.assert_not_awaited()
        assert manager.can_reconnect() is False
