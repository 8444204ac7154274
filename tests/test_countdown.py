"""Tests for the client-side retry countdown."""

import asyncio

import pytest

from ratechat.client.countdown import ClientCountdown, CountdownState, format_retry_time

# Long enough that the background timer never fires during a test
NEVER = 3600.0


class TestClientCountdown:

    def test_starts_idle(self):
        countdown = ClientCountdown()
        assert countdown.state is CountdownState.IDLE
        assert countdown.seconds_remaining == 0
        assert not countdown.has_live_timer

    def test_rejects_non_positive_tick(self):
        with pytest.raises(ValueError):
            ClientCountdown(tick_seconds=0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("retry_after", "expected"),
        [(6.4, 7), (6.0, 6), (0.2, 1), (0.0, 1), (5.4, 6)],
    )
    async def test_start_rounds_up(self, retry_after, expected):
        countdown = ClientCountdown(tick_seconds=NEVER)

        assert countdown.start(retry_after) == expected
        assert countdown.state is CountdownState.LIMITED
        assert countdown.seconds_remaining == expected
        assert countdown.has_live_timer

        countdown.close()

    @pytest.mark.asyncio
    async def test_manual_ticks_reach_idle(self):
        countdown = ClientCountdown(tick_seconds=NEVER)
        countdown.start(3)

        assert countdown.tick() == 2
        assert countdown.tick() == 1
        assert countdown.is_limited
        assert countdown.tick() == 0

        assert countdown.state is CountdownState.IDLE
        assert not countdown.has_live_timer
        assert countdown.tick() == 0

    @pytest.mark.asyncio
    async def test_timer_counts_down_to_idle(self):
        changes = []
        countdown = ClientCountdown(
            tick_seconds=0.01,
            on_change=lambda state, seconds: changes.append((state, seconds)),
        )

        countdown.start(2.5)
        await asyncio.wait_for(countdown.wait_idle(), timeout=2.0)

        assert changes == [
            (CountdownState.LIMITED, 3),
            (CountdownState.LIMITED, 2),
            (CountdownState.LIMITED, 1),
            (CountdownState.IDLE, 0),
        ]
        assert not countdown.has_live_timer

    @pytest.mark.asyncio
    async def test_restart_cancels_previous_timer(self):
        countdown = ClientCountdown(tick_seconds=NEVER)
        countdown.start(5)
        first = countdown._handle

        countdown.start(2)

        with pytest.raises(asyncio.CancelledError):
            await first
        assert countdown._handle is not first
        assert countdown.has_live_timer
        assert countdown.seconds_remaining == 2

        countdown.close()

    @pytest.mark.asyncio
    async def test_restart_replaces_remaining(self):
        countdown = ClientCountdown(tick_seconds=NEVER)
        countdown.start(6)
        countdown.tick()
        countdown.tick()

        assert countdown.start(2.4) == 3
        assert countdown.seconds_remaining == 3

        countdown.close()

    @pytest.mark.asyncio
    async def test_stale_timer_does_not_tick(self):
        changes = []
        countdown = ClientCountdown(
            tick_seconds=0.01,
            on_change=lambda state, seconds: changes.append((state, seconds)),
        )
        countdown.start(1)
        countdown.clear()

        await asyncio.sleep(0.05)

        assert changes == [(CountdownState.LIMITED, 1), (CountdownState.IDLE, 0)]

    @pytest.mark.asyncio
    async def test_clear(self):
        countdown = ClientCountdown(tick_seconds=NEVER)
        countdown.start(10)
        handle = countdown._handle

        countdown.clear()

        assert countdown.state is CountdownState.IDLE
        assert countdown.seconds_remaining == 0
        assert not countdown.has_live_timer
        await asyncio.wait_for(countdown.wait_idle(), timeout=1.0)
        with pytest.raises(asyncio.CancelledError):
            await handle

    @pytest.mark.asyncio
    async def test_clear_when_idle_is_silent(self):
        changes = []
        countdown = ClientCountdown(on_change=lambda *args: changes.append(args))
        countdown.clear()
        assert changes == []

    @pytest.mark.asyncio
    async def test_close_refuses_new_starts(self):
        countdown = ClientCountdown(tick_seconds=NEVER)
        countdown.start(10)

        countdown.close()

        assert not countdown.has_live_timer
        with pytest.raises(RuntimeError):
            countdown.start(1)

    @pytest.mark.asyncio
    async def test_context_manager_closes(self):
        async with ClientCountdown(tick_seconds=NEVER) as countdown:
            countdown.start(4)
            assert countdown.has_live_timer
        assert countdown.state is CountdownState.IDLE
        assert not countdown.has_live_timer


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [
        (1, "1 seconds"),
        (7, "7 seconds"),
        (59, "59 seconds"),
        (60, "1m 0s"),
        (95, "1m 35s"),
        (600, "10m 0s"),
    ],
)
def test_format_retry_time(seconds, expected):
    assert format_retry_time(seconds) == expected
