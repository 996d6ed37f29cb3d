# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

from __future__ import annotations

import itertools

from lakehouse_installer.waiter import Waiter


def test_ready_on_first_poll_does_not_sleep(waiter, clock):
    result = waiter.wait_until_ready(lambda: "ready", lambda s: s == "ready",
                                     max_wait_minutes=1, poll_interval_seconds=15)

    assert result.ok
    assert result.elapsed_seconds == 0
    assert clock.sleeps == []


def test_becomes_ready_on_third_poll(waiter, clock):
    states = iter(["pending", "pending", "ready"])

    result = waiter.wait_until_ready(lambda: next(states), lambda s: s == "ready",
                                     max_wait_minutes=5, poll_interval_seconds=10)

    assert result.ok
    assert result.last_state == "ready"
    assert clock.sleeps == [10, 10]
    assert result.elapsed_seconds == 20


def test_terminal_state_returns_immediately(waiter, clock):
    result = waiter.wait_until_ready(
        lambda: "FAILED",
        lambda s: s == "ACTIVE",
        max_wait_minutes=20,
        poll_interval_seconds=30,
        is_terminal_failure=lambda s: s == "FAILED",
    )

    assert not result.ok
    assert result.terminal
    assert not result.timed_out
    assert clock.sleeps == []


def test_timeout_stays_within_one_interval_of_budget(waiter, clock):
    calls = []

    def probe():
        calls.append(clock())
        return "pending"

    result = waiter.wait_until_ready(probe, lambda s: s == "ready", max_wait_minutes=1, poll_interval_seconds=15)

    assert result.timed_out
    assert result.last_state == "pending"
    assert 60 <= result.elapsed_seconds < 75
    assert calls == [0, 15, 30, 45, 60]


def test_uneven_interval_overshoots_by_less_than_one_interval(waiter):
    result = waiter.wait_until_ready(lambda: False, bool, max_wait_minutes=1, poll_interval_seconds=25)

    assert result.timed_out
    assert 60 <= result.elapsed_seconds < 85


def test_final_poll_is_shown_when_budget_runs_out(clock, capsys):
    waiter = Waiter(clock=clock, sleep=clock.sleep)
    polls = itertools.count()

    result = waiter.wait_until_ready(lambda: next(polls), lambda n: False, max_wait_minutes=1,
                                     poll_interval_seconds=20, label="api", describe=lambda n: f"poll {n}")

    assert result.timed_out
    err = capsys.readouterr().err
    assert "[0m 40s] api: poll 2" in err
    assert "[1m 0s] api: poll 3" in err
