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

"""Bounded readiness polling."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from tenacity import RetryCallState, Retrying, retry_if_result, wait_fixed

from lakehouse_installer import console, logger

S = TypeVar("S")


@dataclass(frozen=True)
class WaitResult(Generic[S]):
    """Outcome of a bounded wait.

    Attributes:
        ok: Whether the readiness predicate held.
        last_state: The last state the probe returned.
        elapsed_seconds: Wall-clock seconds spent waiting.
        terminal: Whether the wait stopped on a terminal failure state.
    """

    ok: bool
    last_state: S
    elapsed_seconds: float
    terminal: bool = False

    @property
    def timed_out(self) -> bool:
        return not self.ok and not self.terminal


class Waiter:
    """Polls a probe on a fixed interval within a wall-clock budget.

    The clock and sleep functions are injectable so budgets can be exercised
    without real time passing.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        quiet: bool = False,
    ) -> None:
        self.clock = clock
        self.sleep = sleep
        self.quiet = quiet

    def wait_until_ready(
        self,
        probe: Callable[[], S],
        is_ready: Callable[[S], bool],
        *,
        max_wait_minutes: float,
        poll_interval_seconds: float,
        is_terminal_failure: Callable[[S], bool] | None = None,
        label: str = "resource",
        describe: Callable[[S], str] = str,
    ) -> WaitResult[S]:
        """Poll *probe* until *is_ready* holds, a terminal state appears, or the budget runs out.

        The probe is called immediately, then once per interval. A terminal
        failure returns at once. Otherwise the wait gives up on the first
        poll at or past the budget, so a probe that never converges returns
        with ``budget <= elapsed < budget + interval``.

        Args:
            probe: Zero-argument callable returning the current state.
            is_ready: Success predicate over a state.
            max_wait_minutes: Wall-clock budget.
            poll_interval_seconds: Sleep between polls.
            is_terminal_failure: Predicate for states that will never converge.
            label: Name shown in progress lines.
            describe: Renders a state for progress lines.

        Returns:
            The wait outcome with the last observed state.
        """
        budget = max_wait_minutes * 60
        start = self.clock()
        terminal = is_terminal_failure or (lambda _state: False)

        def _elapsed() -> float:
            return self.clock() - start

        def _keep_polling(state: S) -> bool:
            return not is_ready(state) and not terminal(state)

        def _out_of_budget(_retry_state: RetryCallState) -> bool:
            return _elapsed() >= budget

        def _progress(state: S) -> None:
            elapsed = int(_elapsed())
            line = f"[{elapsed // 60}m {elapsed % 60}s] {label}: {describe(state)}"
            logger.debug(line)
            if not self.quiet:
                console.print(f"[dim]   {line}[/dim]")

        def _report(retry_state: RetryCallState) -> None:
            _progress(retry_state.outcome.result())

        retrying = Retrying(
            retry=retry_if_result(_keep_polling),
            stop=_out_of_budget,
            wait=wait_fixed(poll_interval_seconds),
            sleep=self.sleep,
            before_sleep=_report,
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )
        state = retrying(probe)
        elapsed = _elapsed()
        if is_ready(state):
            return WaitResult(True, state, elapsed)
        if terminal(state):
            logger.info("%s reached terminal state after %.0fs: %s", label, elapsed, describe(state))
            return WaitResult(False, state, elapsed, terminal=True)
        _progress(state)
        logger.info("%s not ready after %.0fs: %s", label, elapsed, describe(state))
        return WaitResult(False, state, elapsed)
