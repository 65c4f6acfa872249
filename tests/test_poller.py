import threading

import pytest

from pcr.exceptions import ConvergenceTimeout, PollCancelled
from pcr.replication.poller import (
    CUTOVER_TOKENS,
    DATA_STATE_TOKENS,
    LINK_STATUS_TOKENS,
    UNKNOWN,
    ConvergencePoller,
    PollOutcome,
    TimeoutPolicy,
    enforce,
    field_token,
    search_token,
)


def scripted(outputs):
    calls = []

    def probe():
        calls.append(len(calls))
        return outputs[min(len(calls) - 1, len(outputs) - 1)]

    return probe, calls


class TestTokens:
    def test_leftmost_match_wins(self):
        assert search_token("status: paused after error", LINK_STATUS_TOKENS) == "paused"

    def test_case_insensitive(self):
        assert search_token("REPLICATING", LINK_STATUS_TOKENS) == "replicating"

    def test_no_match_is_unknown(self):
        assert search_token("nothing here", LINK_STATUS_TOKENS) == UNKNOWN
        assert search_token("", DATA_STATE_TOKENS) == UNKNOWN
        assert search_token(None, DATA_STATE_TOKENS) == UNKNOWN

    def test_scan_is_a_link_token(self):
        assert search_token("initial scan", LINK_STATUS_TOKENS) == "scan"

    def test_field_token_needs_whole_field(self):
        assert field_token("id\tstatus\n3\tready\n", CUTOVER_TOKENS) == "ready"
        assert field_token("3\tready\t2024-01-01", CUTOVER_TOKENS) == "ready"
        assert field_token("3\talready\n", CUTOVER_TOKENS) == UNKNOWN

    def test_field_token_prefers_earlier_vocabulary(self):
        assert field_token("3\treplicating\tready\n", CUTOVER_TOKENS) == "ready"


class TestConvergencePoller:
    def test_converges_on_third_probe(self):
        sleeps = []
        probe, calls = scripted(["initializing", "initializing", "replicating"])
        outcome = ConvergencePoller(sleep=sleeps.append).poll(
            probe, lambda t: t, lambda t: t == "replicating", max_iters=5, interval=2
        )
        assert outcome.converged
        assert outcome.iterations == 3
        assert len(calls) == 3
        assert sleeps == [2, 2]

    def test_times_out_after_exactly_max_iters(self):
        sleeps = []
        probe, calls = scripted(["initializing"])
        outcome = ConvergencePoller(sleep=sleeps.append).poll(
            probe, lambda t: t, lambda t: t == "replicating", max_iters=5, interval=1
        )
        assert outcome.timed_out
        assert outcome.iterations == 5
        assert outcome.last_token == "initializing"
        assert len(calls) == 5
        assert len(sleeps) == 4

    def test_immediate_match_does_not_sleep(self):
        sleeps = []
        outcome = ConvergencePoller(sleep=sleeps.append).poll(
            lambda: "ready", lambda t: t, lambda t: t == "ready", max_iters=3, interval=10
        )
        assert outcome.iterations == 1
        assert sleeps == []

    def test_cancelled_before_first_probe(self):
        cancel = threading.Event()
        cancel.set()
        probe, calls = scripted(["x"])
        with pytest.raises(PollCancelled):
            ConvergencePoller(cancel=cancel).poll(
                probe, lambda t: t, lambda t: False, max_iters=3, interval=0
            )
        assert calls == []

    def test_cancelled_during_wait(self):
        cancel = threading.Event()

        def probe():
            cancel.set()
            return "initializing"

        with pytest.raises(PollCancelled):
            ConvergencePoller(cancel=cancel).poll(
                probe, lambda t: t, lambda t: False, max_iters=3, interval=30
            )


class TestEnforce:
    def test_strict_raises(self):
        outcome = PollOutcome(False, 5, "paused")
        with pytest.raises(ConvergenceTimeout) as exc:
            enforce(outcome, TimeoutPolicy.STRICT, "replication")
        assert exc.value.outcome is outcome
        assert exc.value.details["last_token"] == "paused"

    def test_lenient_warns(self, caplog):
        outcome = PollOutcome(False, 5, "paused")
        assert enforce(outcome, TimeoutPolicy.LENIENT, "cutover") is outcome
        assert "Timed out waiting for cutover" in caplog.text

    def test_converged_passes_through(self):
        outcome = PollOutcome(True, 1, "ready")
        assert enforce(outcome, TimeoutPolicy.STRICT, "anything") is outcome
