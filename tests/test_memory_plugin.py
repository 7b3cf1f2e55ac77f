import threading

import pytest

from agentic.compress import CompressionError, CompressResult
from agentic.content import Content, LLMRequest, LLMResponse, Part, UsageMetadata
from agentic.memory_plugin import (
    DEFAULT_EMERGENCY_THRESHOLD,
    DEFAULT_THRESHOLD,
    ClientTokenCounter,
    MemoryPlugin,
)
from agentic.memory_state import OOMWarningEvent
from agentic.profile import ModelProfile

BIG_PROFILE = ModelProfile(
    model_id="gemini-2.0-flash", context_window_tokens=1_000_000, max_output_tokens=8_192
)
SMALL_PROFILE = ModelProfile(
    model_id="gemini-2.0-flash", context_window_tokens=1_000, max_output_tokens=10
)


class StubTokenCounter:
    def __init__(self, count=0, error=None):
        self.count = count
        self.error = error

    def count_tokens(self, contents):
        if self.error is not None:
            raise self.error
        return self.count


class StubApiCounter:
    def __init__(self, count=0, error=None):
        self.count = count
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def count_tokens_api(self, model_id, contents):
        with self._lock:
            self.calls += 1
        if self.error is not None:
            raise self.error
        return self.count


class SeqApiCounter:
    def __init__(self, responses):
        self.responses = list(responses)
        self.index = 0

    def count_tokens_api(self, model_id, contents):
        if not self.responses:
            return 0
        if self.index >= len(self.responses):
            return self.responses[-1]
        value = self.responses[self.index]
        self.index += 1
        return value


class StubStrategy:
    def __init__(self, result=None, error=None, candidates=None):
        self.result = result or CompressResult("summary", 100, 20)
        self.error = error
        self.candidates = candidates
        self.compress_calls = 0
        self.captured_turns = None

    def name(self):
        return "stub"

    def select_candidates(self, active_turns, target_reclaim_tokens):
        self.captured_turns = list(active_turns)
        return self.candidates if self.candidates is not None else list(active_turns)

    def compress(self, fork, profile):
        self.compress_calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class SeqStrategy:
    def __init__(self, results, secondary_error=None):
        self.results = results
        self.secondary_error = secondary_error
        self.calls = 0

    def name(self):
        return "seq-stub"

    def select_candidates(self, active_turns, target_reclaim_tokens):
        return list(active_turns)

    def compress(self, fork, profile):
        idx = self.calls
        self.calls += 1
        if idx >= 1 and self.secondary_error is not None:
            raise self.secondary_error
        if idx < len(self.results):
            return self.results[idx]
        return CompressResult("default summary", 100, 50)


class FakeClient:
    def __init__(self, count=0, error=None):
        self.count = count
        self.error = error

    def generate_content(self, model, contents, config):
        raise AssertionError("not used")

    def count_tokens(self, model, contents):
        if self.error is not None:
            raise self.error
        return self.count


def user(text):
    return Content(role="user", parts=[Part(text=text)])


def model_turn(text):
    return Content(role="model", parts=[Part(text=text)])


def make_request(text):
    return LLMRequest(model="gemini-2.0-flash", contents=[user(text)])


def multi_turn_request():
    return LLMRequest(
        model="gemini-2.0-flash",
        contents=[
            user("turn1"),
            model_turn("reply1"),
            user("turn2"),
            model_turn("reply2"),
            user("new message"),
        ],
    )


def make_response(total):
    return LLMResponse(usage_metadata=UsageMetadata(total_token_count=total))


def seed_total(plugin, total):
    plugin.after_model(make_response(total), None)


def big_plugin(tc, ac, strategy=None, threshold=0.80):
    return MemoryPlugin(tc, ac, strategy or StubStrategy(), BIG_PROFILE, threshold, 0)


def small_plugin(tc, ac, strategy, threshold=0.80, emergency=0.90):
    return MemoryPlugin(tc, ac, strategy, SMALL_PROFILE, threshold, emergency)


def oom_event(response):
    assert response is not None
    event = response.custom_metadata["oom_warning"]
    assert isinstance(event, OOMWarningEvent)
    return event


# ---- construction ----


def test_default_threshold_when_zero():
    plugin = big_plugin(StubTokenCounter(), StubApiCounter(), threshold=0.0)
    assert plugin.threshold == DEFAULT_THRESHOLD


def test_custom_threshold_kept():
    plugin = big_plugin(StubTokenCounter(), StubApiCounter(), threshold=0.70)
    assert plugin.threshold == 0.70


def test_default_emergency_threshold_is_90_percent():
    plugin = big_plugin(StubTokenCounter(10), StubApiCounter(10))
    assert plugin.emergency_threshold == DEFAULT_EMERGENCY_THRESHOLD == 0.90


@pytest.mark.parametrize("threshold", [-0.1, -1.0, 1.0, 1.5])
def test_rejects_threshold_out_of_range(threshold):
    with pytest.raises(ValueError):
        MemoryPlugin(
            StubTokenCounter(), StubApiCounter(), StubStrategy(), BIG_PROFILE, threshold, 0
        )


@pytest.mark.parametrize("emergency", [-0.5, 1.0, 2.0])
def test_rejects_emergency_threshold_out_of_range(emergency):
    with pytest.raises(ValueError):
        MemoryPlugin(
            StubTokenCounter(), StubApiCounter(), StubStrategy(), BIG_PROFILE, 0.8, emergency
        )


def test_rejects_missing_strategy():
    with pytest.raises(ValueError):
        MemoryPlugin(StubTokenCounter(), StubApiCounter(), None, BIG_PROFILE, 0.8, 0)


def test_build_plugin_wires_hooks():
    plugin = big_plugin(StubTokenCounter(5), StubApiCounter())
    built = plugin.build_plugin()
    assert built.name == "memory_plugin"
    assert built.before_model(make_request("hi")) is None
    built.after_model(make_response(123), None)
    assert plugin.snapshot().last_total_tokens == 123


# ---- after_model ----


def test_after_model_stores_total():
    plugin = big_plugin(StubTokenCounter(5), StubApiCounter())
    assert plugin.after_model(make_response(5000), None) is None
    assert plugin.snapshot().last_total_tokens == 5000


def test_after_model_keeps_total_when_usage_missing():
    plugin = big_plugin(StubTokenCounter(5), StubApiCounter())
    seed_total(plugin, 3000)
    plugin.after_model(LLMResponse(usage_metadata=None), None)
    assert plugin.snapshot().last_total_tokens == 3000


def test_after_model_keeps_total_when_zero():
    plugin = big_plugin(StubTokenCounter(5), StubApiCounter())
    seed_total(plugin, 4000)
    plugin.after_model(make_response(0), None)
    assert plugin.snapshot().last_total_tokens == 4000


def test_after_model_handles_none_response():
    plugin = big_plugin(StubTokenCounter(), StubApiCounter())
    seed_total(plugin, 5000)
    assert plugin.after_model(None, RuntimeError("model error")) is None
    assert plugin.snapshot().last_total_tokens == 5000


# ---- offline estimate ----


def test_estimated_total_adds_max_output():
    plugin = big_plugin(StubTokenCounter(0), StubApiCounter())
    assert plugin.estimated_total(100_000, 500) == 108_692


def test_estimated_total_first_turn():
    plugin = big_plugin(StubTokenCounter(0), StubApiCounter())
    assert plugin.estimated_total(0, 200) == 8_392


def test_count_msg_tokens_uses_counter():
    plugin = big_plugin(StubTokenCounter(42), StubApiCounter())
    assert plugin.count_msg_tokens([user("hello")]) == 42


def test_count_msg_tokens_falls_back_to_max_output():
    plugin = big_plugin(StubTokenCounter(error=RuntimeError("down")), StubApiCounter())
    assert plugin.count_msg_tokens([user("hello")]) == 8_192


# ---- before_model layers ----


def test_passes_through_below_threshold():
    ac = StubApiCounter()
    plugin = big_plugin(StubTokenCounter(100), ac)
    assert plugin.before_model(make_request("hello world")) is None
    assert ac.calls == 0


def test_never_calls_api_below_threshold_with_history():
    ac = StubApiCounter()
    plugin = big_plugin(StubTokenCounter(50), ac)
    seed_total(plugin, 100_000)
    assert plugin.before_model(make_request("short message")) is None
    assert ac.calls == 0


def test_empty_request_passes_through():
    ac = StubApiCounter()
    plugin = big_plugin(StubTokenCounter(10**9), ac)
    assert plugin.before_model(LLMRequest()) is None
    assert ac.calls == 0


def test_false_alarm_calls_api_once_without_compression():
    ac = StubApiCounter(750_000)
    plugin = big_plugin(StubTokenCounter(3000), ac)
    seed_total(plugin, 790_000)
    assert plugin.before_model(make_request("some long message text")) is None
    assert ac.calls == 1
    snap = plugin.snapshot()
    assert snap.count_tokens_api_call_count == 1
    assert snap.compress_trigger_count == 0


def test_respects_70_percent_threshold():
    ac = StubApiCounter(650_000)
    plugin = big_plugin(StubTokenCounter(3000), ac, threshold=0.70)
    seed_total(plugin, 692_000)
    plugin.before_model(make_request("medium length message"))
    assert ac.calls == 1


def test_tokenizer_error_triggers_api_call():
    ac = StubApiCounter(750_000)
    plugin = big_plugin(StubTokenCounter(error=RuntimeError("unavailable")), ac)
    seed_total(plugin, 795_000)
    assert plugin.before_model(make_request("any message")) is None
    assert ac.calls > 0


def test_api_error_propagates():
    plugin = big_plugin(StubTokenCounter(3000), StubApiCounter(error=RuntimeError("boom")))
    seed_total(plugin, 790_000)
    with pytest.raises(RuntimeError, match="countTokens API"):
        plugin.before_model(make_request("x"))


# ---- compression ----


def test_compression_fires_above_threshold():
    strategy = StubStrategy(CompressResult("compressed summary", 100, 20))
    plugin = big_plugin(StubTokenCounter(3000), StubApiCounter(850_000), strategy)
    seed_total(plugin, 790_000)
    request = multi_turn_request()

    assert plugin.before_model(request) is None
    snap = plugin.snapshot()
    assert snap.compress_trigger_count == 1
    assert strategy.compress_calls == 1
    assert len(snap.subsessions) == 2
    closed, active = snap.subsessions
    assert (closed.end_turn, closed.summary) == (4, "compressed summary")
    assert active.generation == 1 and active.start_turn == 4 and active.is_active()


def test_reclaimed_tokens_recorded():
    strategy = StubStrategy(CompressResult("summary", 200, 40))
    plugin = big_plugin(StubTokenCounter(3000), StubApiCounter(850_000), strategy)
    seed_total(plugin, 790_000)
    request = LLMRequest(
        contents=[user("prior turn"), model_turn("prior reply"), user("msg")]
    )
    plugin.before_model(request)
    assert plugin.snapshot().compress_reclaimed_tokens == [160]


def test_new_user_message_not_in_candidates():
    strategy = StubStrategy()
    plugin = big_plugin(StubTokenCounter(3000), StubApiCounter(850_000), strategy)
    seed_total(plugin, 790_000)
    request = LLMRequest(
        contents=[user("turn1"), model_turn("reply1"), user("brand new user message")]
    )
    plugin.before_model(request)
    assert [t.content for t in strategy.captured_turns] == ["turn1", "reply1"]


def test_request_structure_after_compression():
    summary = "summary of first two turns"
    strategy = StubStrategy(CompressResult(summary, 200, 40))
    plugin = big_plugin(StubTokenCounter(3000), StubApiCounter(850_000), strategy)
    seed_total(plugin, 790_000)
    new_msg = user("new question")
    request = LLMRequest(
        contents=[user("turn1"), model_turn("reply1"), user("turn2"), model_turn("reply2"), new_msg]
    )

    plugin.before_model(request)
    contents = request.contents
    assert contents[-1] is new_msg
    assert sum(1 for c in contents if c is new_msg) == 1
    summary_idx = next(i for i, c in enumerate(contents) if c.text() == summary)
    assert contents[summary_idx].role == "model"
    assert summary_idx < len(contents) - 1
    assert [c.text() for c in contents] == ["continue", summary, "new question"]


def test_compression_metadata_injected_once():
    strategy = StubStrategy(CompressResult("summary", 200, 40))
    plugin = big_plugin(StubTokenCounter(3000), StubApiCounter(850_000), strategy)
    seed_total(plugin, 790_000)
    plugin.before_model(multi_turn_request())

    first = make_response(500)
    plugin.after_model(first, None)
    assert first.custom_metadata["compression"] == {
        "strategy": "stub",
        "candidates": 4,
        "original_tokens": 200,
        "compressed_tokens": 40,
        "reclaimed_tokens": 160,
        "summary_index": 1,
    }
    second = make_response(600)
    plugin.after_model(second, None)
    assert "compression" not in second.custom_metadata


def test_compression_error_propagates():
    strategy = StubStrategy(error=RuntimeError("worker down"))
    plugin = big_plugin(StubTokenCounter(3000), StubApiCounter(850_000), strategy)
    seed_total(plugin, 790_000)
    with pytest.raises(CompressionError, match="compression failed"):
        plugin.before_model(multi_turn_request())


# ---- snapshot ----


def test_snapshot_reports_usage_ratio_and_initial_state():
    plugin = big_plugin(StubTokenCounter(), StubApiCounter())
    seed_total(plugin, 42_000)
    snap = plugin.snapshot()
    assert snap.last_total_tokens == 42_000
    assert snap.usage_ratio == 42_000 / 1_000_000
    assert snap.count_tokens_api_call_count == 0
    assert len(snap.subsessions) == 1
    assert snap.subsessions[0].generation == 0 and snap.subsessions[0].is_active()


def test_snapshot_is_a_copy():
    strategy = StubStrategy(CompressResult("summary", 200, 40))
    plugin = big_plugin(StubTokenCounter(3000), StubApiCounter(850_000), strategy)
    seed_total(plugin, 790_000)
    plugin.before_model(multi_turn_request())
    snap = plugin.snapshot()
    snap.compress_reclaimed_tokens.append(999)
    snap.subsessions[0].summary = "mutated"
    again = plugin.snapshot()
    assert again.compress_reclaimed_tokens == [160]
    assert again.subsessions[0].summary == "summary"


def test_concurrent_before_and_after():
    ac = StubApiCounter()
    plugin = big_plugin(StubTokenCounter(100), ac)
    threads = []
    for n in range(20):
        threads.append(
            threading.Thread(target=plugin.before_model, args=(make_request("concurrent"),))
        )
        threads.append(
            threading.Thread(target=plugin.after_model, args=(make_response(n * 1000), None))
        )
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert plugin.snapshot().last_total_tokens in {n * 1000 for n in range(1, 20)}
    assert ac.calls == 0


# ---- OOM handling ----


def test_secondary_compression_succeeds():
    strategy = SeqStrategy(
        [
            CompressResult("primary summary", 100, 50),
            CompressResult("shorter secondary summary", 50, 10, 0.20),
        ]
    )
    plugin = small_plugin(StubTokenCounter(50), SeqApiCounter([920, 920, 850]), strategy)
    seed_total(plugin, 800)
    request = multi_turn_request()

    assert plugin.before_model(request) is None
    contents = request.contents
    assert len(contents) == 4
    assert (contents[0].role, contents[0].text()) == ("user", "continue")
    assert (contents[1].role, contents[1].text()) == ("model", "shorter secondary summary")
    assert contents[-1].text() == "new message"
    snap = plugin.snapshot()
    assert snap.compress_trigger_count == 2
    assert snap.count_tokens_api_call_count == 3
    assert snap.oom_event_count == 0
    assert [s.generation for s in snap.subsessions] == [0, 1, 2]
    assert snap.subsessions[1].end_turn == 5


def test_oom_warning_when_secondary_insufficient():
    strategy = SeqStrategy(
        [
            CompressResult("primary summary", 100, 80),
            CompressResult("secondary summary", 80, 70, 0.875),
        ]
    )
    plugin = small_plugin(StubTokenCounter(50), SeqApiCounter([920, 950, 940]), strategy)
    seed_total(plugin, 800)

    event = oom_event(plugin.before_model(multi_turn_request()))
    assert event.usage_ratio == pytest.approx(0.95)
    assert event.recommendation == "start a new conversation"
    assert "insufficient" in event.reason
    assert plugin.snapshot().oom_event_count == 1


def test_custom_emergency_threshold():
    strategy = SeqStrategy(
        [
            CompressResult("primary summary", 100, 80),
            CompressResult("secondary summary", 80, 75, 0.9375),
        ]
    )
    plugin = small_plugin(
        StubTokenCounter(50), SeqApiCounter([870, 870, 870]), strategy, 0.80, 0.85
    )
    seed_total(plugin, 800)
    event = oom_event(plugin.before_model(multi_turn_request()))
    assert event.usage_ratio == pytest.approx(0.88)


def test_handle_oom_with_empty_summary():
    ac = StubApiCounter()
    strategy = SeqStrategy([])
    plugin = small_plugin(StubTokenCounter(50), ac, strategy)

    event = oom_event(plugin.handle_oom(multi_turn_request(), 940))
    assert event.recommendation == "start a new conversation"
    assert "SUMMARY segment empty" in event.reason
    assert event.usage_ratio == pytest.approx(0.94)
    assert strategy.calls == 0
    assert ac.calls == 0


def test_oom_warning_when_reduction_below_minimum():
    strategy = SeqStrategy(
        [
            CompressResult("primary summary", 100, 50),
            CompressResult("almost same summary", 100, 97, 0.97),
        ]
    )
    plugin = small_plugin(StubTokenCounter(50), SeqApiCounter([920, 950]), strategy)
    seed_total(plugin, 800)
    request = multi_turn_request()

    event = oom_event(plugin.before_model(request))
    assert "ineffective" in event.reason
    assert [c.text() for c in request.contents] == ["continue", "primary summary", "new message"]
    assert plugin.snapshot().compress_trigger_count == 1


def test_oom_warning_when_secondary_compression_fails():
    strategy = SeqStrategy(
        [CompressResult("primary summary", 100, 50)],
        secondary_error=RuntimeError("compress worker unavailable"),
    )
    plugin = small_plugin(StubTokenCounter(50), SeqApiCounter([920, 950]), strategy)
    seed_total(plugin, 800)

    event = oom_event(plugin.before_model(multi_turn_request()))
    assert "compress worker unavailable" in event.reason
    assert plugin.snapshot().oom_event_count == 1


def test_oom_event_count_increments():
    strategy = SeqStrategy(
        [
            CompressResult("primary summary", 100, 50),
            CompressResult("secondary summary", 80, 50, 0.625),
        ]
    )
    plugin = small_plugin(StubTokenCounter(50), SeqApiCounter([920, 950, 940]), strategy)
    seed_total(plugin, 800)
    assert plugin.before_model(multi_turn_request()) is not None
    assert plugin.snapshot().oom_event_count == 1


# ---- client counter ----


def test_client_token_counter_returns_client_count():
    counter = ClientTokenCounter(FakeClient(count=321))
    assert counter.count_tokens_api("gemini-2.0-flash", [user("x")]) == 321


def test_client_token_counter_wraps_errors():
    counter = ClientTokenCounter(FakeClient(error=OSError("network")))
    with pytest.raises(RuntimeError, match="countTokens API: network"):
        counter.count_tokens_api("gemini-2.0-flash", [user("x")])