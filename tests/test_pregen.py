"""Tests for speculative pre-generation."""

from __future__ import annotations

import threading
import time

import pytest

from slidegraph.engine.cancel import GenerationCancelled
from slidegraph.engine.pregen import (
    CONTINUE_PROMPT,
    PregenClaimError,
    PregenCoordinator,
    PregenJob,
)
from slidegraph.models import SlideEvent, SlidePartialEvent, Slide
from tests.helpers import FakeLauncher, make_slide


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def coordinator(launcher):
    c = PregenCoordinator(launcher, max_workers=8)
    yield c
    c.shutdown()


class TestPregenerate:
    def test_one_job_per_action_plus_continue(self, coordinator, launcher):
        jobs = coordinator.pregenerate("A", make_slide(prompts=("why", "how")), [])
        assert [j.prompt for j in jobs] == ["why", "how", CONTINUE_PROMPT]
        assert coordinator.current_node_id == "A"
        assert _wait_for(lambda: len(launcher.started) == 3)

    def test_duplicate_prompts_share_a_job(self, coordinator):
        jobs = coordinator.pregenerate("A", make_slide(prompts=("why", "why")), [], include_continue=False)
        assert [j.prompt for j in jobs] == ["why"]

    def test_continue_skipped_when_main_child_exists(self, coordinator):
        jobs = coordinator.pregenerate("A", make_slide(prompts=("why",)), [], include_continue=False)
        assert CONTINUE_PROMPT not in [j.prompt for j in jobs]

    def test_completed_job_exposes_cached_result(self, coordinator, launcher):
        coordinator.pregenerate("A", make_slide(prompts=("why",)), [], include_continue=False)
        launcher.release("why")
        job = coordinator.get("A", "why")
        assert job.wait(2.0).slide.title == "Re: why"
        assert job.is_complete
        assert job.cached_slide.title == "Re: why"
        assert job.cached_history == ()

    def test_repregenerate_cancels_previous_set(self, coordinator, launcher):
        first = coordinator.pregenerate("A", make_slide(prompts=("why",)), [], include_continue=False)
        coordinator.pregenerate("B", make_slide(prompts=("how",)), [], include_continue=False)
        assert first[0].cancel.cancelled
        assert coordinator.get("A", "why") is None
        assert coordinator.get("B", "how") is not None


class TestClaim:
    def test_claim_hit(self, coordinator):
        coordinator.pregenerate("A", make_slide(prompts=("why",)), [])
        job = coordinator.claim("A", "why")
        assert job is not None
        assert job.is_claimed

    def test_second_claim_raises(self, coordinator):
        coordinator.pregenerate("A", make_slide(prompts=("why",)), [])
        coordinator.claim("A", "why")
        with pytest.raises(PregenClaimError):
            coordinator.claim("A", "why")

    def test_concurrent_claims_exactly_one_wins(self, coordinator):
        coordinator.pregenerate("A", make_slide(prompts=("why",)), [])
        barrier = threading.Barrier(8)
        outcomes = []
        lock = threading.Lock()

        def attempt():
            barrier.wait()
            try:
                coordinator.claim("A", "why")
                outcome = "won"
            except PregenClaimError:
                outcome = "lost"
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sorted(outcomes) == ["lost"] * 7 + ["won"]

    def test_stale_node_invalidates(self, coordinator, launcher):
        jobs = coordinator.pregenerate("A", make_slide(prompts=("why",)), [])
        assert _wait_for(lambda: "why" in launcher.cancels)
        assert coordinator.claim("B", "why") is None
        assert launcher.cancels["why"].cancelled
        assert all(j.cancel.cancelled for j in jobs)
        assert coordinator.get("A", "why") is None
        assert coordinator.current_node_id is None
        with pytest.raises(GenerationCancelled):
            jobs[0].wait(2.0)

    def test_unknown_prompt_invalidates(self, coordinator):
        jobs = coordinator.pregenerate("A", make_slide(prompts=("why",)), [])
        assert coordinator.claim("A", "something else") is None
        assert jobs[0].cancel.cancelled


class TestEvents:
    def test_listener_receives_tagged_events(self, launcher):
        received = []
        lock = threading.Lock()

        def listener(prompt, event):
            with lock:
                received.append((prompt, event.type))

        c = PregenCoordinator(launcher, listener=listener)
        try:
            c.pregenerate("A", make_slide(prompts=("why",)), [], include_continue=False)
            launcher.release("why")
            c.get("A", "why").wait(2.0)
        finally:
            c.shutdown()
        assert ("why", "slide_partial") in received
        assert ("why", "slide") in received

    def test_late_subscriber_gets_latest_partial(self, coordinator, launcher):
        coordinator.pregenerate("A", make_slide(prompts=("why",)), [], include_continue=False)
        job = coordinator.get("A", "why")
        assert _wait_for(lambda: "why" in launcher.started)
        assert _wait_for(lambda: job._latest_partial is not None)

        seen = []
        job.subscribe(lambda prompt, event: seen.append(event))
        assert isinstance(seen[0], SlidePartialEvent)

        launcher.release("why")
        job.wait(2.0)
        assert isinstance(seen[-1], SlideEvent)

    def test_replayed_partial_delivered_before_concurrent_emit(self):
        job = PregenJob("why", "A")
        old = SlidePartialEvent(slide=Slide(id="s", title="old"))
        new = SlidePartialEvent(slide=Slide(id="s", title="new"))
        job.emit(old)

        seen = []
        worker = threading.Thread(target=job.emit, args=(new,))

        def listener(prompt, event):
            if event is old:
                # A worker emitting mid-replay must wait for the replay to finish
                worker.start()
                worker.join(0.2)
            seen.append(event.slide.title)

        job.subscribe(listener)
        worker.join(2.0)
        assert seen == ["old", "new"]

    def test_cancel_during_delivery_stops_later_events(self):
        job = PregenJob("why", "A")
        seen = []

        def listener(prompt, event):
            seen.append(event.slide.title)
            job.cancel.cancel()

        job.subscribe(listener)
        job.emit(SlidePartialEvent(slide=Slide(id="s", title="first")))
        job.emit(SlidePartialEvent(slide=Slide(id="s", title="second")))
        assert seen == ["first"]

    def test_cancelled_job_emits_nothing(self):
        job = PregenJob("why", "A")
        seen = []
        job.subscribe(lambda prompt, event: seen.append(event))
        job.cancel.cancel()
        job.emit(SlidePartialEvent(slide=Slide(id="s")))
        assert seen == []


class TestShutdown:
    def test_submit_after_shutdown_fails_job(self, launcher):
        c = PregenCoordinator(launcher)
        c.shutdown()
        jobs = c.pregenerate("A", make_slide(prompts=("why",)), [], include_continue=False)
        assert jobs[0].cancel.cancelled
        with pytest.raises(RuntimeError):
            jobs[0].wait(1.0)
