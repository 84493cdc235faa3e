"""Submit, poll and resolve behaviour of the image job workflow."""

import asyncio

import pytest
from tenacity import RetryCallState

from metrotex.config import HordeConfig
from metrotex.errors import (
    InvalidRequest,
    JobCancelled,
    JobTimeout,
    NoWorkerAvailable,
    ProviderFault,
    RateLimited,
    ServiceUnavailable,
    UpstreamUnavailable,
)
from metrotex.image_jobs import (
    Cancelled,
    Done,
    Faulted,
    GenerationRequest,
    JobHandle,
    JobSubmitter,
    Pending,
    ResultPayload,
    StatusPoller,
    TimedOut,
    poll_wait,
    resolve,
)


def _done(url="https://x/1.png", model="stable_diffusion"):
    return Done(ResultPayload(image_url=url, model_used=model))


class TestGenerationRequest:
    def test_empty_prompt_is_invalid(self):
        with pytest.raises(InvalidRequest, match="Prompt required"):
            GenerationRequest(prompt="")

    def test_whitespace_prompt_is_invalid(self):
        with pytest.raises(InvalidRequest):
            GenerationRequest(prompt="   ")

    def test_explicit_models_become_single_model_groups(self):
        request = GenerationRequest(prompt="cat", models=("a", "b"))
        assert request.model_groups((("x", "y"),)) == (("a",), ("b",))

    def test_configured_groups_used_by_default(self):
        request = GenerationRequest(prompt="cat")
        assert request.model_groups((("x", "y"), ("z",))) == (("x", "y"), ("z",))


class TestJobStatus:
    def test_done_requires_image_url(self):
        with pytest.raises(ValueError):
            Done(ResultPayload(image_url="", model_used="m"))

    def test_faulted_always_has_reason(self):
        assert Faulted("").reason == "Generation faulted"
        assert Faulted("NSFW filter triggered").reason == "NSFW filter triggered"


class TestJobSubmitter:
    @pytest.mark.asyncio
    async def test_empty_group_list_is_service_unavailable(self, fake_horde):
        submitter = JobSubmitter(fake_horde, HordeConfig(model_groups=()))
        with pytest.raises(ServiceUnavailable):
            await submitter.submit(GenerationRequest(prompt="a red bicycle"))
        assert fake_horde.submitted == []

    @pytest.mark.asyncio
    async def test_no_worker_falls_back_to_next_group(self, fake_horde, horde_config):
        fake_horde.submit_results = [NoWorkerAvailable("no worker for A"), "job-b"]
        handle = await JobSubmitter(fake_horde, horde_config).submit(GenerationRequest(prompt="a red bicycle"))
        assert handle == JobHandle(job_id="job-b", models=("Deliberate",))
        assert [models for _, models in fake_horde.submitted] == [("stable_diffusion",), ("Deliberate",)]

    @pytest.mark.asyncio
    async def test_upstream_outage_is_soft(self, fake_horde, horde_config):
        fake_horde.submit_results = [UpstreamUnavailable("502"), "job-b"]
        handle = await JobSubmitter(fake_horde, horde_config).submit(GenerationRequest(prompt="cat"))
        assert handle.job_id == "job-b"

    @pytest.mark.asyncio
    async def test_hard_error_stops_fallback(self, fake_horde, horde_config):
        fake_horde.submit_results = [InvalidRequest("Input payload validation failed"), "job-b"]
        with pytest.raises(InvalidRequest, match="Input payload validation failed"):
            await JobSubmitter(fake_horde, horde_config).submit(GenerationRequest(prompt="cat"))
        assert len(fake_horde.submitted) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_is_surfaced(self, fake_horde, horde_config):
        fake_horde.submit_results = [RateLimited("10 per 1 minute")]
        with pytest.raises(RateLimited):
            await JobSubmitter(fake_horde, horde_config).submit(GenerationRequest(prompt="cat"))

    @pytest.mark.asyncio
    async def test_all_groups_busy(self, fake_horde, horde_config):
        fake_horde.submit_results = [NoWorkerAvailable("a"), NoWorkerAvailable("b")]
        with pytest.raises(ServiceUnavailable):
            await JobSubmitter(fake_horde, horde_config).submit(GenerationRequest(prompt="cat"))


class TestStatusPoller:
    @pytest.mark.asyncio
    async def test_red_bicycle_completes_after_two_pending_polls(self, fake_horde, horde_config):
        fake_horde.statuses = [Pending(queue_position=3), Pending(queue_position=3), _done()]
        handle = JobHandle(job_id="job-1", models=("stable_diffusion",))
        outcome = await StatusPoller(fake_horde, horde_config).poll(handle)
        assert outcome == _done()
        assert resolve(outcome) == ResultPayload(image_url="https://x/1.png", model_used="stable_diffusion")
        assert fake_horde.status_calls == ["job-1"] * 3

    @pytest.mark.asyncio
    async def test_fault_on_first_poll(self, fake_horde, horde_config):
        fake_horde.statuses = [Faulted("NSFW filter triggered")]
        outcome = await StatusPoller(fake_horde, horde_config).poll(JobHandle(job_id="job-1"))
        assert outcome == Faulted("NSFW filter triggered")
        with pytest.raises(ProviderFault, match="NSFW filter triggered") as excinfo:
            resolve(outcome)
        assert excinfo.value.status_code == 500

    @pytest.mark.asyncio
    async def test_times_out_after_exact_attempt_budget(self, fake_horde, horde_config):
        fake_horde.statuses = [Pending(queue_position=9)]
        outcome = await StatusPoller(fake_horde, horde_config).poll(JobHandle(job_id="job-1"))
        assert outcome == TimedOut(attempts=horde_config.max_attempts)
        assert len(fake_horde.status_calls) == horde_config.max_attempts

    @pytest.mark.asyncio
    async def test_transient_status_error_counts_as_pending(self, fake_horde, horde_config):
        fake_horde.statuses = [UpstreamUnavailable("timeout"), _done()]
        outcome = await StatusPoller(fake_horde, horde_config).poll(JobHandle(job_id="job-1"))
        assert isinstance(outcome, Done)
        assert len(fake_horde.status_calls) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_during_poll_propagates(self, fake_horde, horde_config):
        fake_horde.statuses = [RateLimited("slow down")]
        with pytest.raises(RateLimited):
            await StatusPoller(fake_horde, horde_config).poll(JobHandle(job_id="job-1"))

    @pytest.mark.asyncio
    async def test_missing_model_falls_back_to_accepted_group(self, fake_horde, horde_config):
        fake_horde.statuses = [_done(model="")]
        handle = JobHandle(job_id="job-1", models=("Deliberate",))
        outcome = await StatusPoller(fake_horde, horde_config).poll(handle)
        assert outcome.result.model_used == "Deliberate"

    @pytest.mark.asyncio
    async def test_cancel_before_first_poll(self, fake_horde, horde_config):
        cancel = asyncio.Event()
        cancel.set()
        outcome = await StatusPoller(fake_horde, horde_config).poll(JobHandle(job_id="job-1"), cancel=cancel)
        assert outcome == Cancelled(attempts=0)
        assert fake_horde.status_calls == []

    @pytest.mark.asyncio
    async def test_cancel_interrupts_sleep(self, fake_horde):
        config = HordeConfig(poll_interval=30.0, max_attempts=10)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)
        outcome = await asyncio.wait_for(
            StatusPoller(fake_horde, config).poll(JobHandle(job_id="job-1"), cancel=cancel),
            timeout=5,
        )
        assert outcome == Cancelled(attempts=1)

    @pytest.mark.asyncio
    async def test_deadline_in_the_past_times_out(self, fake_horde, horde_config):
        deadline = asyncio.get_running_loop().time() - 1
        outcome = await StatusPoller(fake_horde, horde_config).poll(JobHandle(job_id="job-1"), deadline=deadline)
        assert outcome == TimedOut(attempts=0)

    @pytest.mark.asyncio
    async def test_check_after_done_returns_same_result(self, fake_horde, horde_config):
        fake_horde.statuses = [_done()]
        poller = StatusPoller(fake_horde, horde_config)
        first = await poller.check(JobHandle(job_id="job-1"))
        second = await poller.check(JobHandle(job_id="job-1"))
        assert first == second == _done()


class TestResolve:
    def test_timeout_suggests_resubmitting(self):
        with pytest.raises(JobTimeout, match="resubmit") as excinfo:
            resolve(TimedOut(attempts=45))
        assert excinfo.value.status_code == 504
        assert "45" in excinfo.value.message

    def test_cancelled(self):
        with pytest.raises(JobCancelled):
            resolve(Cancelled(attempts=2))

    def test_pending_is_not_terminal(self):
        with pytest.raises(TypeError):
            resolve(Pending())


def _delays(wait, count):
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    delays = []
    for attempt in range(1, count + 1):
        state.attempt_number = attempt
        delays.append(wait(state))
    return delays


class TestPollWait:
    def test_grows_to_ceiling(self):
        config = HordeConfig(poll_interval=2.0, poll_backoff=2.0, max_poll_interval=5.0)
        assert _delays(poll_wait(config), 4) == [2.0, 4.0, 5.0, 5.0]

    def test_fixed_interval_by_default(self):
        assert _delays(poll_wait(HordeConfig()), 3) == [2.0, 2.0, 2.0]

    def test_interval_above_ceiling_is_not_clamped(self):
        config = HordeConfig(poll_interval=15.0, max_poll_interval=10.0)
        assert _delays(poll_wait(config), 2) == [15.0, 15.0]

    def test_jitter_adds_bounded_extra(self):
        config = HordeConfig(poll_interval=2.0, poll_jitter=1.0)
        for delay in _delays(poll_wait(config), 20):
            assert 2.0 <= delay <= 3.0

    @pytest.mark.asyncio
    async def test_poller_sleeps_between_checks_only(self, fake_horde, mocker):
        sleeps = mocker.patch("metrotex.image_jobs._wait_or_cancel", return_value=False)
        config = HordeConfig(poll_interval=2.0, poll_backoff=2.0, max_poll_interval=5.0, max_attempts=4)
        fake_horde.statuses = [Pending()]

        outcome = await StatusPoller(fake_horde, config).poll(JobHandle(job_id="job-1"))

        assert outcome == TimedOut(attempts=4)
        assert [c.args[0] for c in sleeps.call_args_list] == [2.0, 4.0, 5.0]
