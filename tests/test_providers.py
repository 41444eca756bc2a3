"""Tests for parley.providers - orchestration, fault isolation and strategy selection."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from parley.clients.elevenlabs_client import ElevenLabsClient
from parley.clients.vapi_client import VapiClient
from parley.errors import (
    ConfigurationError,
    ProviderAPIError,
    QueueShutdownError,
    RateLimitError,
)
from parley.llm.base import BaseLLMAdapter, LLMCompletion, TokenUsage
from parley.llm.registry import build_llm_tasks
from parley.llm.tasks import ConversationGenerator, CriterionJudge
from parley.models.config import (
    ElevenLabsSettings,
    QueueSettings,
    VapiSettings,
    ViernesSettings,
)
from parley.models.definition import TestDefinition
from parley.models.result import ConversationTurn, CriterionOutcome, EvaluationResult, TestResult
from parley.providers.base import BaseProvider
from parley.providers.chat_vapi_provider import ChatVapiProvider
from parley.providers.elevenlabs_provider import ElevenLabsProvider
from parley.providers.registry import available_providers, determine_provider, get_provider
from parley.providers.vapi_provider import VapiEvalsProvider
from parley.providers.viernes_provider import ViernesProvider
from parley.storage.conversation_cache import ConversationCache


def _make_test(name: str = "t1", **overrides) -> TestDefinition:
    data = {
        "name": name,
        "agent_id": "42",
        "simulated_user": {"prompt": "A customer", "first_message": "Hi"},
        "evaluation_criteria": [{"id": "c1", "name": "Greets", "prompt": "Agent greets"}],
    }
    data.update(overrides)
    return TestDefinition.model_validate(data)


def _ok_result(test: TestDefinition, provider: str = "stub") -> TestResult:
    return TestResult(
        test_name=test.name,
        agent_id=test.agent_id,
        provider=provider,
        success=True,
        call_successful=True,
        evaluation_results={
            "c1": EvaluationResult(criteria_id="c1", result=CriterionOutcome.success)
        },
    )


class _StubProvider(BaseProvider):
    """Provider whose per-test behaviour is scripted by name."""

    name = "stub"

    def __init__(self, delays: dict[str, float] | None = None, errors: dict[str, Exception] | None = None):
        super().__init__()
        self.delays = delays or {}
        self.errors = errors or {}
        self.completed: list[str] = []

    def is_configured(self) -> bool:
        return True

    async def _execute(self, test: TestDefinition) -> TestResult:
        await asyncio.sleep(self.delays.get(test.name, 0))
        if test.name in self.errors:
            raise self.errors[test.name]
        self.completed.append(test.name)
        return _ok_result(test)


class TestBaseProvider:
    """Test execute_test error mapping and execute_batch ordering."""

    @pytest.mark.asyncio
    async def test_batch_preserves_input_order(self):
        tests = [_make_test(f"t{i}") for i in range(4)]
        provider = _StubProvider(delays={"t0": 0.04, "t1": 0.03, "t2": 0.02, "t3": 0.01})
        results = await provider.execute_batch(tests)

        assert [r.test_name for r in results] == ["t0", "t1", "t2", "t3"]
        assert provider.completed == ["t3", "t2", "t1", "t0"]

    @pytest.mark.asyncio
    async def test_one_failure_isolated(self):
        tests = [_make_test("a"), _make_test("b"), _make_test("c")]
        provider = _StubProvider(errors={"b": ProviderAPIError("boom (HTTP 500)", status_code=500)})
        results = await provider.execute_batch(tests)

        assert [r.success for r in results] == [True, False, True]
        assert results[1].error == "boom (HTTP 500)"
        assert results[1].error_kind == "provider_api"
        assert results[1].transcript_summary == "Test failed: boom (HTTP 500)"

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_failed_result(self):
        provider = _StubProvider(errors={"t1": KeyError("missing")})
        result = await provider.execute_test(_make_test())
        assert result.success is False
        assert result.error_kind == "KeyError"

    @pytest.mark.asyncio
    async def test_validation_error_raised_before_execution(self):
        provider = _StubProvider()
        test = _make_test(simulated_user={"prompt": "", "first_message": "Hi"})
        with pytest.raises(ConfigurationError, match="simulated_user.prompt is required"):
            await provider.execute_test(test)
        assert provider.completed == []

    @pytest.mark.asyncio
    async def test_validation_error_in_batch_becomes_failed_result(self):
        provider = _StubProvider()
        bad = _make_test("bad", simulated_user={"prompt": "p", "first_message": ""})
        results = await provider.execute_batch([_make_test("good"), bad])
        assert results[0].success is True
        assert results[1].error_kind == "configuration"

    @pytest.mark.asyncio
    async def test_queue_shutdown_propagates(self):
        provider = _StubProvider(errors={"t1": QueueShutdownError("stopping")})
        with pytest.raises(QueueShutdownError):
            await provider.execute_batch([_make_test()])

    def test_info(self):
        info = _StubProvider().info()
        assert info == {
            "name": "stub",
            "version": "1.0.0",
            "capabilities": ["basic-testing"],
            "configured": True,
        }


# ---------------------------------------------------------------------------
# Viernes
# ---------------------------------------------------------------------------


def _viernes_response() -> dict:
    return {
        "simulation_id": "sim-1",
        "status": "completed",
        "duration_secs": 2.0,
        "transcript": [
            {"role": "user", "message": "Hi"},
            {"role": "agent", "message": "Hello!"},
        ],
        "analysis": {
            "call_successful": "success",
            "evaluation_criteria_results": [
                {"criterion_id": "c1", "success": True, "rationale": "Greeted"}
            ],
        },
    }


class _StubViernesClient:
    """Rate-limits the first ``rejections`` calls, then succeeds."""

    def __init__(self, rejections: int = 0) -> None:
        self.rejections = rejections
        self.requests: list[dict] = []

    async def simulate_conversation(self, request, on_progress=None):
        self.requests.append(request)
        if len(self.requests) <= self.rejections:
            raise RateLimitError("concurrency limit exceeded", details={"limits": {"max": 3}})
        return _viernes_response()

    async def aclose(self) -> None:
        return None


def _viernes_settings(**queue_overrides) -> ViernesSettings:
    queue = {"base_delay_ms": 0, "max_delay_ms": 0, **queue_overrides}
    return ViernesSettings(api_key="vk", organization_id=7, queue=QueueSettings(**queue))


class TestViernesProvider:
    """Test the queued Viernes provider."""

    @pytest.mark.asyncio
    async def test_rate_limited_simulation_retried(self):
        client = _StubViernesClient(rejections=2)
        provider = ViernesProvider(_viernes_settings(), client=client)
        result = await provider.execute_test(_make_test())

        assert result.success is True
        assert result.agent_id == "42"
        assert len(client.requests) == 3
        assert client.requests[0]["organization_id"] == 7
        assert client.requests[0]["agent_id"] == 42

    @pytest.mark.asyncio
    async def test_exhausted_retries_become_failed_result(self):
        client = _StubViernesClient(rejections=99)
        provider = ViernesProvider(_viernes_settings(max_attempts=2), client=client)
        result = await provider.execute_test(_make_test())

        assert result.success is False
        assert result.error_kind == "retries_exhausted"
        assert len(client.requests) == 3

    @pytest.mark.asyncio
    async def test_test_overrides_win(self):
        client = _StubViernesClient()
        provider = ViernesProvider(_viernes_settings(), client=client)
        await provider.execute_test(_make_test(viernes={"organization_id": 9, "agent_id": 5}))
        assert client.requests[0]["organization_id"] == 9
        assert client.requests[0]["agent_id"] == 5

    @pytest.mark.asyncio
    async def test_non_numeric_agent_id_rejected_before_io(self):
        client = _StubViernesClient()
        provider = ViernesProvider(_viernes_settings(), client=client)
        with pytest.raises(ConfigurationError, match="agent_id must be a valid number"):
            await provider.execute_test(_make_test(agent_id="abc"))
        assert client.requests == []

    @pytest.mark.asyncio
    async def test_missing_organization_rejected(self):
        client = _StubViernesClient()
        provider = ViernesProvider(ViernesSettings(api_key="vk"), client=client)
        assert provider.is_configured() is False
        with pytest.raises(ConfigurationError, match="organization_id is required"):
            await provider.execute_test(_make_test())

    @pytest.mark.asyncio
    async def test_shutdown_rejects_in_progress_batch(self):
        client = _StubViernesClient(rejections=99)
        settings = ViernesSettings(
            api_key="vk",
            organization_id=7,
            queue=QueueSettings(base_delay_ms=60_000, max_delay_ms=60_000),
        )
        provider = ViernesProvider(settings, client=client)
        task = asyncio.ensure_future(provider.execute_batch([_make_test("a"), _make_test("b")]))
        await asyncio.sleep(0.01)

        assert provider.shutdown("stopping") == 2
        with pytest.raises(QueueShutdownError):
            await task


# ---------------------------------------------------------------------------
# Vapi Evals
# ---------------------------------------------------------------------------


def _vapi_run(status: str = "pass") -> dict:
    return {
        "id": "run-1",
        "status": "ended",
        "results": [
            {
                "status": status,
                "messages": [
                    {"role": "user", "content": "Hi"},
                    {"role": "assistant", "content": "Hello!", "judge": {"status": status}},
                ],
            }
        ],
    }


def _vapi_client() -> AsyncMock:
    client = AsyncMock(spec=VapiClient)
    client.get_assistant_id.side_effect = lambda override=None: override or "asst-default"
    client.run_eval.return_value = "run-1"
    client.create_eval.return_value = {"id": "eval-1"}
    client.poll_eval_run.return_value = _vapi_run()
    return client


def _generator(turns: list[ConversationTurn] | None = None) -> AsyncMock:
    generator = AsyncMock(spec=ConversationGenerator)
    generator.generate_transcript.return_value = turns or [
        ConversationTurn(role="user", message="Hi"),
        ConversationTurn(role="agent", message="Hello!"),
    ]
    return generator


class TestVapiEvalsProvider:
    """Test the Evals-based Vapi strategy."""

    def _provider(self, tmp_path, client=None, generator=None, **settings) -> VapiEvalsProvider:
        data = {"api_key": "pk", "assistant_id": "asst-default", **settings}
        return VapiEvalsProvider(
            VapiSettings(**data),
            client=client or _vapi_client(),
            generator=generator or _generator(),
            cache=ConversationCache(tmp_path / "cache"),
        )

    @pytest.mark.asyncio
    async def test_scripted_turns_skip_generation(self, tmp_path):
        client = _vapi_client()
        generator = _generator()
        provider = self._provider(tmp_path, client, generator)
        test = _make_test(
            vapi={"conversation_turns": [{"role": "user", "message": "Scripted hello"}]}
        )
        result = await provider.execute_test(test)

        assert result.success is True
        generator.generate_transcript.assert_not_awaited()
        dto = client.run_eval.call_args.kwargs["eval_dto"]
        assert dto["messages"][0] == {"role": "user", "content": "Scripted hello"}
        assert client.run_eval.call_args.kwargs["assistant_id"] == "asst-default"

    @pytest.mark.asyncio
    async def test_generated_conversation_is_cached(self, tmp_path):
        first_generator = _generator()
        provider = self._provider(tmp_path, generator=first_generator)
        await provider.execute_test(_make_test())
        first_generator.generate_transcript.assert_awaited_once()

        second_generator = _generator()
        provider = self._provider(tmp_path, generator=second_generator)
        result = await provider.execute_test(_make_test())
        second_generator.generate_transcript.assert_not_awaited()
        assert result.success is True

    @pytest.mark.asyncio
    async def test_persistent_eval_created_then_run(self, tmp_path):
        client = _vapi_client()
        provider = self._provider(tmp_path, client)
        await provider.execute_test(
            _make_test(vapi={"persistent_eval": True, "assistant_id": "asst-x"})
        )
        client.create_eval.assert_awaited_once()
        assert client.run_eval.call_args.kwargs == {"eval_id": "eval-1", "assistant_id": "asst-x"}

    @pytest.mark.asyncio
    async def test_missing_assistant_rejected_before_io(self, tmp_path):
        client = _vapi_client()
        provider = self._provider(tmp_path, client, assistant_id=None)
        with pytest.raises(ConfigurationError, match="vapi.assistant_id"):
            await provider.execute_test(_make_test())
        client.run_eval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_criteria_required(self, tmp_path):
        provider = self._provider(tmp_path)
        with pytest.raises(ConfigurationError, match="at least one evaluation criterion"):
            await provider.execute_test(_make_test(evaluation_criteria=[]))

    @pytest.mark.asyncio
    async def test_attempts_run_sequentially(self, tmp_path):
        client = _vapi_client()
        client.poll_eval_run.side_effect = [_vapi_run("pass"), _vapi_run("fail"), _vapi_run("pass")]
        provider = self._provider(tmp_path, client)
        results = await provider.execute_with_attempts(_make_test(vapi={"attempts": 3}))

        assert [r.success for r in results] == [True, False, True]
        assert client.run_eval.await_count == 3

    @pytest.mark.asyncio
    async def test_batch_in_chunks_keeps_order(self, tmp_path):
        provider = self._provider(tmp_path)
        tests = [_make_test(f"t{i}") for i in range(5)]
        results = await provider.execute_batch(tests)
        assert [r.test_name for r in results] == ["t0", "t1", "t2", "t3", "t4"]

    @pytest.mark.asyncio
    async def test_poll_timeout_becomes_failed_result(self, tmp_path):
        client = _vapi_client()
        client.poll_eval_run.side_effect = ProviderAPIError("timeout", status_code=408)
        provider = self._provider(tmp_path, client)
        result = await provider.execute_test(_make_test())
        assert result.error_kind == "provider_api"
        assert result.agent_id == "asst-default"


# ---------------------------------------------------------------------------
# Vapi chat
# ---------------------------------------------------------------------------


def _chat_response() -> dict:
    return {
        "messages": [
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello!"},
            {"role": "user", "content": "Book it"},
            {"role": "assistant", "content": "Done."},
        ],
        "total_cost": 0.02,
        "last_chat_id": "chat-2",
    }


class TestChatVapiProvider:
    """Test the chat-based Vapi strategy."""

    def _provider(self, client, judge, **settings) -> ChatVapiProvider:
        generator = AsyncMock(spec=ConversationGenerator)
        generator.generate_user_messages.return_value = ["Hi", "Book it"]
        data = {"api_key": "pk", "use_chat_api": True, **settings}
        return ChatVapiProvider(VapiSettings(**data), client=client, generator=generator, judge=judge)

    @pytest.mark.asyncio
    async def test_chat_then_judge(self):
        client = AsyncMock(spec=VapiClient)
        client.run_multi_turn_conversation.return_value = _chat_response()
        judge = AsyncMock(spec=CriterionJudge)
        judge.judge_all.return_value = {
            "c1": EvaluationResult(criteria_id="c1", result=CriterionOutcome.success, rationale="ok")
        }
        provider = self._provider(client, judge)
        result = await provider.execute_test(_make_test(agent_id="asst-1"))

        client.run_multi_turn_conversation.assert_awaited_once_with(
            "asst-1", ["Hi", "Book it"], name="t1"
        )
        turns = judge.judge_all.call_args.args[1]
        assert len(turns) == 4
        assert result.success is True
        assert result.provider_cost == pytest.approx(0.02)
        assert result.conversation_source == "generated"

    @pytest.mark.asyncio
    async def test_failing_judge_yields_unknown(self):
        client = AsyncMock(spec=VapiClient)
        client.run_multi_turn_conversation.return_value = _chat_response()
        llm = AsyncMock(spec=BaseLLMAdapter)
        llm.complete.side_effect = RuntimeError("judge offline")
        provider = self._provider(client, CriterionJudge(llm, model="gpt-4o"))
        result = await provider.execute_test(_make_test(agent_id="asst-1"))

        assert result.error is None
        assert result.success is False
        assert result.evaluation_results["c1"].result is CriterionOutcome.unknown
        assert result.evaluation_results["c1"].rationale == "Evaluation failed: judge offline"

    @pytest.mark.asyncio
    async def test_judge_built_from_settings_when_not_given(self, monkeypatch):
        llm = AsyncMock(spec=BaseLLMAdapter)
        llm.complete.return_value = LLMCompletion(
            content="RESULT: pass\nREASONING: Greeted the user", usage=TokenUsage()
        )
        monkeypatch.setattr(
            "parley.providers.chat_vapi_provider.build_llm_tasks",
            lambda settings: build_llm_tasks(settings, llm),
        )
        client = AsyncMock(spec=VapiClient)
        client.run_multi_turn_conversation.return_value = _chat_response()
        provider = self._provider(client, None, judge_model="gpt-4o-mini")

        result = await provider.execute_test(_make_test(agent_id="asst-1"))

        assert result.success is True
        assert result.evaluation_results["c1"].rationale == "Greeted the user"
        assert llm.complete.await_args.args[1].model == "gpt-4o-mini"

    def test_configured_needs_key_and_llm(self):
        client = AsyncMock(spec=VapiClient)
        assert self._provider(client, None).is_configured() is True
        assert self._provider(client, None, llm_adapter="").is_configured() is False

    @pytest.mark.asyncio
    async def test_assistant_required(self):
        provider = self._provider(AsyncMock(spec=VapiClient), None)
        with pytest.raises(ConfigurationError):
            await provider.execute_test(_make_test(agent_id=""))


# ---------------------------------------------------------------------------
# ElevenLabs
# ---------------------------------------------------------------------------


class TestElevenLabsProvider:
    """Test the ElevenLabs provider."""

    def _client(self) -> AsyncMock:
        client = AsyncMock(spec=ElevenLabsClient)
        client.simulate_conversation.return_value = {
            "simulated_conversation": [
                {"role": "user", "message": "Hi"},
                {"role": "agent", "message": "Hello!"},
            ],
            "analysis": {
                "call_successful": "success",
                "evaluation_criteria_results": {"c1": {"result": "success", "rationale": "ok"}},
            },
        }
        return client

    @pytest.mark.asyncio
    async def test_simulates_against_agent(self):
        client = self._client()
        provider = ElevenLabsProvider(ElevenLabsSettings(api_key="xi"), client=client)
        result = await provider.execute_test(_make_test(agent_id="agent_abc"))

        assert result.success is True
        agent_id, body = client.simulate_conversation.call_args.args
        assert agent_id == "agent_abc"
        assert "simulation_specification" in body

    @pytest.mark.asyncio
    async def test_agent_id_required(self):
        client = self._client()
        provider = ElevenLabsProvider(ElevenLabsSettings(api_key="xi"), client=client)
        with pytest.raises(ConfigurationError, match="agent_id is required"):
            await provider.execute_test(_make_test(agent_id=""))
        client.simulate_conversation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_api_error_becomes_failed_result(self):
        client = self._client()
        client.simulate_conversation.side_effect = ProviderAPIError("bad request (HTTP 400)", status_code=400)
        provider = ElevenLabsProvider(ElevenLabsSettings(api_key="xi"), client=client)
        result = await provider.execute_test(_make_test(agent_id="agent_abc"))
        assert result.success is False
        assert result.error_kind == "provider_api"


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestProviderRegistry:
    """Test provider construction and selection."""

    def test_vapi_strategy_selection(self):
        assert isinstance(get_provider("vapi", {}), VapiEvalsProvider)
        assert isinstance(get_provider("VAPI", {"VAPI_USE_CHAT_API": "true"}), ChatVapiProvider)

    def test_other_providers(self):
        assert isinstance(get_provider("viernes", {}), ViernesProvider)
        assert isinstance(get_provider(" elevenlabs ", {}), ElevenLabsProvider)

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Available: elevenlabs, vapi, viernes"):
            get_provider("twilio", {})

    def test_invalid_env_value(self):
        with pytest.raises(ConfigurationError):
            get_provider("vapi", {"VAPI_USE_CHAT_API": "maybe"})

    def test_available_providers_reports_configuration(self):
        infos = available_providers({"ELEVENLABS_API_KEY": "xi"})
        assert [i["name"] for i in infos] == ["elevenlabs", "vapi", "viernes"]
        assert [i["configured"] for i in infos] == [True, False, False]

    def test_determine_provider_precedence(self):
        env = {"TEST_PROVIDER": "Viernes"}
        assert determine_provider("vapi", env) == "vapi"
        assert determine_provider(None, env) == "viernes"
        assert determine_provider(None, {}) == "elevenlabs"
        assert determine_provider(None, {}, default="vapi") == "vapi"
