"""Tests for backend adapters and the adapter registry."""

import math
import shlex
import sys

import httpx
import pytest

from swarm_orchestrator.adapters import (
    AdapterRegistry,
    CliProcessAdapter,
    GenerativeApiAdapter,
    build_registry,
)
from swarm_orchestrator.adapters.generative_api import extract_code
from swarm_orchestrator.config import AdapterMode, AdapterSettings, BackendConfig, Settings
from swarm_orchestrator.exceptions import (
    AdapterError,
    AdapterNotFound,
    AdapterTimeout,
    InvalidResponse,
)
from swarm_orchestrator.models.profiles import load_profiles

from conftest import FakeAdapter

GENERATED_TEXT = "Here you go:\n```python\ndef add(a, b):\n    return a + b\n```\n"


def api_response(text=GENERATED_TEXT, avg_logprobs=-0.1):
    candidate = {
        "content": {"role": "model", "parts": [{"text": text}]},
        "finishReason": "STOP",
    }
    if avg_logprobs is not None:
        candidate["avgLogprobs"] = avg_logprobs
    return {
        "candidates": [candidate],
        "usageMetadata": {"promptTokenCount": 12, "candidatesTokenCount": 34},
        "modelVersion": "gemini-1.5-flash-002",
    }


@pytest.fixture
def profiles():
    return load_profiles(BackendConfig())


@pytest.fixture
def api_settings():
    return AdapterSettings(api_key="test-key", base_url="https://api.test/v1beta", max_attempts=2)


def make_api_adapter(profiles, api_settings, handler):
    return GenerativeApiAdapter(
        profiles["gemini-1.5-flash"],
        api_settings,
        transport=httpx.MockTransport(handler),
        retry_delay_seconds=0,
    )


class TestExtractCode:
    """Test fenced code extraction."""

    def test_fenced_block(self):
        assert extract_code(GENERATED_TEXT) == ("def add(a, b):\n    return a + b", "python")

    def test_fence_without_language(self):
        assert extract_code("```\nx = 1\n```") == ("x = 1", "unknown")

    def test_plain_text(self):
        assert extract_code("  x = 1  ") == ("x = 1", "unknown")


class TestGenerativeApiAdapter:
    """Test the HTTP adapter against a mock transport."""

    @pytest.mark.asyncio
    async def test_successful_call(self, profiles, api_settings):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=api_response())

        adapter = make_api_adapter(profiles, api_settings, handler)
        result = await adapter.execute("write add")
        await adapter.aclose()

        assert result.code == "def add(a, b):\n    return a + b"
        assert result.language == "python"
        assert result.confidence == pytest.approx(math.exp(-0.1))
        assert result.verification_passed is False
        assert result.verification_measured is False
        assert result.input_units == 12
        assert result.output_units == 34
        assert result.attempts == 1
        assert result.model == "gemini-1.5-flash-002"

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v1beta/models/gemini-1.5-flash:generateContent"
        assert request.url.params["key"] == "test-key"

    @pytest.mark.asyncio
    async def test_retries_transient_status(self, profiles, api_settings):
        statuses = [503, 200]

        def handler(request):
            status = statuses.pop(0)
            if status != 200:
                return httpx.Response(status, text="unavailable")
            return httpx.Response(200, json=api_response())

        adapter = make_api_adapter(profiles, api_settings, handler)
        result = await adapter.execute("write add")
        await adapter.aclose()

        assert result.attempts == 2
        assert statuses == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, profiles, api_settings):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text="boom")

        adapter = make_api_adapter(profiles, api_settings, handler)
        with pytest.raises(AdapterError):
            await adapter.execute("write add")
        await adapter.aclose()

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, profiles, api_settings):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": {"message": "bad request"}})

        adapter = make_api_adapter(profiles, api_settings, handler)
        with pytest.raises(AdapterError) as exc_info:
            await adapter.execute("write add")
        await adapter.aclose()

        assert len(calls) == 1
        assert "400" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self, profiles, api_settings):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        adapter = make_api_adapter(profiles, api_settings, handler)
        with pytest.raises(AdapterTimeout):
            await adapter.execute("write add")
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_connection_error(self, profiles, api_settings):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        adapter = make_api_adapter(profiles, api_settings, handler)
        with pytest.raises(AdapterError) as exc_info:
            await adapter.execute("write add")
        await adapter.aclose()

        assert not isinstance(exc_info.value, AdapterTimeout)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"candidates": []},
        {"candidates": [{"content": {"parts": [{"text": "   "}]}, "finishReason": "SAFETY"}]},
        {},
    ])
    async def test_invalid_responses(self, profiles, api_settings, body):
        adapter = make_api_adapter(profiles, api_settings, lambda request: httpx.Response(200, json=body))

        with pytest.raises(InvalidResponse):
            await adapter.execute("write add")
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_non_json_body(self, profiles, api_settings):
        adapter = make_api_adapter(profiles, api_settings, lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(InvalidResponse):
            await adapter.execute("write add")
        await adapter.aclose()

    @pytest.mark.asyncio
    async def test_confidence_unmeasured_without_logprobs(self, profiles, api_settings):
        adapter = make_api_adapter(
            profiles, api_settings, lambda request: httpx.Response(200, json=api_response(avg_logprobs=None))
        )

        result = await adapter.execute("write add")
        await adapter.aclose()

        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_refusal_is_not_verified(self, profiles, api_settings):
        adapter = make_api_adapter(
            profiles, api_settings,
            lambda request: httpx.Response(200, json=api_response(text="I cannot help with that.")),
        )

        result = await adapter.execute("write add")
        await adapter.aclose()

        assert result.code == "I cannot help with that."
        assert result.verification_passed is False
        assert result.verification_measured is False

    def test_capabilities_unreported_before_refresh(self, profiles, api_settings):
        adapter = make_api_adapter(profiles, api_settings, lambda request: httpx.Response(200))
        caps = adapter.capabilities()

        assert caps.name == "gemini-1.5-flash"
        assert caps.cost_per_million_input is None
        assert caps.cost_per_million_output is None
        assert caps.supports_extended_reasoning is None
        assert caps.max_context_units is None

    @pytest.mark.asyncio
    async def test_refresh_reads_model_metadata(self, profiles, api_settings):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={
                "name": "models/gemini-1.5-flash",
                "version": "002",
                "inputTokenLimit": 1000000,
                "outputTokenLimit": 8192,
                "thinking": False,
            })

        adapter = make_api_adapter(profiles, api_settings, handler)
        await adapter.refresh_capabilities()
        caps = adapter.capabilities()
        await adapter.aclose()

        assert requests[0].method == "GET"
        assert requests[0].url.path == "/v1beta/models/gemini-1.5-flash"
        assert requests[0].url.params["key"] == "test-key"
        assert caps.version == "002"
        assert caps.max_context_units == 1000000
        assert caps.max_output_units == 8192
        assert caps.supports_extended_reasoning is False

    @pytest.mark.asyncio
    async def test_refresh_failure(self, profiles, api_settings):
        adapter = make_api_adapter(profiles, api_settings, lambda request: httpx.Response(404, text="not found"))

        with pytest.raises(AdapterError):
            await adapter.refresh_capabilities()
        await adapter.aclose()

        assert adapter.capabilities().max_context_units is None


def write_script(tmp_path, name, body):
    path = tmp_path / name
    path.write_text(body)
    return f"{shlex.quote(sys.executable)} {shlex.quote(str(path))}"


class TestCliProcessAdapter:
    """Test the subprocess adapter with small helper scripts."""

    def test_build_command(self, profiles):
        adapter = CliProcessAdapter(profiles["gemini-2.5-pro"], AdapterSettings(cli_command="gemini --yolo"))

        assert adapter.build_command("hello") == [
            "gemini", "--yolo", "--model", "gemini-2.5-pro", "--prompt", "hello",
        ]

    @pytest.mark.asyncio
    async def test_successful_run(self, profiles, tmp_path):
        command = write_script(tmp_path, "ok.py", (
            "import sys\n"
            "model = sys.argv[sys.argv.index('--model') + 1]\n"
            "print('```python')\n"
            "print('print(%r)' % model)\n"
            "print('```')\n"
        ))
        adapter = CliProcessAdapter(profiles["gemini-1.5-flash"], AdapterSettings(cli_command=command))

        result = await adapter.execute("x" * 40)

        assert result.code == "print('gemini-1.5-flash')"
        assert result.language == "python"
        assert result.confidence == 0.0
        assert result.verification_passed is False
        assert result.input_units == 10
        assert result.output_units > 0

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, profiles, tmp_path):
        command = write_script(tmp_path, "fail.py", "import sys\nsys.stderr.write('quota exhausted')\nsys.exit(3)\n")
        adapter = CliProcessAdapter(profiles["gemini-1.5-flash"], AdapterSettings(cli_command=command))

        with pytest.raises(AdapterError) as exc_info:
            await adapter.execute("task")

        assert "quota exhausted" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_empty_output(self, profiles, tmp_path):
        command = write_script(tmp_path, "empty.py", "pass\n")
        adapter = CliProcessAdapter(profiles["gemini-1.5-flash"], AdapterSettings(cli_command=command))

        with pytest.raises(InvalidResponse):
            await adapter.execute("task")

    @pytest.mark.asyncio
    async def test_timeout(self, profiles, tmp_path):
        command = write_script(tmp_path, "slow.py", "import time\ntime.sleep(10)\n")
        adapter = CliProcessAdapter(
            profiles["gemini-1.5-flash"], AdapterSettings(cli_command=command, timeout_seconds=0.2)
        )

        with pytest.raises(AdapterTimeout):
            await adapter.execute("task")

    @pytest.mark.asyncio
    async def test_missing_executable(self, profiles):
        adapter = CliProcessAdapter(
            profiles["gemini-1.5-flash"], AdapterSettings(cli_command="/nonexistent/bin/generator")
        )

        with pytest.raises(AdapterError):
            await adapter.execute("task")


class TestAdapterRegistry:
    """Test the explicit registry."""

    def test_get_missing_raises(self):
        with pytest.raises(AdapterNotFound) as exc_info:
            AdapterRegistry().get("ghost")

        assert exc_info.value.backend_id == "ghost"

    def test_register_and_get(self):
        registry = AdapterRegistry()
        adapter = FakeAdapter()
        registry.register("b", adapter)
        registry.register("a", adapter)

        assert registry.get("a") is adapter
        assert "b" in registry
        assert len(registry) == 2
        assert registry.backends == ["a", "b"]

    def test_unreported_capabilities_not_compared(self, profiles):
        registry = AdapterRegistry()
        for backend_id, profile in profiles.items():
            registry.register(backend_id, CliProcessAdapter(profile, AdapterSettings()))

        assert registry.validate_profiles(profiles) == []

    @pytest.mark.asyncio
    async def test_reported_metadata_differs_from_profile(self, profiles, api_settings):
        def handler(request):
            return httpx.Response(200, json={
                "name": "models/gemini-2.0-flash-thinking",
                "inputTokenLimit": 32768,
                "outputTokenLimit": 8192,
                "thinking": False,
            })

        registry = AdapterRegistry()
        registry.register("gemini-2.0-flash-thinking", GenerativeApiAdapter(
            profiles["gemini-2.0-flash-thinking"], api_settings, transport=httpx.MockTransport(handler),
        ))

        assert registry.validate_profiles(profiles) == []

        failed = await registry.refresh_capabilities()
        issues = registry.validate_profiles(profiles)
        await registry.aclose()

        assert failed == []
        assert "gemini-2.0-flash-thinking: context 32768 != profile 1048576" in issues
        assert any("extended reasoning False != profile True" in issue for issue in issues)

    @pytest.mark.asyncio
    async def test_refresh_failures_are_reported(self, profiles, api_settings):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        registry = AdapterRegistry()
        registry.register("gemini-1.5-flash", GenerativeApiAdapter(
            profiles["gemini-1.5-flash"], api_settings, transport=httpx.MockTransport(handler),
        ))
        registry.register("fake", FakeAdapter())

        failed = await registry.refresh_capabilities()
        await registry.aclose()

        assert failed == ["gemini-1.5-flash"]

    def test_validate_reports_mismatches(self, profiles):
        registry = AdapterRegistry()
        registry.register("gemini-2.5-pro", FakeAdapter())
        registry.register("unlisted-model", FakeAdapter())

        issues = registry.validate_profiles(profiles)

        assert any(issue.startswith("gemini-2.5-pro: input price") for issue in issues)
        assert any("extended reasoning" in issue for issue in issues)
        assert any(issue.startswith("unlisted-model") for issue in issues)

    @pytest.mark.asyncio
    async def test_build_registry_api_mode(self, profiles):
        settings = Settings(adapter=AdapterSettings(mode=AdapterMode.API, api_key="k"))

        registry = build_registry(settings, profiles)

        assert registry.backends == sorted(profiles)
        assert all(isinstance(registry.get(b), GenerativeApiAdapter) for b in registry.backends)
        await registry.aclose()

    def test_build_registry_cli_mode(self, profiles):
        settings = Settings(adapter=AdapterSettings(mode=AdapterMode.CLI))

        registry = build_registry(settings, profiles)

        assert all(isinstance(registry.get(b), CliProcessAdapter) for b in registry.backends)
