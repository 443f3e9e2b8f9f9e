"""Tests for the FastAPI boundary, using an injected orchestrator."""

import pytest
from fastapi.testclient import TestClient

from coinquery import __version__
from coinquery.api.server import create_app
from coinquery.contracts import AnalysisData, AnalysisResult, DebugInfo
from coinquery.errors import CompileFault, ValidationFault


class StubOrchestrator:
    """Answers every request with a fixed result (or raises a fixed error)."""

    def __init__(self, config, outcome):
        self.config = config
        self.outcome = outcome
        self.requests = []

    async def analyze(self, request):
        self.requests.append(request)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome

    async def aclose(self):
        pass


OK_RESULT = AnalysisResult.ok(
    AnalysisData(
        raw_data={"currentPrice": "$65000.00"},
        analysis="Bitcoin trades at $65000.00.",
        debug_info=DebugInfo(generated_code="return data", model="o3-mini"),
    )
)

BODY = {"query": "What is the bitcoin price?", "systemPrompt": "You are terse."}


@pytest.fixture
def make_api(config):
    def factory(outcome=OK_RESULT, api_keys=()):
        settings = config.with_overrides(api_keys=tuple(api_keys))
        stub = StubOrchestrator(settings, outcome)
        return TestClient(create_app(settings, orchestrator=stub)), stub

    return factory


def test_health(make_api, config):
    client, _ = make_api()

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["version"] == __version__
    assert body["default_model"] == config.default_model
    assert "o3-mini" in body["models"]


def test_analyze_success(make_api):
    client, stub = make_api()

    response = client.post("/analyze", json=BODY)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["rawData"] == {"currentPrice": "$65000.00"}
    assert body["data"]["debugInfo"]["generatedCode"] == "return data"
    assert stub.requests[0].user_input == "What is the bitcoin price?"
    assert stub.requests[0].system_prompt == "You are terse."


def test_user_input_alias_is_accepted(make_api):
    client, stub = make_api()

    client.post("/analyze", json={"userInput": "hi", "systemPrompt": "p", "model": "groq"})

    assert stub.requests[0].user_input == "hi"
    assert stub.requests[0].model == "groq"


def test_validation_fault_is_400(make_api):
    client, _ = make_api(AnalysisResult.failed(ValidationFault("System prompt is required")))

    response = client.post("/analyze", json={"query": "hi"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"]["message"] == "System prompt is required"
    assert body["error"]["details"]["stage"] == "validate"


def test_compile_fault_is_200_with_failure(make_api):
    client, _ = make_api(AnalysisResult.failed(CompileFault("Model returned no program text")))

    response = client.post("/analyze", json=BODY)

    assert response.status_code == 200
    assert response.json()["success"] is False


def test_unexpected_error_is_500(make_api):
    client, _ = make_api(RuntimeError("boom"))

    response = client.post("/analyze", json=BODY)

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": {"message": "boom", "code": "INTERNAL_ERROR"}}


class TestApiKeys:
    def test_missing_key_is_401(self, make_api):
        client, stub = make_api(api_keys=["secret"])

        response = client.post("/analyze", json=BODY)

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_REQUIRED"
        assert stub.requests == []

    def test_wrong_key_is_403(self, make_api):
        client, _ = make_api(api_keys=["secret"])

        response = client.post("/analyze", json=BODY, headers={"x-api-key": "guess"})

        assert response.status_code == 403
        assert response.json() == {"success": False, "error": {"message": "Invalid API key", "code": "INVALID_AUTH"}}

    def test_valid_key_passes(self, make_api):
        client, _ = make_api(api_keys=["secret", "other"])

        response = client.post("/analyze", json=BODY, headers={"x-api-key": "other"})

        assert response.status_code == 200

    def test_health_is_open(self, make_api):
        client, _ = make_api(api_keys=["secret"])

        assert client.get("/health").status_code == 200
