"""
Tests for the optional refinement bridge.

The bridge must return a list of the same length and order as its input
on every path, including service failures.
"""
import json
import os
from unittest.mock import Mock, patch

import httpx
import pytest

from insight_core.config import RefineConfig
from insight_core.llm.refine import RefinementBridge
from insight_core.models import ExtractedAction, ExtractedDecision


def _actions():
    return [
        ExtractedAction(title="prepare the slides by tomorrow", source_message_id="m1", timestamp=1,
                        sender_id="u1", due_hint="tomorrow", confidence=0.9),
        ExtractedAction(title="review the PR", source_message_id="m2", timestamp=2,
                        sender_id="u2", confidence=0.7),
    ]


def _decisions():
    return [
        ExtractedDecision(content="We agreed: Launch on Monday.", source_message_id="m1", timestamp=1,
                          sender_id="u1", confidence=0.85),
    ]


def _bridge(handler, metrics=None):
    config = RefineConfig(enabled=True, endpoint="http://refine.test")
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RefinementBridge(config, client=client, metrics=metrics)


class TestRefineDisabled:
    """Pass-through when not configured."""

    @pytest.mark.asyncio
    async def test_disabled_returns_input(self):
        bridge = RefinementBridge(RefineConfig(enabled=False, endpoint="http://refine.test"))
        actions = _actions()
        assert await bridge.refine_actions(actions) == actions

    @pytest.mark.asyncio
    async def test_enabled_without_endpoint_is_disabled(self):
        bridge = RefinementBridge(RefineConfig(enabled=True, endpoint=""))
        assert not bridge.enabled
        assert await bridge.refine_decisions(_decisions()) == _decisions()

    @pytest.mark.asyncio
    async def test_empty_input_skips_service(self):
        handler = Mock()
        bridge = _bridge(handler)
        assert await bridge.refine_actions([]) == []
        handler.assert_not_called()


class TestRefineSuccess:
    """Positional merge of refined fields."""

    @pytest.mark.asyncio
    async def test_actions_merged(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "success": True,
                "refined": [
                    {"refined": "Prepare the slides", "assignee": "ana"},
                    {"refined": ""},
                ],
            })

        result = await _bridge(handler).refine_actions(_actions())

        assert seen["path"] == "/refine/actions"
        assert seen["body"]["items"][0] == {"title": "prepare the slides by tomorrow", "due": "tomorrow"}
        assert result[0].title == "Prepare the slides"
        assert result[0].assignee == "ana"
        assert result[0].due_hint == "tomorrow"
        assert result[0].confidence == 0.9
        assert result[1] == _actions()[1]

    @pytest.mark.asyncio
    async def test_short_reply_keeps_tail(self):
        def handler(request):
            return httpx.Response(200, json={"success": True, "refined": [{"refined": "Prepare slides"}]})

        result = await _bridge(handler).refine_actions(_actions())

        assert len(result) == 2
        assert result[0].title == "Prepare slides"
        assert result[1] == _actions()[1]

    @pytest.mark.asyncio
    async def test_decisions_merged(self):
        def handler(request):
            assert request.url.path == "/refine/decisions"
            return httpx.Response(200, json={"success": True, "refined": [{"refined": "Launch is Monday."}]})

        result = await _bridge(handler).refine_decisions(_decisions())

        assert result[0].content == "Launch is Monday."
        assert result[0].confidence == 0.85

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"success": True, "refined": []})

        with patch.dict(os.environ, {"REFINE_TOKEN": "secret-token"}):
            await _bridge(handler).refine_decisions(_decisions())

        assert seen["auth"] == "Bearer secret-token"


class TestRefineFallback:
    """Any failure returns the originals."""

    @pytest.mark.asyncio
    async def test_success_false(self):
        metrics = Mock()

        def handler(request):
            return httpx.Response(200, json={"success": False})

        result = await _bridge(handler, metrics).refine_actions(_actions())

        assert result == _actions()
        metrics.record_refine_fallback.assert_called_once_with("actions")

    @pytest.mark.asyncio
    async def test_http_error(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        assert await _bridge(handler).refine_decisions(_decisions()) == _decisions()

    @pytest.mark.asyncio
    async def test_malformed_json(self):
        def handler(request):
            return httpx.Response(200, text="not json")

        assert await _bridge(handler).refine_actions(_actions()) == _actions()

    @pytest.mark.asyncio
    async def test_schema_mismatch(self):
        def handler(request):
            return httpx.Response(200, json={"refined": "nope"})

        assert await _bridge(handler).refine_actions(_actions()) == _actions()

    @pytest.mark.asyncio
    async def test_transport_error_retried_then_falls_back(self):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            raise httpx.ConnectError("refused", request=request)

        result = await _bridge(handler).refine_actions(_actions())

        assert result == _actions()
        assert calls["count"] == 2
