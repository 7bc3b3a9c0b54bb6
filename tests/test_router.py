"""Tests for event routing and field extraction."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from eventmacro.capabilities import DryRunProvider
from eventmacro.core.config import load_from_dict
from eventmacro.core.errors import RoutingError
from eventmacro.workflow.interpreter import WorkflowInterpreter
from eventmacro.workflow.router import EventRouter, extract_path, is_missing


CONFIG = {
    "globals": {"app": {"name": "desk"}},
    "workflows": {
        "place_order": [
            {
                "type": "conditional",
                "when": "{{side}}",
                "equals": "buy",
                "then": {"type": "mouse_move", "x": 100, "y": 200},
                "else": {"type": "mouse_move", "x": 300, "y": 200},
            },
            {"type": "type_text", "text": "{{qty}}@{{@app.name}}"},
        ],
        "echo": [{"type": "type_text", "text": "[{{payload}}]"}],
    },
    "events": {
        "order": {"workflow": "place_order", "vars_map": {"side": "order.side", "qty": "order.qty"}},
        "strict": {
            "workflow": "echo",
            "vars_map": {"payload": "data.value"},
            "on_missing_field": "fail",
        },
        "whole": {"workflow": "echo", "vars_map": {"payload": ""}},
    },
}


@pytest.fixture
def provider():
    return DryRunProvider()


@pytest.fixture
def router(provider):
    config = load_from_dict(CONFIG)
    return EventRouter(config, WorkflowInterpreter(provider))


class TestExtractPath:

    def test_nested(self):
        assert extract_path({"a": {"b": {"c": 1}}}, "a.b.c") == 1

    def test_empty_path_returns_event(self):
        event = {"x": 1}
        assert extract_path(event, "") is event

    def test_missing_key(self):
        assert is_missing(extract_path({"a": {}}, "a.b"))

    def test_through_non_object(self):
        assert is_missing(extract_path({"a": [1, 2]}, "a.0"))

    def test_null_is_a_value(self):
        value = extract_path({"a": None}, "a")
        assert value is None
        assert not is_missing(value)


class TestRoute:
    """End-to-end routing into the interpreter."""

    @pytest.mark.asyncio
    async def test_buy_branch(self, router, provider):
        run = await router.route({"type": "order", "order": {"side": "buy", "qty": 3}})

        assert provider.calls == [
            ("move_to", {"x": 100, "y": 200}),
            ("type_text", {"text": "3@desk"}),
        ]
        assert run.variables["qty"] == "3"

    @pytest.mark.asyncio
    async def test_sell_branch(self, router, provider):
        await router.route({"type": "order", "order": {"side": "sell", "qty": "7"}})
        assert provider.calls[0] == ("move_to", {"x": 300, "y": 200})

    @pytest.mark.asyncio
    async def test_missing_field_defaults_to_empty(self, router, provider):
        run = await router.route({"type": "order", "order": {"side": "buy"}})

        assert run.variables["qty"] == ""
        assert provider.calls[-1] == ("type_text", {"text": "@desk"})

    @pytest.mark.asyncio
    async def test_missing_field_fail_policy(self, router, provider):
        with pytest.raises(RoutingError) as exc_info:
            await router.route({"type": "strict", "data": {}})

        assert exc_info.value.context["path"] == "data.value"
        assert exc_info.value.context["variable"] == "payload"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_global_fail_policy(self, provider):
        data = dict(CONFIG, settings={"missing_field_policy": "fail"})
        router = EventRouter(load_from_dict(data), WorkflowInterpreter(provider))

        with pytest.raises(RoutingError):
            await router.route({"type": "order", "order": {}})

    @pytest.mark.asyncio
    async def test_non_string_values_are_serialized(self, router, provider):
        await router.route({"type": "strict", "data": {"value": {"k": [1, True]}}})
        assert provider.calls == [("type_text", {"text": '[{"k":[1,true]}]'})]

    @pytest.mark.asyncio
    async def test_empty_path_binds_whole_event(self, router, provider):
        await router.route({"type": "whole"})
        assert provider.calls == [("type_text", {"text": '[{"type":"whole"}]'})]

    @pytest.mark.asyncio
    async def test_unknown_type(self, router):
        with pytest.raises(RoutingError) as exc_info:
            await router.route({"type": "nope"})
        assert "No event binding found for type 'nope'" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_missing_discriminator(self, router):
        with pytest.raises(RoutingError):
            await router.route({"kind": "order"})

    @pytest.mark.asyncio
    async def test_non_string_discriminator(self, router):
        with pytest.raises(RoutingError):
            await router.route({"type": 5})

    @pytest.mark.asyncio
    async def test_non_object_event(self, router):
        with pytest.raises(RoutingError):
            await router.route(["order"])

    @pytest.mark.asyncio
    async def test_custom_discriminator_field(self, provider):
        data = dict(CONFIG, settings={"event_type_field": "kind"})
        router = EventRouter(load_from_dict(data), WorkflowInterpreter(provider))

        await router.route({"kind": "whole"})
        assert provider.operations() == ["type_text"]


class TestConfigSwap:

    @pytest.mark.asyncio
    async def test_run_workflow_directly(self, router, provider):
        await router.run_workflow("echo", {"payload": "direct"})
        assert provider.calls == [("type_text", {"text": "[direct]"})]

    @pytest.mark.asyncio
    async def test_update_globals_builds_new_config(self, router, provider):
        before = router.config
        router.update_globals({"app": {"name": "laptop"}})

        await router.route({"type": "order", "order": {"side": "buy", "qty": 1}})

        assert provider.calls[-1] == ("type_text", {"text": "1@laptop"})
        assert before.globals["app"]["name"] == "desk"
        assert router.config is not before

    @pytest.mark.asyncio
    async def test_replace_config(self, router, provider):
        router.replace_config(load_from_dict({
            "workflows": {"other": [{"type": "mouse_click"}]},
            "events": {"order": {"workflow": "other"}},
        }))

        await router.route({"type": "order"})
        assert provider.operations() == ["click"]
