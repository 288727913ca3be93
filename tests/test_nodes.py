"""Unit tests for NodeRegistry and the built-in step handlers."""

from __future__ import annotations

import pytest
from conftest import FakeBridge, make_ctx, make_executor, make_services, make_settings

from replaykit.browser.bridge import ContentAction
from replaykit.browser.executor import ToolName, ToolResult
from replaykit.core.errors import (
    AssertionFailedError,
    ExecutorError,
    FlowNotFoundError,
    StepValidationError,
    UnsupportedStepError,
)
from replaykit.flow.types import LogStatus, NodeType
from replaykit.runtime.nodes import default_handlers
from replaykit.runtime.registry import NodeRegistry
from replaykit.runtime.types import ForeachControl, NodeRuntime, WhileControl


def css_target(*values: str) -> dict:
    return {"candidates": [{"type": "css", "value": v} for v in values]}


def dom_bridge(known: dict[str, str], input_types: dict[str, str] | None = None) -> FakeBridge:
    """
    Resolve selectors in ``known`` to refs whose layout box is visible.

    ``input_types`` maps a ref or selector to its ``type`` attribute.
    """
    bridge = FakeBridge()

    def handler(tab_id, message, frame_id):
        action = message["action"]
        if action == ContentAction.ENSURE_REF_FOR_SELECTOR:
            ref = known.get(message.get("selector"))
            if ref:
                return {"success": True, "ref": ref, "center": {"x": 5, "y": 5}}
            return {"success": False}
        if action == ContentAction.RESOLVE_REF:
            return {"success": True, "rect": {"x": 0, "y": 0, "width": 40, "height": 20}}
        if action == ContentAction.GET_ATTRIBUTE_FOR_SELECTOR and input_types:
            key = message.get("ref") or message.get("selector")
            if key in input_types:
                return {"success": True, "value": input_types[key]}
        return {"success": True}

    bridge.handler = handler
    return bridge


def tool_calls(executor, name: ToolName) -> list[dict]:
    return [c.args[1] for c in executor.call_tool.await_args_list if c.args[0] == name]


class TestRegistry:
    def test_every_node_type_has_a_handler(self):
        registry = NodeRegistry()
        for t in NodeType:
            assert t.value in registry

    def test_missing_handler_fails_construction(self, monkeypatch):
        handlers = default_handlers()
        del handlers[NodeType.WHILE.value]
        monkeypatch.setattr("replaykit.runtime.registry.default_handlers", lambda: dict(handlers))
        with pytest.raises(ValueError, match="while"):
            NodeRegistry()

    async def test_unknown_type_is_unsupported(self):
        with pytest.raises(UnsupportedStepError):
            await NodeRegistry().execute_step(make_ctx(), {"id": "x", "type": "teleport"})

    async def test_validation_runs_before_handler(self):
        ctx = make_ctx()
        with pytest.raises(StepValidationError, match="URL is missing"):
            await NodeRegistry().execute_step(ctx, {"id": "n1", "type": "navigate"})
        ctx.services.executor.call_tool.assert_not_awaited()

    async def test_register_overrides_handler(self):
        class Noop(NodeRuntime):
            type = "navigate"

            async def run(self, ctx, step):
                return None

        registry = NodeRegistry()
        registry.register(Noop())
        result = await registry.execute_step(make_ctx(), {"id": "n1", "type": "navigate"})
        assert result.next_label is None


class TestNavigate:
    async def test_url_is_templated(self):
        executor = make_executor()
        ctx = make_ctx(make_services(executor=executor), vars={"host": "example.org"})
        await NodeRegistry().execute_step(ctx, {"id": "n1", "type": "navigate", "url": "https://{host}/"})
        assert tool_calls(executor, ToolName.NAVIGATE) == [{"url": "https://example.org/"}]

    async def test_executor_error_raises(self):
        executor = make_executor(ToolResult.error("net::ERR"))
        ctx = make_ctx(make_services(executor=executor))
        with pytest.raises(ExecutorError, match="navigate failed"):
            await NodeRegistry().execute_step(ctx, {"id": "n1", "type": "navigate", "url": "https://x/"})


class TestClick:
    async def test_click_uses_resolved_ref(self):
        executor = make_executor()
        entries: list = []
        ctx = make_ctx(make_services(bridge=dom_bridge({"#go": "ref_go"}), executor=executor), entries=entries)
        await NodeRegistry().execute_step(ctx, {"id": "c1", "type": "click", "target": css_target("#go")})
        (args,) = tool_calls(executor, ToolName.CLICK)
        assert args["ref"] == "ref_go"
        assert args["selector"] is None
        assert args["timeout"] == 10000
        assert entries == []

    async def test_fallback_is_logged(self):
        bridge = dom_bridge({'[role="button"][aria-label="Go"]': "ref_aria"})
        entries: list = []
        ctx = make_ctx(make_services(bridge=bridge), entries=entries)
        step = {
            "id": "c1",
            "type": "click",
            "target": {
                "candidates": [
                    {"type": "css", "value": "#missing"},
                    {"type": "aria", "value": "button[name=Go]"},
                ]
            },
        }
        await NodeRegistry().execute_step(ctx, step)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.fallback_used is True
        assert entry.fallback_from == "css"
        assert entry.fallback_to == "aria"
        assert entry.status == LogStatus.SUCCESS

    async def test_unresolved_target_uses_css_selector(self):
        executor = make_executor()
        ctx = make_ctx(make_services(bridge=dom_bridge({}), executor=executor))
        await NodeRegistry().execute_step(ctx, {"id": "c1", "type": "click", "target": css_target("#late")})
        (args,) = tool_calls(executor, ToolName.CLICK)
        assert args["ref"] is None
        assert args["selector"] == "#late"

    async def test_hidden_element_raises(self):
        bridge = dom_bridge({"#go": "ref_go"})
        base = bridge.handler

        def hidden(tab_id, message, frame_id):
            if message["action"] == ContentAction.RESOLVE_REF:
                return {"success": True, "rect": {"width": 0, "height": 0}}
            return base(tab_id, message, frame_id)

        bridge.handler = hidden
        ctx = make_ctx(make_services(bridge=bridge))
        with pytest.raises(Exception, match="not visible"):
            await NodeRegistry().execute_step(ctx, {"id": "c1", "type": "click", "target": css_target("#go")})

    async def test_dblclick_sets_double(self):
        executor = make_executor()
        ctx = make_ctx(make_services(bridge=dom_bridge({"#go": "r"}), executor=executor))
        await NodeRegistry().execute_step(ctx, {"id": "c1", "type": "dblclick", "target": css_target("#go")})
        assert tool_calls(executor, ToolName.CLICK)[0]["double"] is True

    def test_missing_candidates_fail_validation(self):
        result = NodeRegistry().get("click").validate({"id": "c1", "type": "click", "target": {}})
        assert result.ok is False


class TestFill:
    async def test_value_is_interpolated(self):
        executor = make_executor()
        ctx = make_ctx(make_services(bridge=dom_bridge({"#q": "ref_q"}), executor=executor), vars={"term": "cats"})
        step = {"id": "f1", "type": "fill", "target": css_target("#q"), "value": "{term} and dogs"}
        await NodeRegistry().execute_step(ctx, step)
        (args,) = tool_calls(executor, ToolName.FILL)
        assert args["value"] == "cats and dogs"
        assert args["ref"] == "ref_q"

    async def test_resolved_file_input_uploads_by_ref(self):
        executor = make_executor()
        bridge = dom_bridge({"#up": "ref_up"}, input_types={"ref_up": "file"})
        ctx = make_ctx(make_services(bridge=bridge, executor=executor), vars={"dir": "/tmp"})
        step = {"id": "f1", "type": "fill", "target": css_target("#up"), "value": "{dir}/report.pdf"}
        await NodeRegistry().execute_step(ctx, step)
        (args,) = tool_calls(executor, ToolName.FILE_UPLOAD)
        assert args["ref"] == "ref_up"
        assert args["filePath"] == "/tmp/report.pdf"
        assert tool_calls(executor, ToolName.FILL) == []

    async def test_unresolved_file_input_uploads_by_selector(self):
        executor = make_executor()
        bridge = dom_bridge({}, input_types={"#up": "FILE"})
        ctx = make_ctx(make_services(bridge=bridge, executor=executor))
        step = {"id": "f1", "type": "fill", "target": css_target("#up"), "value": "/tmp/a.txt"}
        await NodeRegistry().execute_step(ctx, step)
        (args,) = tool_calls(executor, ToolName.FILE_UPLOAD)
        assert args["selector"] == "#up"
        assert "ref" not in args

    async def test_text_input_is_filled(self):
        executor = make_executor()
        bridge = dom_bridge({"#q": "ref_q"}, input_types={"ref_q": "text"})
        ctx = make_ctx(make_services(bridge=bridge, executor=executor))
        await NodeRegistry().execute_step(ctx, {"id": "f1", "type": "fill", "target": css_target("#q"), "value": "x"})
        assert tool_calls(executor, ToolName.FILE_UPLOAD) == []
        assert len(tool_calls(executor, ToolName.FILL)) == 1

    def test_value_is_required(self):
        result = NodeRegistry().get("fill").validate({"id": "f1", "target": css_target("#q")})
        assert result.ok is False


class TestIf:
    async def test_condition_yields_true_false_labels(self):
        registry = NodeRegistry()
        step = {"id": "i1", "type": "if", "condition": {"expression": "vars.n > 1"}}
        assert (await registry.execute_step(make_ctx(vars={"n": 2}), step)).next_label == "true"
        assert (await registry.execute_step(make_ctx(vars={"n": 0}), step)).next_label == "false"

    async def test_first_matching_branch_wins(self):
        step = {
            "id": "i1",
            "type": "if",
            "branches": [
                {"id": "a", "expr": "vars.n > 10", "label": "big"},
                {"id": "b", "expr": "vars.n > 1"},
                {"id": "c", "expr": "true", "label": "any"},
            ],
        }
        result = await NodeRegistry().execute_step(make_ctx(vars={"n": 5}), step)
        assert result.next_label == "case:b"

    async def test_no_match_uses_else_or_default(self):
        branches = [{"id": "a", "expr": "false"}]
        registry = NodeRegistry()
        with_else = {"id": "i1", "type": "if", "branches": branches, "else": "fallback"}
        without = {"id": "i2", "type": "if", "branches": branches}
        assert (await registry.execute_step(make_ctx(), with_else)).next_label == "fallback"
        assert (await registry.execute_step(make_ctx(), without)).next_label == "default"


class TestLoops:
    async def test_foreach_concurrency_is_clamped(self):
        ctx = make_ctx(make_services(settings=make_settings(max_foreach_concurrency=16)))
        step = {"id": "l1", "type": "foreach", "listVar": "items", "subflowId": "sf", "concurrency": 1000}
        result = await NodeRegistry().execute_step(ctx, step)
        assert isinstance(result.control, ForeachControl)
        assert result.control.concurrency == 16
        assert result.control.item_var == "item"

    async def test_foreach_concurrency_floor_is_one(self):
        step = {"id": "l1", "type": "foreach", "listVar": "items", "subflowId": "sf", "concurrency": -3}
        result = await NodeRegistry().execute_step(make_ctx(), step)
        assert result.control.concurrency == 1

    async def test_while_iterations_default_and_cap(self):
        ctx = make_ctx(make_services(settings=make_settings(max_while_iterations=50)))
        registry = NodeRegistry()
        base = {"id": "w1", "type": "while", "condition": "vars.go", "subflowId": "sf"}
        default = await registry.execute_step(ctx, dict(base))
        capped = await registry.execute_step(ctx, dict(base, maxIterations=10_000))
        assert isinstance(default.control, WhileControl)
        assert default.control.max_iterations == 50
        assert capped.control.max_iterations == 50

    async def test_foreach_requires_list_and_subflow(self):
        with pytest.raises(StepValidationError):
            await NodeRegistry().execute_step(make_ctx(), {"id": "l1", "type": "foreach", "listVar": "x"})


class TestAssert:
    @staticmethod
    def missing_bridge() -> FakeBridge:
        bridge = FakeBridge()
        bridge.handler = lambda tab_id, message, frame_id: {"success": False}
        return bridge

    async def test_stop_strategy_raises(self):
        ctx = make_ctx(make_services(bridge=self.missing_bridge()))
        step = {"id": "a1", "type": "assert", "assert": {"exists": "#banner"}}
        with pytest.raises(AssertionFailedError, match="assert selector not found"):
            await NodeRegistry().execute_step(ctx, step)

    async def test_warn_strategy_logs_and_continues(self):
        entries: list = []
        ctx = make_ctx(make_services(bridge=self.missing_bridge()), entries=entries)
        step = {"id": "a1", "type": "assert", "assert": {"exists": "#banner"}, "failStrategy": "warn"}
        result = await NodeRegistry().execute_step(ctx, step)
        assert result.already_logged is True
        assert entries[0].status == LogStatus.WARNING
        assert entries[0].message == "assert selector not found"

    async def test_attribute_equals(self):
        bridge = FakeBridge()
        bridge.handler = lambda tab_id, message, frame_id: {"success": True, "value": "off"}
        ctx = make_ctx(make_services(bridge=bridge))
        step = {
            "id": "a1",
            "type": "assert",
            "assert": {"attribute": {"selector": "#t", "name": "aria-pressed", "equals": "on"}},
        }
        with pytest.raises(AssertionFailedError, match="actual=off expected=on"):
            await NodeRegistry().execute_step(ctx, step)


class TestDataNodes:
    async def test_http_save_as_and_assign(self):
        executor = make_executor(ToolResult.ok({"status": 200, "body": {"token": "abc"}}))
        ctx = make_ctx(make_services(executor=executor))
        step = {"id": "h1", "type": "http", "url": "https://api/", "saveAs": "resp", "assign": {"tok": "body.token"}}
        await NodeRegistry().execute_step(ctx, step)
        assert ctx.vars["resp"]["status"] == 200
        assert ctx.vars["tok"] == "abc"
        assert tool_calls(executor, ToolName.NETWORK_REQUEST)[0]["method"] == "GET"

    async def test_script_saves_result(self):
        executor = make_executor(ToolResult.ok({"result": 42}))
        ctx = make_ctx(make_services(executor=executor))
        await NodeRegistry().execute_step(ctx, {"id": "s1", "type": "script", "code": "6*7", "saveAs": "answer"})
        assert ctx.vars["answer"] == 42

    async def test_script_after_is_deferred(self):
        executor = make_executor()
        ctx = make_ctx(make_services(executor=executor))
        step = {"id": "s1", "type": "script", "code": "cleanup()", "when": "after"}
        result = await NodeRegistry().execute_step(ctx, step)
        assert result.defer_after_script["code"] == "cleanup()"
        executor.call_tool.assert_not_awaited()


class TestExecuteFlow:
    async def test_missing_flow_raises(self):
        from replaykit.flow.store import FlowStore

        services = make_services(flows=FlowStore(store_dir=make_settings().store_dir))
        with pytest.raises(FlowNotFoundError):
            await NodeRegistry().execute_step(make_ctx(services), {"id": "x1", "type": "executeFlow", "flowId": "nope"})
