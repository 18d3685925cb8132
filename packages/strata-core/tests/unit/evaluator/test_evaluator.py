"""Unit tests for page evaluation."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from strata_core.compiler import CompiledArtifact
from strata_core.config import EvaluationConfig
from strata_core.errors import DataSourceError
from strata_core.evaluator import (
    ActionRef,
    DataSourceStatus,
    Evaluator,
    IssueCode,
    RenderModel,
    Unavailable,
    UnavailableReason,
)
from strata_core.resolver import ResolvedPage, Resolver
from strata_core.schemas import DataSource, ViewerContext

STATS = {"data": {"count": 42}}


class FakeStatsClient:
    """http client answering every source with a fixed payload."""

    def __init__(self, payload: Any = STATS, *, delay: float = 0.0, error: str | None = None) -> None:
        self.payload = payload
        self.delay = delay
        self.error = error
        self.fetched: list[str] = []

    async def fetch(self, source: DataSource) -> Any:
        self.fetched.append(source.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise DataSourceError(self.error, source_id=source.id)
        return self.payload


def _evaluate(
    page: ResolvedPage | Any,
    *roles: str,
    client: FakeStatsClient | None = None,
    entitlements: tuple[str, ...] = (),
    **config: Any,
) -> RenderModel:
    evaluator = Evaluator(client or FakeStatsClient(), config=EvaluationConfig(**config))
    viewer = ViewerContext(roles=frozenset(roles), entitlements=frozenset(entitlements))
    return evaluator.evaluate_sync(page, viewer)


@pytest.fixture
def resolved(blueprint: CompiledArtifact) -> ResolvedPage:
    return Resolver().resolve(blueprint)


@pytest.fixture
def resolve_doc(compile_doc: Any) -> Any:
    def _resolve(document: dict[str, Any]) -> ResolvedPage:
        return Resolver().resolve(compile_doc(document))

    return _resolve


class TestPropResolution:
    def test_all_prop_kinds(self, resolved: ResolvedPage) -> None:
        model = _evaluate(resolved, "staff")

        assert model.find_component("hero").props == {"title": "Welcome"}
        assert model.find_component("hero-cta").props == {
            "label": "Refresh",
            "onClick": ActionRef(action_id="refresh", kind="navigate"),
        }
        assert model.find_component("member-count").props == {"value": 3}
        assert model.find_component("summary").props == {"count": 3, "text": "3 members"}
        assert model.find_component("stats-card").props == {"count": 42}
        assert model.issues == ()

    def test_model_metadata(self, resolved: ResolvedPage) -> None:
        model = _evaluate(resolved, "staff")
        assert (model.module, model.route, model.title) == ("core", "home", "Home")
        assert model.fingerprint == resolved.fingerprint
        assert model.layers == resolved.layers
        assert model.actions[0].config == {"href": "/home"}
        assert [s.status for s in model.data_sources] == [DataSourceStatus.OK, DataSourceStatus.OK]

    def test_bare_page_definition(self, blueprint: CompiledArtifact) -> None:
        model = _evaluate(blueprint.ir, "staff")
        assert model.fingerprint is None
        assert model.find_component("stats-card").props == {"count": 42}

    def test_missing_field(self, resolved: ResolvedPage) -> None:
        model = _evaluate(resolved, "staff", client=FakeStatsClient({"data": {}}))
        assert model.find_component("stats-card").props["count"] == Unavailable(
            reason=UnavailableReason.MISSING_FIELD, source="stats", path="data.count", fallback=0
        )
        assert [(i.node_id, i.prop, i.code) for i in model.issues] == [
            ("stats-card", "count", IssueCode.MISSING_FIELD)
        ]

    def test_expression_error(self, resolve_doc: Any, blueprint_doc: dict[str, Any]) -> None:
        blueprint_doc["regions"][1]["components"][2]["props"]["text"] = {"expression": "props.nope ~ '!'"}
        model = _evaluate(resolve_doc(blueprint_doc), "staff")

        text = model.find_component("summary").props["text"]
        assert isinstance(text, Unavailable)
        assert text.reason is UnavailableReason.EXPRESSION_ERROR
        assert [(i.node_id, i.code) for i in model.issues] == [("summary", IssueCode.EXPRESSION_ERROR)]

    def test_expression_does_not_see_unavailable_props(
        self, resolve_doc: Any, blueprint_doc: dict[str, Any]
    ) -> None:
        summary = blueprint_doc["regions"][1]["components"][2]
        summary["props"] = {"count": {"contract": "stats.count"}, "text": {"expression": "props.count * 2"}}
        model = _evaluate(resolve_doc(blueprint_doc), "staff", client=FakeStatsClient(error="boom"))
        props = model.find_component("summary").props
        assert props["count"].reason is UnavailableReason.DATA_SOURCE_FAILED
        assert props["text"].reason is UnavailableReason.EXPRESSION_ERROR

    def test_explicit_source_path_binding(self, resolve_doc: Any, blueprint_doc: dict[str, Any]) -> None:
        blueprint_doc["regions"][1]["components"][1]["props"]["value"] = {"source": "stats", "path": "data"}
        model = _evaluate(resolve_doc(blueprint_doc), "staff")
        assert model.find_component("member-count").props == {"value": {"count": 42}}


class TestAccessControl:
    def test_roles_shape_the_tree(self, resolved: ResolvedPage) -> None:
        staff = _evaluate(resolved, "staff")
        admin = _evaluate(resolved, "admin")
        guest = _evaluate(resolved, "guest")

        assert staff.find_component("admin-panel") is None
        assert admin.find_component("admin-panel") is not None
        assert guest.find_component("guest-banner") is None
        assert staff.find_component("guest-banner") is not None

    def test_hidden_parent_hides_child(self, resolve_doc: Any, blueprint_doc: dict[str, Any]) -> None:
        blueprint_doc["regions"][1]["components"][0]["rbac"] = {"deny": ["staff"]}
        model = _evaluate(resolve_doc(blueprint_doc), "staff")
        assert model.find_component("hero") is None
        assert model.find_component("hero-cta") is None

    def test_feature_entitlements(self, resolve_doc: Any, blueprint_doc: dict[str, Any]) -> None:
        blueprint_doc["regions"][1]["components"][3]["rbac"] = {"features": ["stats"]}
        document = resolve_doc(blueprint_doc)
        assert _evaluate(document, "staff").find_component("stats-card") is None
        assert _evaluate(document, "staff", entitlements=("stats",)).find_component("stats-card") is not None

    def test_denied_source_is_not_fetched(self, resolve_doc: Any, blueprint_doc: dict[str, Any]) -> None:
        blueprint_doc["data_sources"][0]["rbac"] = {"allow": ["admin"]}
        client = FakeStatsClient()
        model = _evaluate(resolve_doc(blueprint_doc), "staff", client=client)

        assert client.fetched == []
        assert model.data_source("stats").status is DataSourceStatus.DENIED
        assert model.find_component("stats-card").props["count"].reason is UnavailableReason.DATA_SOURCE_DENIED
        assert model.issues == ()

    def test_hidden_action(self, resolve_doc: Any, blueprint_doc: dict[str, Any]) -> None:
        blueprint_doc["actions"][0]["rbac"] = {"allow": ["admin"]}
        model = _evaluate(resolve_doc(blueprint_doc), "staff")

        on_click = model.find_component("hero-cta").props["onClick"]
        assert on_click == Unavailable(reason=UnavailableReason.ACTION_UNAVAILABLE, path="refresh")
        assert model.actions == ()
        assert model.issues == ()


class TestDataSourceFailures:
    def test_timeout_only_affects_its_bindings(self, resolved: ResolvedPage) -> None:
        model = _evaluate(resolved, "staff", client=FakeStatsClient(delay=1.0), default_timeout_seconds=0.05)

        count = model.find_component("stats-card").props["count"]
        assert count == Unavailable(
            reason=UnavailableReason.DATA_SOURCE_TIMEOUT, source="stats", path="data.count", fallback=0
        )
        assert model.find_component("member-count").props == {"value": 3}
        assert model.find_component("summary").props["text"] == "3 members"
        assert model.data_source("stats").status is DataSourceStatus.TIMEOUT
        (issue,) = model.issues
        assert (issue.node_id, issue.prop, issue.code) == ("stats", None, IssueCode.DATA_SOURCE_TIMEOUT)
        assert issue.message == "timed out after 0.05s"

    def test_failure_recorded_once_per_source(self, resolved: ResolvedPage) -> None:
        model = _evaluate(resolved, "staff", client=FakeStatsClient(error="Data source 'stats' returned HTTP 500"))
        assert [(i.node_id, i.code) for i in model.issues] == [("stats", IssueCode.DATA_SOURCE_FAILED)]
        assert model.data_source("stats").error == "Data source 'stats' returned HTTP 500"

    def test_no_http_client(self, resolved: ResolvedPage) -> None:
        model = Evaluator().evaluate_sync(resolved, ViewerContext(roles=frozenset({"staff"})))
        assert model.data_source("stats").error == "No http client configured"
        assert model.find_component("member-count").props == {"value": 3}

    def test_cancellation_propagates(self, resolved: ResolvedPage) -> None:
        evaluator = Evaluator(FakeStatsClient(delay=10.0), config=EvaluationConfig(default_timeout_seconds=30))

        async def run() -> None:
            task = asyncio.create_task(evaluator.evaluate(resolved, ViewerContext()))
            await asyncio.sleep(0.05)
            task.cancel()
            await task

        with pytest.raises(asyncio.CancelledError):
            asyncio.run(run())
