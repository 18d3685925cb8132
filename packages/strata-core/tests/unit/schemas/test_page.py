"""Unit tests for the canonical IR models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from strata_core.schemas import (
    Component,
    DataSource,
    DataSourceKind,
    LayerScope,
    OverlayPatch,
    PageDefinition,
    PageKind,
    PatchOperation,
    PatchTarget,
    Prop,
    PropKind,
    RBACDirective,
    Region,
)


def _page(**overrides: object) -> PageDefinition:
    data: dict[str, object] = {
        "kind": PageKind.BLUEPRINT,
        "schema_version": "1.0.0",
        "content_version": "1.0.0",
        "module": "core",
        "route": "home",
        "page_id": "home",
    }
    data.update(overrides)
    return PageDefinition(**data)  # type: ignore[arg-type]


class TestProp:
    """Tests for Prop shape validation."""

    def test_static_prop(self) -> None:
        prop = Prop(name="title", kind=PropKind.STATIC, value="Welcome")
        assert prop.value == "Welcome"

    def test_binding_requires_contract_or_source(self) -> None:
        with pytest.raises(ValidationError, match="needs a contract alias or a source"):
            Prop(name="count", kind=PropKind.BINDING)

    def test_binding_rejects_contract_and_source(self) -> None:
        with pytest.raises(ValidationError, match="cannot set both"):
            Prop(name="count", kind=PropKind.BINDING, contract="stats.count", source="stats")

    def test_expression_requires_text(self) -> None:
        with pytest.raises(ValidationError, match="has no expression"):
            Prop(name="label", kind=PropKind.EXPRESSION)

    def test_action_requires_id(self) -> None:
        with pytest.raises(ValidationError, match="has no action id"):
            Prop(name="onClick", kind=PropKind.ACTION)

    def test_prop_is_immutable(self) -> None:
        prop = Prop(name="title", kind=PropKind.STATIC, value="a")
        with pytest.raises(ValidationError):
            prop.value = "b"  # type: ignore[misc]

    def test_unknown_field_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Prop(name="title", kind=PropKind.STATIC, colour="red")  # type: ignore[call-arg]


class TestDataSource:
    def test_http_requires_request(self) -> None:
        with pytest.raises(ValidationError, match="no request descriptor"):
            DataSource(id="stats", kind=DataSourceKind.HTTP)

    def test_service_requires_handler(self) -> None:
        with pytest.raises(ValidationError, match="no handler"):
            DataSource(id="members", kind=DataSourceKind.SERVICE)

    def test_timeout_bounds(self) -> None:
        with pytest.raises(ValidationError):
            DataSource(id="profile", kind=DataSourceKind.STATIC, timeout_seconds=0)

    def test_id_pattern(self) -> None:
        with pytest.raises(ValidationError):
            DataSource(id="has space", kind=DataSourceKind.STATIC)


class TestOverlayPatch:
    def test_remove_without_payload(self) -> None:
        patch = OverlayPatch(target=PatchTarget.COMPONENT, target_id="hero", operation=PatchOperation.REMOVE)
        assert patch.payload is None

    def test_remove_with_payload_rejected(self) -> None:
        with pytest.raises(ValidationError, match="must not carry a payload"):
            OverlayPatch(
                target=PatchTarget.COMPONENT,
                target_id="hero",
                operation=PatchOperation.REMOVE,
                payload={"type": "Hero"},
            )

    def test_merge_needs_payload(self) -> None:
        with pytest.raises(ValidationError, match="needs a payload"):
            OverlayPatch(target=PatchTarget.REGION, target_id="main", operation=PatchOperation.MERGE)


class TestLayerScope:
    def test_empty_scope(self) -> None:
        assert LayerScope().is_empty
        assert LayerScope().dimensions() == {}

    def test_dimensions_in_precedence_order(self) -> None:
        scope = LayerScope(locale="fr", tenant="acme", role="admin")
        assert list(scope.dimensions()) == ["tenant", "role", "locale"]


class TestPageDefinition:
    def test_lookups(self) -> None:
        page = _page(
            regions=(
                Region(id="main", components=(Component(id="hero", type="Hero"), Component(id="cta", type="Button"))),
            ),
            data_sources=(DataSource(id="profile", kind=DataSourceKind.STATIC, value={}),),
        )
        region, component = page.find_component("cta")  # type: ignore[misc]
        assert region.id == "main"
        assert component.type == "Button"
        assert page.find_component("missing") is None
        assert page.region("main") is not None
        assert page.data_source("profile") is not None
        assert page.action("refresh") is None

    def test_declared_ids(self) -> None:
        page = _page(regions=(Region(id="main", components=(Component(id="hero", type="Hero"),)),))
        ids = page.declared_ids()
        assert ids[PatchTarget.REGION] == {"main"}
        assert ids[PatchTarget.COMPONENT] == {"hero"}
        assert ids[PatchTarget.DATA_SOURCE] == set()

    def test_is_overlay(self) -> None:
        assert not _page().is_overlay
        assert _page(kind=PageKind.OVERLAY, scope=LayerScope(tenant="acme")).is_overlay

    def test_page_is_immutable(self) -> None:
        page = _page()
        with pytest.raises(ValidationError):
            page.title = "Other"  # type: ignore[misc]

    def test_component_prop_lookup(self) -> None:
        component = Component(
            id="hero",
            type="Hero",
            props=(Prop(name="title", kind=PropKind.STATIC, value="Welcome"),),
            rbac=RBACDirective(allow=("admin",)),
        )
        assert component.prop("title").value == "Welcome"  # type: ignore[union-attr]
        assert component.prop("subtitle") is None
        assert component.namespace == "core"
