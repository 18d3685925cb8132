"""Unit tests for the Registry, snapshots and layer selection."""

from __future__ import annotations

import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pytest
from structlog.testing import capture_logs

from strata_core.compiler import CompiledArtifact
from strata_core.errors import CompileError, LayerNotFoundError, StorageError
from strata_core.publisher import ArtifactStore, PointerStore, Publisher
from strata_core.registry import Registry, overlay_matches, precedence
from strata_core.schemas import LayerKey, RegistryPointer, RequestContext

HOME = {"module": "core", "route": "home"}


@pytest.fixture
def publish_overlay(publisher: Publisher, compile_doc: Any, make_overlay: Any, blueprint: CompiledArtifact) -> Any:
    """Publish an empty overlay with the given scope and return its layer key."""

    def _publish(**scope: str) -> str:
        artifact = compile_doc(make_overlay(scope, []), base=blueprint)
        return publisher.publish(artifact).layer_key

    return _publish


@pytest.fixture
def registry(publisher: Publisher, blueprint: CompiledArtifact, store_root: Path) -> Registry:
    publisher.publish(blueprint)
    return Registry.from_store_root(store_root)


class TestResolveLayers:
    def test_blueprint_only(self, registry: Registry, blueprint: CompiledArtifact) -> None:
        layers = registry.resolve_layers(RequestContext(**HOME))
        assert layers.layer_keys == [blueprint.layer_key]
        assert layers.checksums == [blueprint.checksum]
        assert layers.generation == 1

    def test_unknown_route(self, registry: Registry) -> None:
        with pytest.raises(LayerNotFoundError) as exc:
            registry.resolve_layers(RequestContext(module="core", route="missing"))
        assert str(exc.value) == "No blueprint published for core/missing"

    def test_empty_store(self, store_root: Path) -> None:
        with pytest.raises(LayerNotFoundError):
            Registry.from_store_root(store_root).resolve_layers(RequestContext(**HOME))

    def test_only_matching_overlays(self, registry: Registry, publish_overlay: Any) -> None:
        acme = publish_overlay(tenant="acme")
        publish_overlay(tenant="globex")
        admin = publish_overlay(role="admin")
        publish_overlay(locale="fr")
        registry.refresh()

        context = RequestContext(tenant="acme", roles={"admin", "staff"}, **HOME)
        assert registry.resolve_layers(context).layer_keys[1:] == [acme, admin]

    def test_precedence_order(self, registry: Registry, publish_overlay: Any) -> None:
        locale = publish_overlay(locale="fr")
        tenant_role = publish_overlay(tenant="acme", role="admin")
        role = publish_overlay(role="admin")
        tenant = publish_overlay(tenant="acme")
        variant = publish_overlay(variant="beta")
        registry.refresh()

        context = RequestContext(tenant="acme", roles={"admin"}, variant="beta", locale="fr", **HOME)
        assert registry.resolve_layers(context).layer_keys[1:] == [tenant, role, tenant_role, variant, locale]

    def test_missing_artifact(self, registry: Registry, store_root: Path, blueprint: CompiledArtifact) -> None:
        (store_root / ArtifactStore.ref_for(blueprint.checksum)).unlink()
        layers = registry.resolve_layers(RequestContext(**HOME))
        with pytest.raises(StorageError, match="Artifact not found"):
            registry.load_layers(layers)


class TestMatching:
    @pytest.mark.parametrize(
        ("key", "matches"),
        [
            ("overlay::acme::core::home::-::-::-", True),
            ("overlay::globex::core::home::-::-::-", False),
            ("overlay::global::core::home::staff::-::-", True),
            ("overlay::global::core::home::guest::-::-", False),
            ("overlay::acme::core::home::staff::-::fr", False),
        ],
    )
    def test_overlay_matches(self, key: str, matches: bool) -> None:
        context = RequestContext(tenant="acme", roles={"staff", "editor"}, **HOME)
        assert overlay_matches(LayerKey.parse(key), context) is matches

    def test_precedence_key(self) -> None:
        text = "overlay::acme::core::home::admin::-::-"
        assert precedence(LayerKey.parse(text), text) == (1, 2, text)


class TestReservedScopeValues:
    @pytest.mark.parametrize("scope", [{"tenant": "global"}, {"role": "-"}, {"variant": "-"}, {"locale": "-"}])
    def test_reserved_scope_does_not_compile(
        self, compile_doc: Any, make_overlay: Any, blueprint: CompiledArtifact, scope: dict[str, str]
    ) -> None:
        with pytest.raises(CompileError) as exc:
            compile_doc(make_overlay(scope, []), base=blueprint)
        assert "reserved_scope_value" in exc.value.reasons

    def test_unscoped_overlay_pointer_is_ignored(
        self, registry: Registry, store_root: Path, blueprint: CompiledArtifact
    ) -> None:
        stray = RegistryPointer(
            layer_key="overlay::global::core::home::-::-::-",
            entry_id="overlay::global::core::home::-::-::-@1.0.0",
            checksum=blueprint.checksum,
            content_version="1.0.0",
            artifact_ref=ArtifactStore.ref_for(blueprint.checksum),
            updated_at=datetime.now(UTC),
        )
        PointerStore(store_root).put(stray)

        with capture_logs() as logs:
            registry.refresh()
        context = RequestContext(tenant="other", roles={"staff"}, **HOME)

        assert registry.resolve_layers(context).layer_keys == [blueprint.layer_key]
        assert [entry["event"] for entry in logs if entry["log_level"] == "warning"] == ["unscoped_overlay_ignored"]


class TestSnapshots:
    def test_generation_increments(self, registry: Registry) -> None:
        assert registry.generation == 0
        registry.refresh()
        snapshot = registry.refresh()
        assert snapshot.generation == 2
        assert registry.snapshot is snapshot

    def test_old_snapshot_unchanged(self, registry: Registry, publish_overlay: Any) -> None:
        before = registry.refresh()
        publish_overlay(tenant="acme")
        after = registry.refresh()
        assert before.layer_count == 1
        assert after.layer_count == 2
        assert before.select(RequestContext(tenant="acme", **HOME)).overlays == ()

    def test_refresh_failure_keeps_snapshot(self, registry: Registry, store_root: Path) -> None:
        snapshot = registry.refresh()
        (store_root / "pointers" / "broken.json").write_text("{")
        with pytest.raises(StorageError):
            registry.refresh()
        assert registry.snapshot is snapshot

    def test_blueprints_mapping(self, registry: Registry, blueprint: CompiledArtifact) -> None:
        snapshot = registry.refresh()
        assert snapshot.blueprints[("core", "home")].checksum == blueprint.checksum


class TestArtifactLoading:
    def test_load_layers(self, registry: Registry, publish_overlay: Any, blueprint: CompiledArtifact) -> None:
        publish_overlay(tenant="acme")
        registry.refresh()
        base, overlays = registry.load_layers(registry.resolve_layers(RequestContext(tenant="acme", **HOME)))
        assert base == blueprint
        assert [o.ir.scope.tenant for o in overlays] == ["acme"]

    def test_cache_serves_repeat_loads(self, registry: Registry, store_root: Path, blueprint: CompiledArtifact) -> None:
        layers = registry.resolve_layers(RequestContext(**HOME))
        first = registry.load_artifact(layers.blueprint)
        (store_root / ArtifactStore.ref_for(blueprint.checksum)).unlink()
        assert registry.load_artifact(layers.blueprint) is first

    def test_cache_is_bounded(
        self, publisher: Publisher, compile_doc: Any, blueprint_doc: dict[str, Any], store_root: Path
    ) -> None:
        registry = Registry.from_store_root(store_root, cache_size=1)
        pointers = []
        for route in ("a", "b"):
            document = dict(blueprint_doc, route=route)
            publisher.publish(compile_doc(document))
        for pointer in registry.refresh().blueprints.values():
            pointers.append(pointer)
            registry.load_artifact(pointer)

        (store_root / pointers[0].artifact_ref).unlink()
        with pytest.raises(StorageError):
            registry.load_artifact(pointers[0])

    def test_checksum_mismatch(self, registry: Registry, blueprint: CompiledArtifact) -> None:
        pointer = registry.resolve_layers(RequestContext(**HOME)).blueprint
        wrong = pointer.model_copy(update={"checksum": "c" * 64})
        with pytest.raises(StorageError, match="does not match its pointer checksum"):
            registry.load_artifact(wrong)


class TestPolling:
    def test_polling_picks_up_publishes(self, registry: Registry, publish_overlay: Any) -> None:
        registry.refresh()
        registry.start_polling(0.01)
        try:
            publish_overlay(tenant="acme")
            deadline = time.monotonic() + 5.0
            while registry.snapshot.layer_count < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            registry.stop_polling()
        assert registry.snapshot.layer_count == 2

    def test_polling_survives_errors(self, registry: Registry, store_root: Path) -> None:
        registry.refresh()
        (store_root / "pointers" / "broken.json").write_text("{")
        registry.start_polling(0.01)
        try:
            time.sleep(0.1)
        finally:
            registry.stop_polling()
        assert registry.generation == 1

    def test_invalid_interval(self, registry: Registry) -> None:
        with pytest.raises(ValueError, match="must be positive"):
            registry.start_polling(0)

    def test_double_start(self, registry: Registry) -> None:
        registry.start_polling(10)
        try:
            with pytest.raises(RuntimeError, match="already running"):
                registry.start_polling(10)
        finally:
            registry.stop_polling()

    def test_stop_without_start(self, registry: Registry) -> None:
        registry.stop_polling()
