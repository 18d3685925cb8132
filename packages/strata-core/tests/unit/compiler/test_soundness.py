"""Randomized referential soundness checks.

Random page trees with a mix of valid and broken references are compiled
and the outcome is compared against a small independent checker: a tree is
accepted exactly when every binding resolves to a declared contract field,
every action prop names a declared action and every overlay patch targets a
node that still exists when the patch applies.
"""

from __future__ import annotations

import random
from typing import Any

import pytest

from strata_core.compiler import CompiledArtifact, Compiler, ReasonCode
from strata_core.errors import CompileError

SEEDS = range(40)

REFERENCE_REASONS = {
    ReasonCode.UNKNOWN_DATA_SOURCE.value,
    ReasonCode.UNKNOWN_CONTRACT_FIELD.value,
    ReasonCode.UNKNOWN_ACTION.value,
}


def _random_blueprint(rng: random.Random) -> tuple[dict[str, Any], bool]:
    """Return an authored blueprint and whether every reference in it resolves."""
    contracts = {f"src{i}": [f"f{j}" for j in range(rng.randint(1, 3))] for i in range(rng.randint(1, 3))}
    actions = [f"act{i}" for i in range(rng.randint(0, 2))]
    sound = True

    components = []
    for index in range(rng.randint(1, 6)):
        props: dict[str, Any] = {"label": f"component {index}"}
        roll = rng.random()
        if roll < 0.7:
            source = rng.choice(sorted(contracts))
            props["value"] = {"contract": f"{source}.{rng.choice(contracts[source])}"}
        elif roll < 0.85:
            props["value"] = {"contract": f"ghost.f{index}"}
            sound = False
        else:
            props["value"] = {"contract": f"{rng.choice(sorted(contracts))}.missing{index}"}
            sound = False
        if rng.random() < 0.4:
            if actions and rng.random() < 0.7:
                props["onClick"] = {"action": rng.choice(actions)}
            else:
                props["onClick"] = {"action": f"undeclared{index}"}
                sound = False
        components.append({"id": f"c{index}", "type": "Widget", "props": props})

    document = {
        "kind": "blueprint",
        "schema_version": "1.0.0",
        "content_version": "1.0.0",
        "module": "core",
        "route": "home",
        "page_id": "home",
        "data_sources": [
            {
                "id": source,
                "kind": "http",
                "request": {"url": f"https://api.example.test/{source}"},
                "contract": {field: f"data.{field}" for field in fields},
            }
            for source, fields in contracts.items()
        ],
        "actions": [{"id": action, "kind": "navigate", "config": {"href": "/"}} for action in actions],
        "regions": [{"id": "main", "components": components}],
    }
    return document, sound


def _random_overlay(rng: random.Random, component_ids: list[str]) -> tuple[dict[str, Any], bool]:
    """Return an overlay of component patches and whether every target exists when applied."""
    live = set(component_ids)
    sound = True
    patches = []
    for index in range(rng.randint(1, 4)):
        if rng.random() < 0.8 and live:
            target = rng.choice(sorted(live))
        elif rng.random() < 0.5 and component_ids:
            target = rng.choice(component_ids)
        else:
            target = f"ghost{index}"
        if target not in live:
            sound = False

        if rng.random() < 0.3:
            patches.append({"target": "component", "target_id": target, "operation": "remove"})
            live.discard(target)
        else:
            patches.append(
                {
                    "target": "component",
                    "target_id": target,
                    "operation": "merge",
                    "payload": {"props": {"label": f"patched {index}"}},
                }
            )

    document = {
        "kind": "overlay",
        "schema_version": "1.0.0",
        "content_version": "1.0.0",
        "module": "core",
        "route": "home",
        "target_page": "home",
        "scope": {"tenant": "acme"},
        "patches": patches,
    }
    return document, sound


def _compile(compiler: Compiler, document: dict[str, Any], base: CompiledArtifact | None = None) -> Any:
    try:
        return compiler.compile(document, base=base.ir if base is not None else None)
    except CompileError as exc:
        return exc


@pytest.mark.parametrize("seed", SEEDS)
def test_blueprint_references(seed: int) -> None:
    document, sound = _random_blueprint(random.Random(seed))

    outcome = _compile(Compiler(), document)

    if sound:
        assert isinstance(outcome, CompiledArtifact), outcome
        for alias, (source_id, path) in outcome.alias_table.items():
            assert alias.startswith(f"{source_id}.")
            assert path.startswith("data.")
    else:
        assert isinstance(outcome, CompileError)
        assert set(outcome.reasons) <= REFERENCE_REASONS


@pytest.mark.parametrize("seed", SEEDS)
def test_overlay_targets(seed: int) -> None:
    rng = random.Random(seed)
    blueprint_doc, _ = _random_blueprint(rng)
    # Keep the base sound so only overlay targets decide the outcome
    for component in blueprint_doc["regions"][0]["components"]:
        component["props"] = {"label": component["id"]}
    compiler = Compiler()
    base = compiler.compile(blueprint_doc)
    component_ids = [component["id"] for component in blueprint_doc["regions"][0]["components"]]

    overlay_doc, sound = _random_overlay(rng, component_ids)
    outcome = _compile(compiler, overlay_doc, base)

    if sound:
        assert isinstance(outcome, CompiledArtifact), outcome
    else:
        assert isinstance(outcome, CompileError)
        assert set(outcome.reasons) == {ReasonCode.UNKNOWN_OVERLAY_TARGET.value}
