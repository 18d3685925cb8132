"""Authoring document to canonical IR transformation.

The Transformer takes the generic node tree of a parsed YAML/JSON document
and produces a PageDefinition. It:

- assigns canonical shapes (snake_case keys, prop lists, tuples)
- classifies props by kind and applies ``format`` coercions
- flattens nested ``children`` into the region's ordered component list
- sorts data sources, actions and role lists
- turns overlay documents into an ordered patch list
- rejects structurally malformed input

It does not check cross references; that is the Validator's job.

Legacy authoring vocabulary is accepted and normalized:

- camelCase keys (``schemaVersion``, ``dataSources``, ``targetId``)
- data source kind ``supabase`` (now ``service``), ``json`` payloads and
  ``config.value`` on static sources (now ``value``)
- props authored as a mapping, ``actionId`` (now ``action``)
- comma-separated RBAC role strings
- the ``overlay: {regions, components, dataSources, actions}`` form with
  per-node ``operation`` attributes (default ``merge``)
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from strata_core.compiler.issues import ROOT_NODE, ReasonCode, ValidationIssue
from strata_core.errors import CompileError
from strata_core.schemas.page import (
    Action,
    Component,
    ComponentMerge,
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
    Region,
)

logger = structlog.get_logger(__name__)

PROP_FORMATS = ("text", "number", "boolean", "json")

# Legacy names accepted besides the snake_case and camelCase spellings
_EXTRA_KEYS: dict[str, tuple[str, ...]] = {
    "action": ("actionId",),
    "timeout_seconds": ("timeout",),
}

_LEGACY_KINDS = {"supabase": DataSourceKind.SERVICE}
_LEGACY_OVERLAY_SECTIONS = (
    ("regions", PatchTarget.REGION),
    ("components", PatchTarget.COMPONENT),
    ("data_sources", PatchTarget.DATA_SOURCE),
    ("actions", PatchTarget.ACTION),
)
_PROP_KEYS = frozenset(
    {"name", "kind", "value", "contract", "source", "path", "fallback", "expression", "action", "actionId", "format"}
)
_INTEGER_RE = re.compile(r"^[+-]?\d+$")
_REPLACE_MODELS: dict[PatchTarget, type[BaseModel]] = {
    PatchTarget.REGION: Region,
    PatchTarget.COMPONENT: Component,
    PatchTarget.DATA_SOURCE: DataSource,
    PatchTarget.ACTION: Action,
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _candidates(name: str) -> tuple[str, ...]:
    camel = _camel(name)
    keys = (name,) if camel == name else (name, camel)
    return keys + _EXTRA_KEYS.get(name, ())


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _is_prop_spec(value: Any) -> bool:
    """Tell a prop spec mapping from a static mapping value."""
    if not isinstance(value, Mapping):
        return False
    return "kind" in value or set(value) <= _PROP_KEYS


def _label(spec: Any, fallback: str) -> str:
    if isinstance(spec, Mapping) and spec.get("id"):
        return str(spec["id"])
    return fallback


class _Reader:
    """Keyed access to one authored mapping.

    Tracks which keys were read so unknown (misspelled) attributes can be
    reported once the node has been consumed.
    """

    def __init__(self, node: Mapping[str, Any], node_id: str, issues: list[ValidationIssue]) -> None:
        self.node = node
        self.node_id = node_id
        self.issues = issues
        self._used: set[str] = set()

    def has(self, name: str) -> bool:
        return any(key in self.node for key in _candidates(name))

    def get(self, name: str, default: Any = None) -> Any:
        for key in _candidates(name):
            if key in self.node:
                self._used.add(key)
                return self.node[key]
        return default

    def text(self, name: str, *, required: bool = False) -> str | None:
        value = self.get(name)
        if value is None or value == "":
            if required:
                self.error(ReasonCode.MALFORMED_NODE, f"missing required attribute '{name}'")
            return None
        if isinstance(value, (Mapping, list)):
            self.error(ReasonCode.MALFORMED_NODE, f"attribute '{name}' must be a scalar")
            return None
        return str(value).strip()

    def mapping(self, name: str) -> Mapping[str, Any] | None:
        value = self.get(name)
        if value is None:
            return None
        if not isinstance(value, Mapping):
            self.error(ReasonCode.MALFORMED_NODE, f"attribute '{name}' must be a mapping")
            return None
        return value

    def error(self, reason: ReasonCode, message: str) -> None:
        self.issues.append(ValidationIssue(node_id=self.node_id, reason=reason, message=message))

    def finish(self) -> None:
        for key in sorted(str(k) for k in self.node):
            if key not in self._used:
                self.error(ReasonCode.MALFORMED_NODE, f"unknown attribute '{key}'")


class _Transform:
    """One transformation run; accumulates issues instead of stopping early."""

    def __init__(self) -> None:
        self.issues: list[ValidationIssue] = []

    def error(self, node_id: str, reason: ReasonCode, message: str) -> None:
        self.issues.append(ValidationIssue(node_id=node_id, reason=reason, message=message))

    def reader(self, node: Any, node_id: str, what: str) -> _Reader | None:
        if not isinstance(node, Mapping):
            self.error(node_id, ReasonCode.MALFORMED_NODE, f"{what} must be a mapping")
            return None
        return _Reader(node, node_id, self.issues)

    def build(self, model: type[BaseModel], data: dict[str, Any], node_id: str) -> Any:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            for err in exc.errors():
                loc = ".".join(str(part) for part in err["loc"])
                message = f"{loc}: {err['msg']}" if loc else err["msg"]
                self.error(node_id, ReasonCode.MALFORMED_NODE, message)
            return None

    def coerce(self, value: Any, fmt: str | None, node_id: str) -> Any:
        if fmt is None or value is None:
            return value
        if fmt == "text":
            return str(value).strip()
        if fmt == "number":
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return value
            text = str(value).strip()
            try:
                return int(text) if _INTEGER_RE.match(text) else float(text)
            except ValueError:
                self.error(node_id, ReasonCode.MALFORMED_NODE, f"'{text}' is not a number")
                return value
        if fmt == "boolean":
            if isinstance(value, bool):
                return value
            return str(value).strip().lower() == "true"
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError as exc:
                self.error(node_id, ReasonCode.MALFORMED_NODE, f"invalid JSON value: {exc.msg}")
        return value

    @staticmethod
    def roles(value: Any) -> list[str] | None:
        if value is None:
            return None
        if isinstance(value, str):
            parts = value.split(",")
        else:
            parts = [str(item) for item in _as_list(value)]
        return sorted({part.strip() for part in parts if part.strip()})

    # -- nodes -------------------------------------------------------------

    def rbac(self, spec: Any, node_id: str) -> dict[str, Any] | None:
        if spec is None:
            return None
        reader = self.reader(spec, node_id, "rbac")
        if reader is None:
            return None
        directive = {
            "allow": self.roles(reader.get("allow")),
            "deny": self.roles(reader.get("deny")),
            "features": self.roles(reader.get("features")),
        }
        reader.finish()
        return {key: value for key, value in directive.items() if value is not None}

    def prop(self, name: str, spec: Any, owner: str) -> dict[str, Any] | None:
        node_id = f"{owner}.{name}"
        if not _is_prop_spec(spec):
            return {"name": name, "kind": PropKind.STATIC.value, "value": spec}

        reader = _Reader(spec, node_id, self.issues)
        reader.get("name")
        fmt = reader.text("format")
        if fmt is not None and fmt not in PROP_FORMATS:
            reader.error(ReasonCode.UNKNOWN_VALUE, f"unknown prop format '{fmt}'")
            fmt = None

        data: dict[str, Any] = {"name": name}
        for key in ("contract", "source", "path", "action"):
            value = reader.text(key)
            if value is not None:
                data[key] = value
        expression = reader.get("expression")
        if expression is not None:
            data["expression"] = str(expression).strip()
        if reader.has("value"):
            data["value"] = self.coerce(reader.get("value"), fmt, node_id)
        if reader.has("fallback"):
            data["fallback"] = self.coerce(reader.get("fallback"), fmt, node_id)

        kind_raw = reader.text("kind")
        reader.finish()
        if kind_raw is None:
            if "contract" in data or "source" in data:
                kind_raw = PropKind.BINDING.value
            elif "expression" in data:
                kind_raw = PropKind.EXPRESSION.value
            elif "action" in data:
                kind_raw = PropKind.ACTION.value
            else:
                kind_raw = PropKind.STATIC.value
        try:
            data["kind"] = PropKind(kind_raw).value
        except ValueError:
            reader.error(ReasonCode.UNKNOWN_VALUE, f"unknown prop kind '{kind_raw}'")
            return None

        prop = self.build(Prop, data, node_id)
        return None if prop is None else prop.model_dump(mode="json", exclude_none=True)

    def props(self, spec: Any, owner: str) -> list[dict[str, Any]]:
        """Normalize a prop list, or a ``{name: spec}`` mapping, into an ordered list."""
        if spec is None:
            return []
        entries: list[tuple[str, Any]] = []
        if isinstance(spec, Mapping):
            entries = [(str(name), value) for name, value in spec.items()]
        elif isinstance(spec, list):
            for index, item in enumerate(spec):
                name = item.get("name") if isinstance(item, Mapping) else None
                if not name:
                    self.error(f"{owner}[{index}]", ReasonCode.MALFORMED_NODE, "prop is missing 'name'")
                    continue
                entries.append((str(name), item))
        else:
            self.error(owner, ReasonCode.MALFORMED_NODE, "props must be a list or a mapping")
            return []

        seen: set[str] = set()
        result: list[dict[str, Any]] = []
        for name, value in entries:
            if name in seen:
                self.error(f"{owner}.{name}", ReasonCode.DUPLICATE_ID, f"duplicate prop '{name}'")
                continue
            seen.add(name)
            prop = self.prop(name, value, owner)
            if prop is not None:
                result.append(prop)
        return result

    def component(
        self,
        spec: Any,
        *,
        partial: bool = False,
        parent: str | None = None,
        target_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Normalize a component and flatten its children depth-first.

        Args:
            spec: Authored component mapping.
            partial: Only emit authored attributes (merge payloads).
            parent: Parent component id for nested components.
            target_id: Patch target id; the payload carries no id of its own.

        Returns:
            The component dict followed by its descendants.
        """
        reader = self.reader(spec, target_id or _label(spec, "component"), "component")
        if reader is None:
            return []
        data: dict[str, Any] = {}
        if target_id is None:
            data["id"] = reader.text("id", required=True)
        owner = target_id or data["id"] or reader.node_id

        if not partial or reader.has("type"):
            data["type"] = reader.text("type", required=True)
        if not partial or reader.has("namespace"):
            data["namespace"] = reader.text("namespace") or "core"
        if reader.has("version"):
            data["version"] = reader.text("version")
        if not partial or reader.has("props"):
            data["props"] = self.props(reader.get("props"), owner)
        if reader.has("rbac"):
            data["rbac"] = self.rbac(reader.get("rbac"), owner)
        if parent is not None:
            data["parent"] = parent
        children = _as_list(reader.get("children"))
        reader.finish()

        flattened = [data]
        for child in children:
            flattened.extend(self.component(child, parent=owner))
        return flattened

    def region(self, spec: Any, *, partial: bool = False, target_id: str | None = None) -> dict[str, Any]:
        reader = self.reader(spec, target_id or _label(spec, "region"), "region")
        if reader is None:
            return {}
        data: dict[str, Any] = {}
        if target_id is None:
            data["id"] = reader.text("id", required=True)
        components: list[dict[str, Any]] = []
        for item in _as_list(reader.get("components")):
            components.extend(self.component(item, partial=partial))
        data["components"] = components
        reader.finish()
        return data

    def data_source(self, spec: Any, *, partial: bool = False, target_id: str | None = None) -> dict[str, Any]:
        reader = self.reader(spec, target_id or _label(spec, "data_source"), "data source")
        if reader is None:
            return {}
        data: dict[str, Any] = {}
        if target_id is None:
            data["id"] = reader.text("id", required=True)

        kind: DataSourceKind | None = None
        kind_raw = reader.text("kind")
        if kind_raw is None and not partial:
            kind = DataSourceKind.STATIC
        elif kind_raw is not None:
            try:
                kind = _LEGACY_KINDS.get(kind_raw) or DataSourceKind(kind_raw)
            except ValueError:
                reader.error(ReasonCode.UNKNOWN_VALUE, f"unknown data source kind '{kind_raw}'")
        if kind is not None:
            data["kind"] = kind.value

        contract = reader.mapping("contract")
        if contract is not None:
            data["contract"] = {str(alias): str(path) for alias, path in sorted(contract.items())}

        config = dict(reader.mapping("config") or {})
        for key in ("json", "Json"):
            if key in reader.node:
                data["value"] = self.coerce(reader.get(key), "json", reader.node_id)
        if reader.has("value"):
            data["value"] = reader.get("value")
        if kind is DataSourceKind.STATIC and "value" in config and "value" not in data:
            data["value"] = config.pop("value")

        request = reader.mapping("request")
        if request is None and kind is DataSourceKind.HTTP and "url" in config:
            request = {key: config.pop(key) for key in ("url", "method", "headers", "params", "body") if key in config}
        if request is not None:
            data["request"] = self.request(request, reader.node_id)

        handler = reader.text("handler") or config.pop("handler", None)
        if handler is None and kind_raw in _LEGACY_KINDS:
            handler = kind_raw
        if handler is not None:
            data["handler"] = str(handler)
        if config:
            data["config"] = config

        if reader.has("timeout_seconds"):
            timeout = reader.get("timeout_seconds")
            if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
                reader.error(ReasonCode.MALFORMED_NODE, "timeout_seconds must be a number")
            else:
                data["timeout_seconds"] = timeout
        if reader.has("rbac"):
            data["rbac"] = self.rbac(reader.get("rbac"), reader.node_id)
        reader.finish()
        return data

    def request(self, spec: Mapping[str, Any], node_id: str) -> dict[str, Any]:
        reader = _Reader(spec, f"{node_id}.request", self.issues)
        data: dict[str, Any] = {}
        url = reader.text("url")
        if url is not None:
            data["url"] = url
        method = reader.text("method")
        if method is not None:
            data["method"] = method.upper()
        headers = reader.mapping("headers")
        if headers is not None:
            data["headers"] = {str(k): str(v) for k, v in sorted(headers.items())}
        params = reader.mapping("params")
        if params is not None:
            data["params"] = {str(k): v for k, v in sorted(params.items())}
        if reader.has("body"):
            data["body"] = reader.get("body")
        reader.finish()
        return data

    def action(self, spec: Any, *, partial: bool = False, target_id: str | None = None) -> dict[str, Any]:
        reader = self.reader(spec, target_id or _label(spec, "action"), "action")
        if reader is None:
            return {}
        data: dict[str, Any] = {}
        if target_id is None:
            data["id"] = reader.text("id", required=True)
        if not partial or reader.has("kind"):
            data["kind"] = reader.text("kind", required=True)
        if not partial or reader.has("config"):
            data["config"] = self.props(reader.get("config"), reader.node_id)
        if reader.has("rbac"):
            data["rbac"] = self.rbac(reader.get("rbac"), reader.node_id)
        reader.finish()
        return data

    # -- overlays ----------------------------------------------------------

    def patch(self, spec: Any, index: int) -> OverlayPatch | None:
        node_id = f"patches[{index}]"
        reader = self.reader(spec, node_id, "patch")
        if reader is None:
            return None
        target_raw = reader.text("target", required=True)
        target_id = reader.text("target_id", required=True)
        operation = reader.text("operation") or PatchOperation.MERGE.value
        payload = reader.get("payload")
        reader.finish()
        if target_raw is None or target_id is None:
            return None
        target_raw = "data_source" if target_raw in ("dataSource", "data-source") else target_raw
        try:
            target = PatchTarget(target_raw)
        except ValueError:
            reader.error(ReasonCode.UNKNOWN_VALUE, f"unknown patch target '{target_raw}'")
            return None
        return self.overlay_patch(target, target_id, operation, payload, node_id)

    def overlay_patch(
        self,
        target: PatchTarget,
        target_id: str,
        operation_raw: str,
        payload_spec: Any,
        node_id: str,
    ) -> OverlayPatch | None:
        try:
            operation = PatchOperation(operation_raw)
        except ValueError:
            self.error(node_id, ReasonCode.UNKNOWN_VALUE, f"unknown patch operation '{operation_raw}'")
            return None

        if operation is PatchOperation.REMOVE:
            if payload_spec:
                self.error(node_id, ReasonCode.MALFORMED_NODE, "remove patches cannot carry a payload")
            return OverlayPatch(target=target, target_id=target_id, operation=operation)

        spec = dict(payload_spec) if isinstance(payload_spec, Mapping) else payload_spec
        if isinstance(spec, dict):
            authored_id = spec.pop("id", None)
            if authored_id is not None and str(authored_id) != target_id:
                message = f"payload id '{authored_id}' does not match '{target_id}'"
                self.error(node_id, ReasonCode.MALFORMED_NODE, message)

        partial = operation is PatchOperation.MERGE
        children: list[dict[str, Any]] = []
        if target is PatchTarget.REGION:
            payload = self.region(spec, partial=partial, target_id=target_id)
        elif target is PatchTarget.COMPONENT:
            flattened = self.component(spec, partial=partial, target_id=target_id)
            if not flattened:
                return None
            payload, children = flattened[0], flattened[1:]
        elif target is PatchTarget.DATA_SOURCE:
            payload = self.data_source(spec, partial=partial, target_id=target_id)
        else:
            payload = self.action(spec, partial=partial, target_id=target_id)

        if not partial:
            node = self.build(_REPLACE_MODELS[target], {"id": target_id, **payload}, target_id)
            if node is None:
                return None
            payload = node.model_dump(mode="json", exclude_none=True)
            if target is PatchTarget.REGION:
                payload.pop("id")
        elif target is PatchTarget.REGION:
            payload = {"components": self.canonical_components(payload.get("components", []), partial=True)}
        if children:
            payload["children"] = self.canonical_components(children)
        return OverlayPatch(target=target, target_id=target_id, operation=operation, payload=payload)

    def canonical_components(self, components: list[dict[str, Any]], *, partial: bool = False) -> list[dict[str, Any]]:
        """Validate flattened components; with ``partial``, typeless entries stay merge entries."""
        built = [
            self.build(ComponentMerge if partial and "type" not in data else Component, data, _label(data, "component"))
            for data in components
        ]
        return [c.model_dump(mode="json", exclude_none=True) for c in built if c is not None]

    def legacy_overlay(self, spec: Any) -> list[OverlayPatch]:
        reader = self.reader(spec, "overlay", "overlay")
        if reader is None:
            return []
        patches: list[OverlayPatch] = []
        for section, target in _LEGACY_OVERLAY_SECTIONS:
            for index, node in enumerate(_as_list(reader.get(section))):
                node_id = f"overlay.{section}[{index}]"
                if not isinstance(node, Mapping) or not node.get("id"):
                    self.error(node_id, ReasonCode.MALFORMED_NODE, "overlay node is missing 'id'")
                    continue
                body = {k: v for k, v in node.items() if k not in ("id", "operation")}
                operation = str(node.get("operation") or PatchOperation.MERGE.value)
                patch = self.overlay_patch(target, str(node["id"]), operation, body, node_id)
                if patch is not None:
                    patches.append(patch)
        reader.finish()
        return patches

    # -- root --------------------------------------------------------------

    def page(self, document: Any) -> PageDefinition | None:
        root = self.reader(document, ROOT_NODE, "document")
        if root is None:
            return None

        kind_raw = root.text("kind")
        if kind_raw is None:
            is_overlay = root.has("overlay") or root.has("patches")
            kind_raw = (PageKind.OVERLAY if is_overlay else PageKind.BLUEPRINT).value
        try:
            kind = PageKind(kind_raw)
        except ValueError:
            root.error(ReasonCode.UNKNOWN_VALUE, f"unknown document kind '{kind_raw}'")
            return None

        schema_version = root.text("schema_version", required=True) or ""
        content_version = root.text("content_version", required=True) or ""
        module = root.text("module") or ""
        route = root.text("route") or ""
        target_page = root.text("target_page")

        scope_spec = root.mapping("scope")
        scope_reader = root if scope_spec is None else _Reader(scope_spec, "scope", self.issues)
        scope = LayerScope(**{dim: scope_reader.text(dim) for dim in ("tenant", "role", "variant", "locale")})
        if scope_reader is not root:
            scope_reader.finish()

        # Page content either sits at the root or under a ``page`` wrapper
        page_spec = root.mapping("page")
        body = root if page_spec is None else _Reader(page_spec, ROOT_NODE, self.issues)
        page_id = root.text("page_id") if page_spec is None else (body.text("id") or root.text("page_id"))
        title = body.text("title")
        regions = [self.build(Region, self.region(r), _label(r, "region")) for r in _as_list(body.get("regions"))]
        sources = [
            self.build(DataSource, self.data_source(s), _label(s, "data_source"))
            for s in _as_list(body.get("data_sources"))
        ]
        actions = [self.build(Action, self.action(a), _label(a, "action")) for a in _as_list(body.get("actions"))]
        constants = body.mapping("constants") or {}
        if body is not root:
            body.finish()

        patches = [self.patch(p, index) for index, p in enumerate(_as_list(root.get("patches")))]
        if root.has("overlay"):
            patches.extend(self.legacy_overlay(root.get("overlay")))
        if kind is PageKind.BLUEPRINT and patches:
            root.error(ReasonCode.MALFORMED_NODE, "blueprints cannot carry patches")
        root.finish()

        if self.issues:
            return None
        return PageDefinition(
            kind=kind,
            schema_version=schema_version,
            content_version=content_version,
            module=module,
            route=route,
            scope=scope,
            page_id=page_id,
            target_page=target_page,
            title=title,
            regions=tuple(regions),
            data_sources=tuple(sorted(sources, key=lambda s: s.id)),
            actions=tuple(sorted(actions, key=lambda a: a.id)),
            constants={str(k): v for k, v in constants.items()},
            patches=tuple(p for p in patches if p is not None),
        )


class Transformer:
    """Turn parsed authoring documents into canonical IR.

    Example:
        >>> document = yaml.safe_load(Path("pages/home.yaml").read_text())
        >>> page = Transformer().transform(document, source_path="pages/home.yaml")
        >>> page.kind
        <PageKind.BLUEPRINT: 'blueprint'>
    """

    def transform(self, document: Any, source_path: str | None = None) -> PageDefinition:
        """Transform one parsed document.

        Args:
            document: Generic node tree (mapping) of a parsed YAML/JSON document.
            source_path: Authoring file path, used for error context only.

        Returns:
            The canonical PageDefinition.

        Raises:
            CompileError: With every structural issue found.
        """
        run = _Transform()
        page = run.page(document)
        if page is None:
            raise CompileError(run.issues, source_path=source_path)
        logger.debug(
            "document_transformed",
            source_path=source_path,
            kind=page.kind.value,
            regions=len(page.regions),
            patches=len(page.patches),
        )
        return page
