"""Page evaluation.

``Evaluator.evaluate`` turns a resolved page into a RenderModel for one
viewer:

1. access control removes nodes the viewer may not see
2. visible data sources are fetched concurrently
3. binding, static and action props are resolved
4. expression props are evaluated against the resolved props and constants
5. actions are materialized with their config resolved, never executed

Failures are recorded per node and per prop as EvaluationIssue values; the
page as a whole always evaluates.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from strata_core.compiler.aliases import AliasTable, build_alias_table
from strata_core.config import EvaluationConfig
from strata_core.evaluator.bindings import resolve_binding
from strata_core.evaluator.datasources import (
    DataSourceFetcher,
    FetchResult,
    HttpClientProtocol,
    ServiceDispatcherProtocol,
)
from strata_core.evaluator.expressions import ExpressionEngine, ExpressionError
from strata_core.evaluator.models import (
    ActionRef,
    DataSourceState,
    DataSourceStatus,
    EvaluationIssue,
    IssueCode,
    RenderedAction,
    RenderedComponent,
    RenderedRegion,
    RenderModel,
    Unavailable,
    UnavailableReason,
)
from strata_core.evaluator.rbac import VisiblePage, filter_page
from strata_core.observability import span
from strata_core.resolver.resolver import ResolvedPage
from strata_core.schemas.context import ViewerContext
from strata_core.schemas.page import Action, PageDefinition, Prop, PropKind

logger = structlog.get_logger(__name__)

_FETCH_ISSUES = {
    DataSourceStatus.FAILED: IssueCode.DATA_SOURCE_FAILED,
    DataSourceStatus.TIMEOUT: IssueCode.DATA_SOURCE_TIMEOUT,
}


class _Scope:
    """Everything prop resolution needs for one evaluation."""

    def __init__(
        self,
        page: PageDefinition,
        visible: VisiblePage,
        aliases: AliasTable,
        results: Mapping[str, FetchResult],
        engine: ExpressionEngine,
    ) -> None:
        self.page = page
        self.visible = visible
        self.aliases = aliases
        self.results = results
        self.engine = engine
        self.actions: dict[str, Action] = {action.id: action for action in visible.actions}
        self.issues: list[EvaluationIssue] = []

    def issue(self, node_id: str, prop: str | None, code: IssueCode, message: str) -> None:
        self.issues.append(EvaluationIssue(node_id=node_id, prop=prop, code=code, message=message))

    def resolve_props(self, node_id: str, props: Sequence[Prop]) -> dict[str, Any]:
        """Resolve a prop list; expressions see the non-expression props resolved first."""
        values: dict[str, Any] = {}
        for prop in props:
            if prop.kind is not PropKind.EXPRESSION:
                values[prop.name] = self._resolve(node_id, prop)

        context = {name: value for name, value in values.items() if not isinstance(value, Unavailable)}
        for prop in props:
            if prop.kind is PropKind.EXPRESSION:
                values[prop.name] = self._expression(node_id, prop, context)

        # Keep authoring order in the output
        return {prop.name: values[prop.name] for prop in props}

    def _resolve(self, node_id: str, prop: Prop) -> Any:
        if prop.kind is PropKind.STATIC:
            return prop.value
        if prop.kind is PropKind.BINDING:
            outcome = resolve_binding(prop, self.aliases, self.results)
            if outcome.issue is not None:
                code, message = outcome.issue
                self.issue(node_id, prop.name, code, message)
            return outcome.value
        return self._action_ref(node_id, prop)

    def _action_ref(self, node_id: str, prop: Prop) -> ActionRef | Unavailable:
        action_id = prop.action or ""
        action = self.actions.get(action_id)
        if action is not None:
            return ActionRef(action_id=action.id, kind=action.kind)
        if action_id not in self.visible.hidden_actions:
            self.issue(node_id, prop.name, IssueCode.UNKNOWN_ACTION, f"unknown action '{action_id}'")
        return Unavailable(reason=UnavailableReason.ACTION_UNAVAILABLE, path=action_id, fallback=prop.fallback)

    def _expression(self, node_id: str, prop: Prop, context: Mapping[str, Any]) -> Any:
        try:
            return self.engine.evaluate(prop.expression or "", context, self.page.constants)
        except ExpressionError as exc:
            self.issue(node_id, prop.name, IssueCode.EXPRESSION_ERROR, str(exc))
            return Unavailable(reason=UnavailableReason.EXPRESSION_ERROR, path=prop.name, fallback=prop.fallback)


class Evaluator:
    """Evaluate resolved pages for a viewer.

    Attributes:
        fetcher: Data source fetcher (http client, service dispatcher, limits).
        engine: Expression engine.

    Example:
        >>> evaluator = Evaluator(http=HttpDataSourceClient(), services=dispatcher)
        >>> model = await evaluator.evaluate(resolved, ViewerContext(roles={"staff"}))
        >>> model.find_component("hero").props["title"]
        'Welcome, Acme'

        >>> # Outside an event loop
        >>> model = evaluator.evaluate_sync(resolved, viewer)
    """

    def __init__(
        self,
        http: HttpClientProtocol | None = None,
        services: ServiceDispatcherProtocol | None = None,
        *,
        config: EvaluationConfig | None = None,
        engine: ExpressionEngine | None = None,
    ) -> None:
        self.fetcher = DataSourceFetcher(http, services, config=config)
        self.engine = engine or ExpressionEngine()

    async def evaluate(self, page: ResolvedPage | PageDefinition, viewer: ViewerContext) -> RenderModel:
        """Evaluate ``page`` for ``viewer``.

        Args:
            page: Resolved page (preferred) or a bare page definition.
            viewer: Viewer roles and entitlements.

        Returns:
            RenderModel with denied nodes removed and every prop resolved.

        Raises:
            asyncio.CancelledError: If the evaluation is cancelled; in-flight
                fetches are cancelled with it.
        """
        if isinstance(page, ResolvedPage):
            definition, aliases = page.page, page.alias_table
            fingerprint, layers = page.fingerprint, page.layers
        else:
            definition, aliases = page, build_alias_table(page)
            fingerprint, layers = None, ()

        attributes = {"strata.module": definition.module, "strata.route": definition.route}
        with span("strata.evaluate", attributes=attributes):
            visible = filter_page(definition, viewer)
            results = dict(await self.fetcher.fetch_all(visible.data_sources))
            for source in definition.data_sources:
                if source.id in visible.hidden_sources:
                    results[source.id] = FetchResult(source.id, source.kind, DataSourceStatus.DENIED)

            scope = _Scope(definition, visible, aliases, results, self.engine)
            for result in results.values():
                code = _FETCH_ISSUES.get(result.status)
                if code is not None:
                    scope.issue(result.source_id, None, code, result.error or result.status.value)

            regions = tuple(
                RenderedRegion(
                    id=region.id,
                    components=tuple(
                        RenderedComponent(
                            id=component.id,
                            type=component.type,
                            namespace=component.namespace,
                            version=component.version,
                            parent=component.parent,
                            props=scope.resolve_props(component.id, component.props),
                        )
                        for component in components
                    ),
                )
                for region, components in visible.regions
            )
            actions = tuple(
                RenderedAction(id=action.id, kind=action.kind, config=scope.resolve_props(action.id, action.config))
                for action in visible.actions
            )

        model = RenderModel(
            module=definition.module,
            route=definition.route,
            title=definition.title,
            fingerprint=fingerprint,
            layers=layers,
            regions=regions,
            actions=actions,
            data_sources=tuple(_state(results[source.id]) for source in definition.data_sources),
            issues=tuple(scope.issues),
        )
        logger.info(
            "page_evaluated",
            module=definition.module,
            route=definition.route,
            components=sum(len(r.components) for r in regions),
            hidden=len(visible.hidden_components),
            issues=len(model.issues),
        )
        return model

    def evaluate_sync(self, page: ResolvedPage | PageDefinition, viewer: ViewerContext) -> RenderModel:
        """Run ``evaluate`` in a fresh event loop."""
        return asyncio.run(self.evaluate(page, viewer))


def _state(result: FetchResult) -> DataSourceState:
    return DataSourceState(
        id=result.source_id,
        kind=result.kind.value,
        status=result.status,
        error=result.error,
        duration_ms=result.duration_ms,
    )
