"""Per-request context models.

RequestContext selects which layers apply; ViewerContext drives access
control during evaluation. Roles are carried as sets end to end.
"""

from __future__ import annotations

import hashlib

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_role_set(value: object) -> object:
    # Accept "a,b" strings as well as iterables
    if isinstance(value, str):
        return frozenset(part.strip() for part in value.split(",") if part.strip())
    return value


class RequestContext(BaseModel):
    """Attributes of an incoming page request.

    Attributes:
        tenant: Requesting tenant (None for tenant-neutral requests).
        module: Application module.
        route: Route within the module.
        roles: Viewer role set.
        variant: Optional experiment/variant key.
        locale: Optional locale.

    Example:
        >>> ctx = RequestContext(tenant="acme", module="core", route="home", roles={"staff"})
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tenant: str | None = Field(default=None, description="Requesting tenant")
    module: str = Field(..., min_length=1, description="Application module")
    route: str = Field(..., min_length=1, description="Route within the module")
    roles: frozenset[str] = Field(default_factory=frozenset, description="Viewer roles")
    variant: str | None = Field(default=None, description="Variant key")
    locale: str | None = Field(default=None, description="Locale")

    @field_validator("roles", mode="before")
    @classmethod
    def _split_roles(cls, value: object) -> object:
        return _as_role_set(value)


class ViewerContext(BaseModel):
    """Who is looking at the page: role set plus entitlement codes."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    roles: frozenset[str] = Field(default_factory=frozenset, description="Viewer roles")
    entitlements: frozenset[str] = Field(default_factory=frozenset, description="Entitled feature codes")

    @field_validator("roles", "entitlements", mode="before")
    @classmethod
    def _split(cls, value: object) -> object:
        return _as_role_set(value)

    @classmethod
    def from_request(
        cls,
        context: RequestContext,
        entitlements: frozenset[str] | set[str] = frozenset(),
    ) -> ViewerContext:
        return cls(roles=context.roles, entitlements=frozenset(entitlements))

    def cache_key(self, fingerprint: str) -> str:
        """Cache key for evaluator output of a resolved page.

        Combines the page fingerprint with the sorted role and entitlement
        sets, so two viewers with the same sets share cached output.
        """
        material = "|".join(
            (
                fingerprint,
                ",".join(sorted(self.roles)),
                ",".join(sorted(self.entitlements)),
            )
        )
        return hashlib.sha256(material.encode("utf-8")).hexdigest()
