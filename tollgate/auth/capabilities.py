"""
Capabilities, roles, and the operation table.

This defines WHAT each operation requires, not HOW we check it.
The actual checking happens in gatekeeper.py.

The operation table is data: it ships as config/capabilities.yaml and can
be reloaded at runtime. Operations missing from the table resolve to the
administrative capability, so a new endpoint wired in without a table
entry is admin-only until someone maps it.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

import yaml

logger = logging.getLogger(__name__)


ADMIN_CAPABILITY = "manage_options"
SESSION_CAPABILITY = "use_api"
UNKNOWN_OPERATION = "unknown"


# =============================================================================
# Roles
# =============================================================================


class PrincipalRole(str, Enum):
    """Site-wide role held by a principal in the host identity system."""
    
    ADMINISTRATOR = "administrator"  # Full control, including settings and users
    EDITOR = "editor"                # Manages everyone's content
    AUTHOR = "author"                # Publishes own content and uploads media
    CONTRIBUTOR = "contributor"      # Drafts own content only
    SUBSCRIBER = "subscriber"        # Read-only


_SUBSCRIBER = {"read"}
_CONTRIBUTOR = _SUBSCRIBER | {"edit_posts", "delete_posts"}
_AUTHOR = _CONTRIBUTOR | {
    "upload_files",
    "publish_posts",
    "edit_published_posts",
    "delete_published_posts",
}
_EDITOR = _AUTHOR | {
    "edit_others_posts",
    "delete_others_posts",
    "edit_pages",
    "publish_pages",
    "delete_pages",
    "manage_categories",
    "moderate_comments",
}
_ADMINISTRATOR = _EDITOR | {
    ADMIN_CAPABILITY,
    SESSION_CAPABILITY,
    "list_users",
    "create_users",
    "edit_users",
    "delete_users",
    "promote_users",
    "edit_theme_options",
    "switch_themes",
    "activate_plugins",
}


# What capabilities each role grants
ROLE_CAPABILITIES: dict[PrincipalRole, frozenset[str]] = {
    PrincipalRole.ADMINISTRATOR: frozenset(_ADMINISTRATOR),
    PrincipalRole.EDITOR: frozenset(_EDITOR),
    PrincipalRole.AUTHOR: frozenset(_AUTHOR),
    PrincipalRole.CONTRIBUTOR: frozenset(_CONTRIBUTOR),
    PrincipalRole.SUBSCRIBER: frozenset(_SUBSCRIBER),
}


def get_capabilities(
    role: PrincipalRole | None = None,
    extra: Iterable[str] = (),
) -> set[str]:
    """
    Get all capabilities for a role plus individually granted extras.
    """
    caps: set[str] = set()
    
    if role:
        caps.update(ROLE_CAPABILITIES.get(role, frozenset()))
    
    caps.update(extra)
    
    return caps


# =============================================================================
# Principal Directory (owned by the host identity system)
# =============================================================================


class PrincipalDirectory(ABC):
    """
    Looks up what a principal may do.
    
    The gatekeeper never grants capabilities; it only asks the host.
    """
    
    @abstractmethod
    async def get_capabilities(self, principal_id: str) -> set[str] | None:
        """Capabilities held by the principal, or None if unknown."""
        pass
    
    async def exists(self, principal_id: str) -> bool:
        return await self.get_capabilities(principal_id) is not None
    
    async def has_capability(self, principal_id: str, capability: str) -> bool:
        caps = await self.get_capabilities(principal_id)
        return bool(caps) and capability in caps


class InMemoryPrincipalDirectory(PrincipalDirectory):
    """Principals held in a dict. For development and tests."""
    
    def __init__(self):
        self._principals: dict[str, set[str]] = {}
    
    def add_principal(
        self,
        principal_id: str,
        role: PrincipalRole | str | None = None,
        capabilities: Iterable[str] = (),
    ) -> None:
        if isinstance(role, str):
            role = PrincipalRole(role)
        self._principals[principal_id] = get_capabilities(role, capabilities)
    
    def remove_principal(self, principal_id: str) -> None:
        self._principals.pop(principal_id, None)
    
    async def get_capabilities(self, principal_id: str) -> set[str] | None:
        caps = self._principals.get(principal_id)
        return set(caps) if caps is not None else None


# =============================================================================
# Operation Table
# =============================================================================


@dataclass(frozen=True)
class OperationRule:
    """What an operation needs: a principal capability and a token scope."""
    
    capability: str
    scope: str | None = None
    session_only: bool = False


@dataclass(frozen=True)
class RouteRule:
    """Maps HTTP method on a collection or item path to an operation."""
    
    prefix: str
    collection: dict[str, str] = field(default_factory=dict)
    item: dict[str, str] = field(default_factory=dict)
    
    def operation(self, method: str, is_item: bool) -> str | None:
        mapping = self.item if is_item else self.collection
        return mapping.get(method) or mapping.get("*")


@dataclass
class CapabilityTable:
    """The full authorization policy as data."""
    
    operations: dict[str, OperationRule]
    default_capability: str = ADMIN_CAPABILITY
    namespace: str = ""
    scopes: list[str] = field(default_factory=list)
    routes: list[RouteRule] = field(default_factory=list)
    
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CapabilityTable:
        """Build a table from its YAML/dict form."""
        if not isinstance(data, dict):
            raise TypeError("capability table must be a mapping")
        raw_operations = data.get("operations") or {}
        raw_routes = data.get("routes") or []
        if not isinstance(raw_operations, dict) or not isinstance(raw_routes, list):
            raise TypeError("operations must be a mapping and routes a list")
        
        operations = {}
        for name, rule in raw_operations.items():
            if isinstance(rule, str):
                operations[name] = OperationRule(capability=rule)
            else:
                operations[name] = OperationRule(
                    capability=rule["capability"],
                    scope=rule.get("scope"),
                    session_only=bool(rule.get("session_only", False)),
                )
        
        routes = [
            RouteRule(
                prefix="/" + str(r["prefix"]).strip("/"),
                collection={k.upper(): v for k, v in (r.get("collection") or {}).items()},
                item={k.upper(): v for k, v in (r.get("item") or {}).items()},
            )
            for r in raw_routes
        ]
        # Longest prefix wins
        routes.sort(key=lambda r: len(r.prefix), reverse=True)
        
        namespace = str(data.get("namespace") or "").strip("/")
        
        return cls(
            operations=operations,
            default_capability=data.get("default_capability", ADMIN_CAPABILITY),
            namespace="/" + namespace if namespace else "",
            scopes=sorted(set(data.get("scopes") or [])),
            routes=routes,
        )
    
    @classmethod
    def from_yaml(cls, path: Path | str) -> CapabilityTable:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)


def _crud(kind: str, read: str, write: str, delete: str, scope: str) -> dict[str, dict]:
    """Operation entries for a get/list/create/update/delete resource."""
    singular = kind[:-1] if kind.endswith("s") else kind
    title = singular.capitalize()
    plural = kind.capitalize()
    return {
        f"wp:get{title}": {"capability": read, "scope": f"read:{scope}"},
        f"wp:list{plural}": {"capability": read, "scope": f"read:{scope}"},
        f"wp:create{title}": {"capability": write, "scope": f"write:{scope}"},
        f"wp:update{title}": {"capability": write, "scope": f"write:{scope}"},
        f"wp:delete{title}": {"capability": delete, "scope": f"write:{scope}"},
    }


# Built-in table, used when no YAML file is available
DEFAULT_TABLE: dict[str, Any] = {
    "default_capability": ADMIN_CAPABILITY,
    "namespace": "/ayu/v1",
    "scopes": [
        "read:posts", "write:posts",
        "read:media", "write:media",
        "read:users", "write:users",
        "read:settings", "write:settings",
        "read:menus", "write:menus",
        "read:elementor", "write:elementor",
    ],
    "operations": {
        **_crud("posts", "read", "edit_posts", "delete_posts", "posts"),
        "wp:getMedia": {"capability": "read", "scope": "read:media"},
        "wp:listMedia": {"capability": "read", "scope": "read:media"},
        "wp:uploadMedia": {"capability": "upload_files", "scope": "write:media"},
        "wp:deleteMedia": {"capability": "delete_posts", "scope": "write:media"},
        "wp:getUser": {"capability": "list_users", "scope": "read:users"},
        "wp:listUsers": {"capability": "list_users", "scope": "read:users"},
        "wp:createUser": {"capability": "create_users", "scope": "write:users"},
        "wp:updateUser": {"capability": "edit_users", "scope": "write:users"},
        "wp:deleteUser": {"capability": "delete_users", "scope": "write:users"},
        **_crud("menus", "edit_theme_options", "edit_theme_options", "edit_theme_options", "menus"),
        "wp:listTaxonomies": {"capability": "read", "scope": "read:posts"},
        "wp:listTerms": {"capability": "read", "scope": "read:posts"},
        "wp:createTerm": {"capability": "manage_categories", "scope": "write:posts"},
        "wp:getOption": {"capability": ADMIN_CAPABILITY, "scope": "read:settings"},
        "wp:updateOption": {"capability": ADMIN_CAPABILITY, "scope": "write:settings"},
        "wp:getSiteHealth": {"capability": ADMIN_CAPABILITY, "scope": "read:settings"},
        "elementor:listTemplates": {"capability": "edit_posts", "scope": "read:elementor"},
        "elementor:getTemplate": {"capability": "edit_posts", "scope": "read:elementor"},
        "elementor:createTemplate": {"capability": "edit_posts", "scope": "write:elementor"},
        "elementor:updateTemplate": {"capability": "edit_posts", "scope": "write:elementor"},
        "elementor:deleteTemplate": {"capability": "delete_posts", "scope": "write:elementor"},
        "elementor:getKit": {"capability": "edit_posts", "scope": "read:elementor"},
        "elementor:updateKit": {"capability": "edit_posts", "scope": "write:elementor"},
        # Token management and audit. Tokens never manage tokens.
        "tollgate:createToken": {"capability": SESSION_CAPABILITY, "session_only": True},
        "tollgate:listTokens": {"capability": SESSION_CAPABILITY, "session_only": True},
        "tollgate:revokeToken": {"capability": SESSION_CAPABILITY, "session_only": True},
        "tollgate:readAudit": {"capability": ADMIN_CAPABILITY},
    },
    "routes": [
        {
            "prefix": "/posts",
            "collection": {"GET": "wp:listPosts", "POST": "wp:createPost"},
            "item": {"GET": "wp:getPost", "DELETE": "wp:deletePost", "*": "wp:updatePost"},
        },
        {
            "prefix": "/media",
            "collection": {"GET": "wp:listMedia", "*": "wp:uploadMedia"},
            "item": {"GET": "wp:getMedia", "*": "wp:deleteMedia"},
        },
        {
            "prefix": "/users",
            "collection": {"GET": "wp:listUsers", "*": "wp:createUser"},
            "item": {"GET": "wp:getUser", "DELETE": "wp:deleteUser", "*": "wp:updateUser"},
        },
        {
            "prefix": "/menus",
            "collection": {"GET": "wp:listMenus", "*": "wp:createMenu"},
            "item": {"GET": "wp:getMenu", "DELETE": "wp:deleteMenu", "*": "wp:updateMenu"},
        },
        {
            "prefix": "/taxonomies",
            "collection": {"*": "wp:listTaxonomies"},
            "item": {"GET": "wp:listTerms", "*": "wp:createTerm"},
        },
        {
            "prefix": "/options",
            "item": {"GET": "wp:getOption", "*": "wp:updateOption"},
        },
        {
            "prefix": "/site-health",
            "collection": {"*": "wp:getSiteHealth"},
        },
        {
            "prefix": "/elementor/templates",
            "collection": {"GET": "elementor:listTemplates", "*": "elementor:createTemplate"},
            "item": {
                "GET": "elementor:getTemplate",
                "DELETE": "elementor:deleteTemplate",
                "*": "elementor:updateTemplate",
            },
        },
        {
            "prefix": "/elementor/kit",
            "collection": {"GET": "elementor:getKit", "*": "elementor:updateKit"},
        },
    ],
}


# =============================================================================
# Resolver
# =============================================================================


class CapabilityResolver:
    """
    Answers "what does this operation require?".
    
    Lookups never fail: unmapped operations require the table's default
    capability (administrative). The table can be swapped at runtime;
    readers always see either the old or the new table, never a mix.
    """
    
    def __init__(
        self,
        table: CapabilityTable | None = None,
        path: Path | str | None = None,
    ):
        self._path = Path(path) if path else None
        self._mtime: float | None = None
        if table is None and self._path is not None:
            table = CapabilityTable.from_yaml(self._path)
            self._mtime = os.stat(self._path).st_mtime
        self._table = table or CapabilityTable.from_dict(DEFAULT_TABLE)
    
    @classmethod
    def from_file(cls, path: Path | str) -> CapabilityResolver:
        return cls(path=path)
    
    @property
    def table(self) -> CapabilityTable:
        return self._table
    
    @property
    def known_scopes(self) -> list[str]:
        return list(self._table.scopes)
    
    def rule_for(self, operation: str) -> OperationRule:
        rule = self._table.operations.get(operation)
        if rule is None:
            return OperationRule(capability=self._table.default_capability)
        return rule
    
    def required_capability(self, operation: str) -> str:
        """Capability a principal must hold to perform `operation`."""
        return self.rule_for(operation).capability
    
    def required_scope(self, operation: str) -> str | None:
        """Token scope needed for `operation`, if any."""
        return self.rule_for(operation).scope
    
    def operation_for_route(self, method: str, path: str) -> str:
        """
        Name the operation behind an HTTP request.
        
        "/ayu/v1/posts" is the posts collection, "/ayu/v1/posts/12" an item.
        Prefixes match from the start of the path, after the table's
        namespace. Unmatched routes return "unknown", which resolves to
        the default.
        """
        method = method.upper()
        path = "/" + path.strip("/")
        namespace = self._table.namespace
        if namespace:
            if path != namespace and not path.startswith(namespace + "/"):
                return UNKNOWN_OPERATION
            path = path[len(namespace):] or "/"
        for rule in self._table.routes:
            if not path.startswith(rule.prefix):
                continue
            rest = path[len(rule.prefix):]
            if rest and not rest.startswith("/"):
                continue
            is_item = bool(rest.strip("/"))
            operation = rule.operation(method, is_item)
            if operation:
                return operation
        return UNKNOWN_OPERATION
    
    def reload(self, table: CapabilityTable) -> None:
        """Swap in a new table."""
        self._table = table
        logger.info("Capability table reloaded (%d operations)", len(table.operations))
    
    def refresh(self) -> bool:
        """
        Reload from the backing file if it changed.
        
        Returns True if a new table was loaded. A broken file keeps the
        current table in place.
        """
        if self._path is None:
            return False
        try:
            mtime = os.stat(self._path).st_mtime
        except FileNotFoundError:
            logger.warning("Capability table %s disappeared; keeping current table", self._path)
            return False
        if self._mtime is not None and mtime == self._mtime:
            return False
        try:
            table = CapabilityTable.from_yaml(self._path)
        except (OSError, yaml.YAMLError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error("Capability table %s is invalid, keeping current table: %s", self._path, e)
            return False
        self._mtime = mtime
        self.reload(table)
        return True
