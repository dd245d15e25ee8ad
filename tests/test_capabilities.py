"""
Tests for the capability resolver and operation table.
"""

import os

import pytest

from tollgate.auth.capabilities import (
    ADMIN_CAPABILITY,
    DEFAULT_TABLE,
    CapabilityResolver,
    CapabilityTable,
    InMemoryPrincipalDirectory,
    PrincipalRole,
    get_capabilities,
)
from tollgate.config import Settings
from tollgate.config_loader import ConfigLoader, load_resolver


TABLE_YAML = """
default_capability: manage_options
scopes: [read:posts, write:posts]
operations:
  wp:listPosts: {capability: read, scope: read:posts}
  wp:createPost: {capability: edit_posts, scope: write:posts}
routes:
  - prefix: /posts
    collection: {GET: wp:listPosts, POST: wp:createPost}
"""


# =============================================================================
# Roles & Directory Tests
# =============================================================================


class TestRoles:
    def test_roles_are_cumulative(self):
        editor = get_capabilities(PrincipalRole.EDITOR)
        author = get_capabilities(PrincipalRole.AUTHOR)

        assert author <= editor
        assert "edit_others_posts" in editor
        assert "edit_others_posts" not in author

    def test_only_admin_has_override(self):
        assert ADMIN_CAPABILITY in get_capabilities(PrincipalRole.ADMINISTRATOR)
        for role in (PrincipalRole.EDITOR, PrincipalRole.AUTHOR, PrincipalRole.SUBSCRIBER):
            assert ADMIN_CAPABILITY not in get_capabilities(role)

    def test_extras(self):
        caps = get_capabilities(PrincipalRole.SUBSCRIBER, ["use_api"])
        assert caps == {"read", "use_api"}


class TestDirectory:
    @pytest.mark.asyncio
    async def test_lookup(self):
        directory = InMemoryPrincipalDirectory()
        directory.add_principal("p1", "author")

        assert await directory.exists("p1")
        assert await directory.has_capability("p1", "upload_files")
        assert not await directory.has_capability("p1", "delete_users")

    @pytest.mark.asyncio
    async def test_unknown_principal(self):
        directory = InMemoryPrincipalDirectory()

        assert await directory.get_capabilities("ghost") is None
        assert not await directory.exists("ghost")
        assert not await directory.has_capability("ghost", "read")

    @pytest.mark.asyncio
    async def test_removed_principal(self, directory):
        directory.remove_principal("bob")
        assert not await directory.exists("bob")


# =============================================================================
# Resolver Tests
# =============================================================================


class TestResolver:
    def test_known_operation(self, resolver):
        assert resolver.required_capability("wp:deleteUser") == "delete_users"
        assert resolver.required_scope("wp:deleteUser") == "write:users"

    def test_unmapped_operation_is_admin_only(self, resolver):
        assert resolver.required_capability("wp:somethingNew") == ADMIN_CAPABILITY
        assert resolver.required_scope("wp:somethingNew") is None

    def test_management_operations(self, resolver):
        assert resolver.required_capability("tollgate:createToken") == "use_api"
        assert resolver.required_capability("tollgate:readAudit") == ADMIN_CAPABILITY

    def test_token_management_is_session_only(self, resolver):
        for operation in ("tollgate:createToken", "tollgate:listTokens", "tollgate:revokeToken"):
            assert resolver.rule_for(operation).session_only, operation
        assert not resolver.rule_for("wp:listPosts").session_only
        assert not resolver.rule_for("wp:somethingNew").session_only

    def test_known_scopes(self, resolver):
        assert "write:users" in resolver.known_scopes
        assert resolver.known_scopes == sorted(resolver.known_scopes)

    def test_every_operation_scope_is_known(self):
        table = CapabilityTable.from_dict(DEFAULT_TABLE)
        for name, rule in table.operations.items():
            if rule.scope:
                assert rule.scope in table.scopes, name

    def test_reload_swaps_table(self, resolver):
        resolver.reload(CapabilityTable.from_dict({
            "operations": {"wp:deleteUser": "manage_options"},
        }))
        assert resolver.required_capability("wp:deleteUser") == ADMIN_CAPABILITY
        assert resolver.required_capability("wp:listPosts") == ADMIN_CAPABILITY


class TestRoutes:
    @pytest.mark.parametrize("method,path,operation", [
        ("GET", "/ayu/v1/posts", "wp:listPosts"),
        ("POST", "/ayu/v1/posts", "wp:createPost"),
        ("GET", "/ayu/v1/posts/12", "wp:getPost"),
        ("PUT", "/ayu/v1/posts/12", "wp:updatePost"),
        ("DELETE", "/ayu/v1/posts/12", "wp:deletePost"),
        ("DELETE", "/ayu/v1/users/3", "wp:deleteUser"),
        ("POST", "/ayu/v1/media", "wp:uploadMedia"),
        ("GET", "/ayu/v1/elementor/templates/7", "elementor:getTemplate"),
        ("POST", "/ayu/v1/elementor/kit", "elementor:updateKit"),
    ])
    def test_route_mapping(self, resolver, method, path, operation):
        assert resolver.operation_for_route(method, path) == operation

    def test_prefix_must_end_at_segment(self, resolver):
        assert resolver.operation_for_route("GET", "/ayu/v1/postsx") == "unknown"

    def test_unmatched_route(self, resolver):
        op = resolver.operation_for_route("GET", "/ayu/v1/plugins")
        assert op == "unknown"
        assert resolver.required_capability(op) == ADMIN_CAPABILITY

    @pytest.mark.parametrize("path", [
        "/ayu/v1/plugins/x/posts",
        "/ayu/v1/admin/users/3",
        "/other/ayu/v1/posts",
        "/posts",
        "/ayu/v10/posts",
    ])
    def test_prefix_anchored_after_namespace(self, resolver, path):
        assert resolver.operation_for_route("GET", path) == "unknown"

    def test_namespace_root(self, resolver):
        assert resolver.operation_for_route("GET", "/ayu/v1") == "unknown"
        assert resolver.operation_for_route("GET", "/ayu/v1/") == "unknown"


# =============================================================================
# YAML Loading Tests
# =============================================================================


class TestYamlTable:
    def test_from_file(self, tmp_path):
        path = tmp_path / "capabilities.yaml"
        path.write_text(TABLE_YAML)

        resolver = CapabilityResolver.from_file(path)

        assert resolver.required_capability("wp:createPost") == "edit_posts"
        assert resolver.operation_for_route("POST", "/posts") == "wp:createPost"
        assert resolver.required_capability("wp:deleteUser") == ADMIN_CAPABILITY

    def test_refresh_picks_up_changes(self, tmp_path):
        path = tmp_path / "capabilities.yaml"
        path.write_text(TABLE_YAML)
        resolver = CapabilityResolver.from_file(path)

        assert not resolver.refresh()

        path.write_text(TABLE_YAML.replace("capability: edit_posts", "capability: publish_posts"))
        stat = os.stat(path)
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        assert resolver.refresh()
        assert resolver.required_capability("wp:createPost") == "publish_posts"

    def test_broken_file_keeps_current_table(self, tmp_path):
        path = tmp_path / "capabilities.yaml"
        path.write_text(TABLE_YAML)
        resolver = CapabilityResolver.from_file(path)

        path.write_text("operations: [unclosed")
        stat = os.stat(path)
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        assert not resolver.refresh()
        assert resolver.required_capability("wp:createPost") == "edit_posts"

    @pytest.mark.parametrize("content", [
        "- just\n- a list\n",
        "operations: [wp:listPosts]\n",
        "routes: {prefix: /posts}\n",
    ])
    def test_wrong_shape_keeps_current_table(self, tmp_path, content):
        path = tmp_path / "capabilities.yaml"
        path.write_text(TABLE_YAML)
        resolver = CapabilityResolver.from_file(path)

        path.write_text(content)
        stat = os.stat(path)
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))

        assert not resolver.refresh()
        assert resolver.required_capability("wp:createPost") == "edit_posts"

    def test_non_mapping_rejected(self):
        with pytest.raises(TypeError):
            CapabilityTable.from_dict(["just", "a list"])

    def test_bundled_table_matches_builtin(self):
        loader = ConfigLoader(settings=Settings())
        path = loader.capability_table_path()
        if path is None:
            pytest.skip("bundled config/ directory not present")

        bundled = loader.load_capability_table()
        builtin = CapabilityTable.from_dict(DEFAULT_TABLE)

        assert bundled.operations == builtin.operations
        assert bundled.scopes == builtin.scopes
        assert bundled.namespace == builtin.namespace == "/ayu/v1"

    def test_settings_path_wins(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(TABLE_YAML)

        resolver = load_resolver(settings=Settings(capability_table_path=str(path)))

        assert resolver.known_scopes == ["read:posts", "write:posts"]
