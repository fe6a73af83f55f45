"""Tests for reading a workspace into a tree (depotci.tree)."""

import pytest

from depotci.errors import ConfigurationError, ResolutionError
from depotci.tree import Leaf, Namespace, read_tree


class TestTraversal:
    """Directory traversal and merge rules."""

    def test_sibling_files_and_subdirectories_are_merged_flat(self, workspace):
        workspace.define("third_party/favourite.py", "'orange'")
        workspace.define("third_party/rustpkgs/serde.py", "'serde'")
        workspace.define("tools/cheddar/default.py", "'cheddar'")

        tree = read_tree(workspace.root)

        assert tree.children == ("third_party", "tools")
        assert tree["third_party"]["favourite"].value == "orange"
        assert tree["third_party"]["rustpkgs"]["serde"].value == "serde"
        assert tree["tools"]["cheddar"].value == "cheddar"

    def test_default_mapping_is_merged_with_subdirectories(self, workspace):
        workspace.define("default-py/default.py", "{'no': 'siblings should be read'}")
        workspace.define("default-py/sibling.py", "'not read'")
        workspace.define("default-py/subdir/a.py", "'but I am picked up'")

        node = read_tree(workspace.root)["default-py"]

        assert isinstance(node, Namespace)
        assert node["no"] == "siblings should be read"
        assert "sibling" not in node
        assert node["subdir"]["a"].value == "but I am picked up"
        assert node.children == ("subdir",)

    def test_default_leaf_is_not_merged_with_children(self, workspace):
        workspace.define("no-merge/default.py", "'not merged with any children'")
        workspace.define("no-merge/subdir/a.py", "'never read'")

        node = read_tree(workspace.root)["no-merge"]

        assert isinstance(node, Leaf)
        assert node.value == "not merged with any children"
        assert node.path == ("no-merge",)

    def test_skip_subtree_still_reads_default(self, workspace):
        workspace.define("skip-subtree/default.py", "{'but': 'the default.py is still read'}")
        workspace.mark("skip-subtree", ".skip-subtree")
        workspace.define("skip-subtree/a/default.py", "'am I subtree yet?'")
        workspace.define("skip-subtree/b/c.py", "'cool'")

        workspace.define("no-skip-subtree/default.py", "{}")
        workspace.define("no-skip-subtree/a/default.py", "'am I subtree yet?'")
        workspace.define("no-skip-subtree/b/c.py", "'cool'")

        tree = read_tree(workspace.root)

        assert tree["skip-subtree"]["but"] == "the default.py is still read"
        assert "a" not in tree["skip-subtree"]
        assert "b" not in tree["skip-subtree"]
        assert tree["skip-subtree"].children == ()
        assert tree["no-skip-subtree"]["a"].value == "am I subtree yet?"
        assert tree["no-skip-subtree"]["b"]["c"].value == "cool"

    def test_skip_subtree_without_default_skips_sibling_files(self, workspace):
        workspace.mark("lib", ".skip-subtree")
        workspace.define("lib/sibling.py", "'not read'")

        node = read_tree(workspace.root)["lib"]

        assert isinstance(node, Namespace)
        assert node.children == ()
        assert "sibling" not in node

    def test_skip_tree_removes_directory_from_parent(self, workspace):
        workspace.define("kept/a.py", "'a'")
        workspace.mark("gone", ".skip-tree")
        workspace.define("gone/default.py", "'not read'")
        workspace.define("gone/nested/b.py", "'not read either'")

        tree = read_tree(workspace.root)

        assert tree.children == ("kept",)
        assert "gone" not in tree

    def test_skipped_directory_is_not_executed(self, workspace):
        workspace.mark("gone", ".skip-tree")
        workspace.write("gone/default.py", "raise RuntimeError('must not be loaded')\n")

        assert "gone" not in read_tree(workspace.root)

    def test_root_skip_tree_is_a_configuration_error(self, workspace):
        workspace.mark("", ".skip-tree")

        with pytest.raises(ConfigurationError):
            read_tree(workspace.root)

    def test_root_default_is_not_loaded(self, workspace):
        workspace.write("default.py", "raise RuntimeError('workspace entry point')\n")
        workspace.define("sibling.py", "'not read next to a root default.py'")
        workspace.define("a/default.py", "'a'")

        tree = read_tree(workspace.root)

        assert tree.children == ("a",)

    def test_hidden_and_dunder_entries_are_ignored(self, workspace):
        workspace.define(".hidden/default.py", "'hidden'")
        workspace.write("pkg/__init__.py", "")
        workspace.write("pkg/notes.txt", "not a definition")
        workspace.define("pkg/real.py", "'real'")

        tree = read_tree(workspace.root)

        assert tree.children == ("pkg",)
        assert tree["pkg"].children == ("real",)


class TestMarkers:
    """Every node carries its path and the keys of its discovered children."""

    def test_paths_are_recorded(self, workspace):
        workspace.define("directory-marked/default.py", "{}")
        workspace.define("directory-marked/nested/default.py", "{}")
        workspace.define("file-children/one.py", "{'x': 1}")
        workspace.define("file-children/two.py", "2")

        tree = read_tree(workspace.root)

        assert tree.path == ()
        assert tree["directory-marked"].path == ("directory-marked",)
        assert tree["directory-marked"]["nested"].path == ("directory-marked", "nested")
        assert tree["file-children"]["one"].path == ("file-children", "one")
        assert tree["file-children"]["two"].path == ("file-children", "two")

    def test_children_are_recorded(self, workspace):
        workspace.define("directory-marked/default.py", "{'data': 'not a child'}")
        workspace.define("directory-marked/nested/default.py", "{}")
        workspace.define("file-children/one.py", "1")
        workspace.define("file-children/two.py", "2")

        tree = read_tree(workspace.root)

        assert tree["file-children"].children == ("one", "two")
        assert tree["directory-marked"].children == ("nested",)
        assert tree["directory-marked"]["nested"].children == ()

    def test_user_data_cannot_shadow_the_path(self, workspace):
        workspace.define("a/default.py", "{'path': 'user data', 'children': ['x']}")

        node = read_tree(workspace.root)["a"]

        assert node.path == ("a",)
        assert node.children == ()
        assert node["path"] == "user data"

    def test_lookup_follows_children(self, workspace):
        workspace.define("a/b/c.py", "'deep'")

        tree = read_tree(workspace.root)

        assert tree.lookup(["a", "b", "c"]).value == "deep"
        with pytest.raises(KeyError):
            tree.lookup(["a", "missing"])


class TestCollisions:
    def test_subdirectory_wins_over_default_key(self, workspace, capsys):
        workspace.define("a/default.py", "{'sub': 'from default'}")
        workspace.define("a/sub/x.py", "'from subdir'")

        node = read_tree(workspace.root)["a"]

        assert isinstance(node["sub"], Namespace)
        assert node["sub"]["x"].value == "from subdir"
        assert "defined twice" in capsys.readouterr().err

    def test_subdirectory_wins_over_sibling_file(self, workspace, capsys):
        workspace.define("a/thing.py", "'file'")
        workspace.define("a/thing/default.py", "'directory'")

        node = read_tree(workspace.root)["a"]

        assert node["thing"].value == "directory"
        assert node.children == ("thing",)
        assert "defined twice" in capsys.readouterr().err


class TestArguments:
    def test_definitions_receive_args_and_location(self, workspace):
        workspace.write(
            "a/b.py",
            """
            def define(located_at, greeting, **args):
                return {"where": located_at, "greeting": greeting}
            """,
        )

        tree = read_tree(workspace.root, args={"greeting": "hello"})

        assert tree["a"]["b"]["where"] == ("a", "b")
        assert tree["a"]["b"]["greeting"] == "hello"

    def test_args_can_depend_on_location(self, workspace):
        workspace.write(
            "a/b.py",
            """
            def define(scope, **args):
                return scope
            """,
        )

        tree = read_tree(workspace.root, args=lambda parts: {"scope": "/".join(parts)})

        assert tree["a"]["b"].value == "a/b"

    def test_args_filter_is_applied_per_node(self, workspace):
        workspace.write(
            "secret/x.py",
            """
            def define(**args):
                return sorted(args)
            """,
        )
        workspace.write(
            "public/y.py",
            """
            def define(**args):
                return sorted(args)
            """,
        )

        def hide_token(args, parts):
            if parts[0] != "secret":
                args = {k: v for k, v in args.items() if k != "token"}
            return args

        tree = read_tree(workspace.root, args={"token": "t"}, args_filter=hide_token)

        assert tree["secret"]["x"].value == ["located_at", "token"]
        assert tree["public"]["y"].value == ["located_at"]


class TestInvalidDefinitions:
    def test_missing_entrypoint(self, workspace):
        bad = workspace.write("a/not-a-function.py", "VALUE = 1\n")

        with pytest.raises(ResolutionError) as exc:
            read_tree(workspace.root)
        assert exc.value.path == str(bad.resolve())

    def test_entrypoint_not_callable(self, workspace):
        bad = workspace.write("a/default.py", "define = {'a': 1}\n")

        with pytest.raises(ResolutionError) as exc:
            read_tree(workspace.root)
        assert exc.value.path == str(bad.resolve())
        assert "dict" in str(exc.value)

    def test_entrypoint_without_kwargs(self, workspace):
        workspace.write("a/default.py", "def define(located_at):\n    return 1\n")

        with pytest.raises(ResolutionError, match="keyword arguments"):
            read_tree(workspace.root)
