"""
Tests for source layer resolution and scanning.
"""

import os

import pytest

from launcher_publisher.errors import SourceNotFoundError, ValidationError
from launcher_publisher.pipeline.scanner import (
    ContentScanner,
    ServerRef,
    normalize_server_name,
)


def _paths(entries):
    return [entry.relative_path for entry in entries]


def test_normalize_server_name():
    assert normalize_server_name("My Server #1") == "my-server-1"
    assert normalize_server_name("   ") == "server"
    assert normalize_server_name("!!!") == "server"


class TestResolveSourceDirectories:
    def test_missing_profile_root(self, source_root):
        scanner = ContentScanner(source_root)
        with pytest.raises(SourceNotFoundError):
            scanner.resolve_source_directories("ghost", "vanilla", "1.21.1")

    def test_profile_root_without_layers(self, source_root, make_tree):
        make_tree(source_root / "p", {"a.txt": "a"})
        scanner = ContentScanner(source_root)

        assert scanner.resolve_source_directories("p", "vanilla", "1.21.1") == [
            (source_root / "p").resolve()
        ]

    def test_layers_in_order(self, source_root, make_tree):
        root = source_root / "p"
        make_tree(
            root,
            {
                "common/a.txt": "",
                "loaders/fabric/common/b.txt": "",
                "loaders/fabric/1.21.1/c.txt": "",
                "loaders/forge/common/ignored.txt": "",
            },
        )
        scanner = ContentScanner(source_root)

        directories = scanner.resolve_source_directories("p", "fabric", "1.21.1")
        root = root.resolve()
        assert directories == [
            root / "common",
            root / "loaders" / "fabric" / "common",
            root / "loaders" / "fabric" / "1.21.1",
        ]

    def test_single_server_overlay_is_appended(self, source_root, make_tree):
        root = source_root / "p"
        make_tree(root, {"common/a.txt": "", "servers/main-hub/common/b.txt": ""})
        scanner = ContentScanner(source_root)

        directories = scanner.resolve_source_directories(
            "p",
            "vanilla",
            "1.21.1",
            servers=[ServerRef(id="srv1", name="Main Hub"), ServerRef(id="srv2", name="Other")],
        )
        assert directories[-1] == root.resolve() / "servers" / "main-hub" / "common"

    def test_multiple_server_overlays_without_profile_layer(self, source_root, make_tree):
        make_tree(
            source_root / "p",
            {"servers/srv1/common/a.txt": "", "servers/srv2/common/b.txt": ""},
        )
        scanner = ContentScanner(source_root)

        with pytest.raises(ValidationError, match="sourceSubPath"):
            scanner.resolve_source_directories(
                "p",
                "vanilla",
                "1.21.1",
                servers=[ServerRef(id="srv1", name="one"), ServerRef(id="srv2", name="two")],
            )

    def test_multiple_server_overlays_fall_back_to_profile_layers(self, source_root, make_tree):
        root = source_root / "p"
        make_tree(
            root,
            {
                "common/x.txt": "",
                "servers/srv1/common/a.txt": "",
                "servers/srv2/common/b.txt": "",
            },
        )
        scanner = ContentScanner(source_root)

        directories = scanner.resolve_source_directories(
            "p",
            "vanilla",
            "1.21.1",
            servers=[ServerRef(id="srv1", name="one"), ServerRef(id="srv2", name="two")],
        )
        assert directories == [root.resolve() / "common"]

    def test_source_sub_path(self, source_root, make_tree):
        root = source_root / "p"
        make_tree(root, {"common/a.txt": "", "custom/b.txt": ""})
        scanner = ContentScanner(source_root)

        directories = scanner.resolve_source_directories(
            "p", "vanilla", "1.21.1", source_sub_path="/custom/"
        )
        assert directories == [root.resolve() / "custom"]

    def test_source_sub_path_missing(self, source_root, make_tree):
        make_tree(source_root / "p", {"a.txt": ""})
        scanner = ContentScanner(source_root)

        with pytest.raises(SourceNotFoundError):
            scanner.resolve_source_directories("p", "vanilla", "1.21.1", source_sub_path="nope")

    def test_source_sub_path_traversal(self, source_root, make_tree):
        make_tree(source_root / "p", {"a.txt": ""})
        scanner = ContentScanner(source_root)

        with pytest.raises(ValidationError):
            scanner.resolve_source_directories("p", "vanilla", "1.21.1", source_sub_path="../p")


class TestScan:
    def test_sorted_case_insensitively(self, source_root, make_tree):
        root = make_tree(source_root / "p", {"b.txt": "", "A.txt": "", "mods/c.jar": ""})
        scanner = ContentScanner(source_root)

        assert _paths(scanner.scan([root])) == ["A.txt", "b.txt", "mods/c.jar"]

    def test_later_layers_override(self, source_root, make_tree):
        root = source_root / "p"
        make_tree(root, {"common/config/x.cfg": "base", "override/Config/X.cfg": "top"})
        scanner = ContentScanner(source_root)

        entries = scanner.scan([root / "common", root / "override"])
        assert len(entries) == 1
        assert entries[0].absolute_path.read_text() == "top"

    def test_empty_tree(self, source_root):
        (source_root / "p").mkdir()
        assert ContentScanner(source_root).scan([source_root / "p"]) == []

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlinks_are_skipped(self, source_root, make_tree, tmp_path):
        root = make_tree(source_root / "p", {"real.txt": "x"})
        outside = make_tree(tmp_path / "outside", {"secret.txt": "s"})
        os.symlink(outside / "secret.txt", root / "link.txt")
        os.symlink(outside, root / "linked-dir")

        assert _paths(ContentScanner(source_root).scan([root])) == ["real.txt"]
