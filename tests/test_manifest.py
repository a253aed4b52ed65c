"""
Tests for manifest assembly and serialization.
"""

import json
from datetime import datetime, timezone

import pytest

from launcher_publisher.pipeline.loaders import LaunchProfile
from launcher_publisher.pipeline.manifest import (
    Manifest,
    ManifestAssembler,
    ManifestFile,
    RuntimeArtifact,
    build_manifest_key,
    file_key,
    infer_content_type,
    latest_manifest_key,
)

CREATED_AT = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _file(path: str) -> ManifestFile:
    return ManifestFile(path=path, sha256="0" * 64, size=1, s3_key=f"clients/p/b/{path}")


def _assemble(files, launch_profile=LaunchProfile(mode="jar"), **kwargs) -> Manifest:
    return ManifestAssembler().assemble(
        profile_slug="p",
        build_id="b",
        loader_type="vanilla",
        mc_version="1.21.1",
        client_version="202603011200",
        jvm_args_default="-Xmx2G",
        game_args_default="",
        files=files,
        launch_profile=launch_profile,
        created_at=CREATED_AT,
        **kwargs,
    )


def test_keys():
    assert file_key("p", "b", "mods/a.jar") == "clients/p/b/mods/a.jar"
    assert build_manifest_key("p", "b") == "manifests/p/b.json"
    assert latest_manifest_key("p") == "manifests/p/latest.json"


@pytest.mark.parametrize(
    "path,expected",
    [
        ("mods/a.JAR", "application/java-archive"),
        ("config/x.json", "application/json"),
        ("icon.png", "image/png"),
        ("readme", "application/octet-stream"),
    ],
)
def test_infer_content_type(path, expected):
    assert infer_content_type(path) == expected


class TestManifestAssembler:
    def test_preserves_file_order(self):
        manifest = _assemble([_file("z.txt"), _file("a.txt")])
        assert [f.path for f in manifest.files] == ["z.txt", "a.txt"]

    def test_rejects_duplicate_paths(self):
        with pytest.raises(ValueError, match="Duplicate"):
            _assemble([_file("Mods/a.jar"), _file("mods/A.jar")])

    def test_serializes_camel_case_and_omits_absent_fields(self):
        document = json.loads(_assemble([_file("a.txt")]).to_json_bytes())

        assert document["profileSlug"] == "p"
        assert document["buildId"] == "b"
        assert document["jvmArgsDefault"] == "-Xmx2G"
        assert document["launchMode"] == "jar"
        assert document["files"][0] == {
            "path": "a.txt",
            "sha256": "0" * 64,
            "size": 1,
            "s3Key": "clients/p/b/a.txt",
        }
        for absent in (
            "javaRuntime",
            "javaRuntimeArtifactKey",
            "launchMainClass",
            "launchClasspath",
        ):
            assert absent not in document

    def test_main_class_fields(self):
        manifest = _assemble(
            [_file("a.jar")],
            launch_profile=LaunchProfile(
                mode="mainclass", main_class="a.Main", classpath=["*.jar"]
            ),
        )
        document = json.loads(manifest.to_json_bytes())
        assert document["launchMode"] == "mainclass"
        assert document["launchMainClass"] == "a.Main"
        assert document["launchClasspath"] == ["*.jar"]

    def test_runtime_artifact_fields(self):
        manifest = _assemble(
            [_file("a.txt")],
            java_runtime="runtime/bin/java",
            runtime_artifact=RuntimeArtifact(
                key="runtimes/jre.zip", sha256="ab", size_bytes=10, content_type="application/zip"
            ),
        )
        document = json.loads(manifest.to_json_bytes())
        assert document["javaRuntime"] == "runtime/bin/java"
        assert document["javaRuntimeArtifactKey"] == "runtimes/jre.zip"
        assert document["javaRuntimeArtifactSizeBytes"] == 10

    def test_json_round_trip(self):
        manifest = _assemble([_file("a.txt")])
        parsed = Manifest.from_json_bytes(manifest.to_json_bytes())
        assert parsed == manifest
