"""
Tests for the build ledger and profile service.
"""

from datetime import timedelta

import pytest

from launcher_publisher.db.models import BuildModel, ServerModel, utc_now
from launcher_publisher.db.services import BuildLedger, ProfileService
from launcher_publisher.errors import (
    BuildConflictError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def ledger(db_session):
    return BuildLedger(db_session, history_max=3, stale_after_seconds=600, error_message_max_length=100)


def _start(ledger, profile):
    return ledger.start_build(profile.id, "vanilla", "1.21.1", "v1")


class TestProfileService:
    def test_create_and_lookup(self, db_session):
        service = ProfileService(db_session)
        profile = service.create_profile(name="Main", slug="Main-Pack")

        assert profile.slug == "main-pack"
        assert service.get_by_slug("main-pack").id == profile.id
        assert profile.latest_build_id == ""

    def test_duplicate_slug(self, db_session, profile):
        with pytest.raises(ConflictError):
            ProfileService(db_session).create_profile(name="Again", slug="spicetech")

    def test_invalid_slug(self, db_session):
        with pytest.raises(ValidationError):
            ProfileService(db_session).create_profile(name="Bad", slug="bad slug!")

    def test_require_missing_profile(self, db_session):
        with pytest.raises(NotFoundError):
            ProfileService(db_session).require_profile("missing")

    def test_rename_slug_refused_once_builds_exist(self, db_session, profile, ledger):
        service = ProfileService(db_session)
        assert service.rename_slug(profile.id, "spice-tech").slug == "spice-tech"

        _start(ledger, profile)
        with pytest.raises(ConflictError):
            service.rename_slug(profile.id, "other")

    def test_delete_cascades(self, db_session, profile, ledger):
        service = ProfileService(db_session)
        service.add_server(profile.id, "Hub", "play.example.com")
        _start(ledger, profile)

        service.delete_profile(profile.id)

        assert db_session.query(BuildModel).count() == 0
        assert db_session.query(ServerModel).count() == 0


class TestBuildLedger:
    def test_start_build_is_running(self, ledger, profile):
        build = _start(ledger, profile)

        assert build.status == "running"
        assert build.manifest_key is None
        assert build.files_count is None

    def test_second_running_build_conflicts(self, ledger, profile):
        first = _start(ledger, profile)

        with pytest.raises(BuildConflictError) as exc_info:
            _start(ledger, profile)
        assert exc_info.value.running_build_id == first.id

    def test_other_profiles_are_independent(self, db_session, ledger, profile):
        other = ProfileService(db_session).create_profile(name="Other", slug="other")
        _start(ledger, profile)
        assert _start(ledger, other).status == "running"

    def test_commit_success_moves_pointers(self, db_session, ledger, profile):
        service = ProfileService(db_session)
        server = service.add_server(profile.id, "Hub", "play.example.com")
        build = _start(ledger, profile)

        completed = ledger.commit_success(
            build.id,
            files_count=2,
            total_size_bytes=10,
            skipped_files_count=1,
            manifest_key=f"manifests/spicetech/{build.id}.json",
            latest_manifest_key="manifests/spicetech/latest.json",
            publish_to_servers=True,
        )

        assert completed.status == "completed"
        assert completed.finished_at is not None
        assert completed.skipped_files_count == 1
        db_session.refresh(profile)
        db_session.refresh(server)
        assert profile.latest_build_id == build.id
        assert profile.latest_manifest_key == "manifests/spicetech/latest.json"
        assert profile.latest_client_version == "v1"
        assert server.build_id == build.id

    def test_commit_without_publishing_to_servers(self, db_session, ledger, profile):
        server = ProfileService(db_session).add_server(profile.id, "Hub", "play.example.com")
        build = _start(ledger, profile)

        ledger.commit_success(build.id, 1, 1, 0, "m.json", "latest.json", publish_to_servers=False)

        db_session.refresh(server)
        assert server.build_id == ""

    def test_fail_build_truncates_message(self, ledger, profile):
        build = _start(ledger, profile)

        failed = ledger.fail_build(build.id, "x" * 500)

        assert failed.status == "failed"
        assert len(failed.error_message) == 100
        assert failed.manifest_key is None

    def test_terminal_status_never_changes(self, ledger, profile):
        build = _start(ledger, profile)
        ledger.fail_build(build.id, "boom")

        with pytest.raises(InvalidTransitionError):
            ledger.commit_success(build.id, 1, 1, 0, "m.json", "latest.json")
        with pytest.raises(InvalidTransitionError):
            ledger.fail_build(build.id, "again")

    def test_failed_build_frees_the_profile(self, ledger, profile):
        build = _start(ledger, profile)
        ledger.fail_build(build.id, "boom")

        assert _start(ledger, profile).status == "running"

    def test_stale_running_build_is_reaped(self, db_session, ledger, profile):
        stale = _start(ledger, profile)
        stale.created_at = utc_now() - timedelta(hours=2)
        db_session.commit()

        fresh = _start(ledger, profile)

        db_session.refresh(stale)
        assert stale.status == "failed"
        assert "abandoned" in stale.error_message
        assert fresh.status == "running"

    def test_history_is_capped_per_profile(self, ledger, profile):
        for _ in range(5):
            build = _start(ledger, profile)
            ledger.fail_build(build.id, "boom")

        assert len(ledger.list_builds(profile.id, limit=10)) == 3

    def test_latest_build_and_pointer(self, ledger, profile):
        assert ledger.get_latest_build(profile.id) is None

        build = _start(ledger, profile)
        ledger.commit_success(build.id, 1, 1, 0, "m.json", "latest.json")

        assert ledger.get_latest_build(profile.id).id == build.id
        pointer = ledger.get_latest_pointer(profile.id)
        assert pointer["latest_build_id"] == build.id
        assert pointer["latest_manifest_key"] == "latest.json"

    def test_missing_build(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.require_build("missing")

    def test_lost_race_on_running_index_conflicts(self, db_session, ledger, profile, monkeypatch):
        db_session.add(
            BuildModel(
                id="01RUNNINGELSEWHERE",
                profile_id=profile.id,
                loader_type="vanilla",
                mc_version="1.21.1",
                client_version="v0",
                status="running",
                created_at=utc_now(),
            )
        )
        db_session.commit()

        # The first lookup misses the row, as when another process inserts it
        # between the check and the insert
        lookup = ledger.get_running_build
        calls = []

        def racing_lookup(profile_id):
            calls.append(profile_id)
            return None if len(calls) == 1 else lookup(profile_id)

        monkeypatch.setattr(ledger, "get_running_build", racing_lookup)

        with pytest.raises(BuildConflictError) as exc_info:
            _start(ledger, profile)

        assert exc_info.value.running_build_id == "01RUNNINGELSEWHERE"
        assert len(calls) == 2
        assert db_session.query(BuildModel).count() == 1
