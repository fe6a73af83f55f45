"""Tests for the review/CI glue (depotci.dispatch)."""

import subprocess

import pytest
from pydantic import ValidationError

from depotci.dispatch.api_client import APIError
from depotci.dispatch.hook import parse_ref_updates, report_result, trigger_builds
from depotci.dispatch.models import DispatchConfig, RefUpdate

ZERO = "0" * 40
OLD = "a" * 40
NEW = "b" * 40


class FakeClient:
    """Records calls; fails for the commits in `fail_on`."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.builds = []
        self.comments = []

    def trigger_build(self, project, payload):
        if payload["commit"] in self.fail_on:
            raise APIError("API request failed: 503 Service Unavailable. ")
        self.builds.append((project, payload))
        return {"id": len(self.builds)}

    def post_comment(self, commit, message, labels=None):
        if commit in self.fail_on:
            raise APIError("API request failed: 500 Internal Server Error. ")
        self.comments.append((commit, message, labels))
        return {}


def _facts(commit):
    return f"subject of {commit[:4]}", "Jo Doe <jo@example.com>"


@pytest.fixture
def config():
    return DispatchConfig(
        api_url="https://ci.example.com",
        project="depot",
        branches=["refs/heads/main", "refs/heads/canon"],
        build_url="https://ci.example.com/builds/1",
    )


class TestParseRefUpdates:
    def test_parses_lines(self):
        updates = parse_ref_updates([f"{OLD} {NEW} refs/heads/main\n", "\n"])

        assert updates == [RefUpdate(old=OLD, new=NEW, name="refs/heads/main")]
        assert updates[0].branch == "main"
        assert not updates[0].is_deletion

    def test_deletion(self):
        (update,) = parse_ref_updates([f"{OLD} {ZERO} refs/heads/main"])

        assert update.is_deletion

    def test_malformed_line(self):
        with pytest.raises(ValueError, match="invalid ref update"):
            parse_ref_updates(["only two"])


class TestTriggerBuilds:
    def test_tracked_branches_trigger_builds(self, config):
        client = FakeClient()
        updates = parse_ref_updates([
            f"{OLD} {NEW} refs/heads/main",
            f"{OLD} {NEW} refs/heads/feature",
        ])

        assert trigger_builds(config, updates, client, commit_facts=_facts) == 1

        ((project, payload),) = client.builds
        assert project == "depot"
        assert payload["commit"] == NEW
        assert payload["branch"] == "main"
        assert payload["message"] == "subject of bbbb"
        assert payload["author"] == "Jo Doe <jo@example.com>"

    def test_deletions_are_ignored(self, config):
        client = FakeClient()
        updates = parse_ref_updates([f"{OLD} {ZERO} refs/heads/main"])

        assert trigger_builds(config, updates, client, commit_facts=_facts) == 0
        assert client.builds == []

    def test_api_error_does_not_stop_other_updates(self, config, capsys):
        other = "c" * 40
        client = FakeClient(fail_on=[NEW])
        updates = parse_ref_updates([
            f"{OLD} {NEW} refs/heads/main",
            f"{OLD} {other} refs/heads/canon",
        ])

        assert trigger_builds(config, updates, client, commit_facts=_facts) == 1

        assert [p["commit"] for _, p in client.builds] == [other]
        assert "Failed to trigger build" in capsys.readouterr().err

    def test_unknown_commit_does_not_stop_other_updates(self, config, capsys):
        other = "c" * 40

        def facts(commit):
            if commit == NEW:
                raise subprocess.CalledProcessError(128, ["git", "log", "-1", commit])
            return _facts(commit)

        client = FakeClient()
        updates = parse_ref_updates([
            f"{OLD} {NEW} refs/heads/main",
            f"{OLD} {other} refs/heads/canon",
        ])

        assert trigger_builds(config, updates, client, commit_facts=facts) == 1

        assert [p["commit"] for _, p in client.builds] == [other]
        assert NEW in capsys.readouterr().err


class TestReportResult:
    def test_passed(self, config):
        client = FakeClient()

        assert report_result(config, NEW, 0, client=client)

        ((commit, message, labels),) = client.comments
        assert commit == NEW
        assert message == "CI build passed. https://ci.example.com/builds/1"
        assert labels == {"Verified": "+1"}

    def test_failed(self, config):
        client = FakeClient()

        assert report_result(config, NEW, 2, client=client, build_url="https://x/2")

        (_, message, labels), = client.comments
        assert message == "CI build failed (exit status 2). https://x/2"
        assert labels == {"Verified": "-1"}

    def test_api_error_is_reported_not_raised(self, config):
        assert report_result(config, NEW, 0, client=FakeClient(fail_on=[NEW])) is False

    def test_without_review_url(self, config):
        assert report_result(config, NEW, 0) is False

    def test_unreadable_token(self, config, tmp_path):
        config = config.model_copy(update={
            "review_url": "https://review.example.com",
            "token_file": str(tmp_path / "missing-token"),
        })

        assert report_result(config, NEW, 0) is False


class TestConfig:
    def test_load(self, tmp_path):
        path = tmp_path / "dispatch.json"
        path.write_text('{"api_url": "https://ci", "project": "depot"}')

        config = DispatchConfig.load(path)

        assert config.branches == ["refs/heads/main"]
        assert config.token() is None

    def test_token_file(self, tmp_path):
        (tmp_path / "token").write_text("secret\n")
        config = DispatchConfig(api_url="https://ci", project="p", token_file=str(tmp_path / "token"))

        assert config.token() == "secret"

    def test_invalid(self, tmp_path):
        path = tmp_path / "dispatch.json"
        path.write_text('{"project": "depot"}')

        with pytest.raises(ValidationError):
            DispatchConfig.load(path)
