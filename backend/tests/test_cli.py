# Overview: Pytest coverage for the Flask CLI commands and the sync retry policy.

"""
CLI Tests

The retry policy lives in the CLI: only transport failures are retried,
with capped exponential backoff.
"""

from types import SimpleNamespace

from canopy.cli import MAX_BACKOFF_SECONDS, backoff_delay, run_with_backoff
from canopy.models import Organization, RegistryCredential, RegistrySyncLog


def outcome(success=False, retryable=False):
    return SimpleNamespace(success=success, retryable=retryable)


class TestBackoff:
    """backoff_delay / run_with_backoff"""

    def test_delay_doubles_and_caps(self):
        assert backoff_delay(0, 2.0) == 2.0
        assert backoff_delay(1, 2.0) == 4.0
        assert backoff_delay(2, 2.0) == 8.0
        assert backoff_delay(10, 2.0) == MAX_BACKOFF_SECONDS

    def test_success_runs_once(self):
        calls = []
        sleeps = []

        def run():
            calls.append(1)
            return outcome(success=True)

        result = run_with_backoff(run, retries=3, backoff=2.0, sleep=sleeps.append)

        assert result.success
        assert len(calls) == 1
        assert sleeps == []

    def test_transport_failure_retried_until_exhausted(self):
        sleeps = []
        result = run_with_backoff(lambda: outcome(retryable=True), retries=3, backoff=2.0, sleep=sleeps.append)

        assert result.success is False
        assert sleeps == [2.0, 4.0]

    def test_recovers_after_transport_failure(self):
        results = iter([outcome(retryable=True), outcome(success=True)])
        sleeps = []

        result = run_with_backoff(lambda: next(results), retries=3, backoff=1.0, sleep=sleeps.append)

        assert result.success
        assert sleeps == [1.0]

    def test_non_transport_failure_not_retried(self):
        calls = []

        def run():
            calls.append(1)
            return outcome(retryable=False)

        run_with_backoff(run, retries=5, backoff=1.0, sleep=lambda s: None)

        assert len(calls) == 1


class TestCommands:
    """Commands run against the test database."""

    def test_orgs_create(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["orgs", "create", "--name", "Green Acres", "--code", "GREEN"])

        assert result.exit_code == 0
        assert "PASS Created organization: Green Acres" in result.output
        assert db_session.query(Organization).filter_by(code="GREEN").count() == 1

    def test_credentials_set(self, app, db_session, org_a):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "credentials", "set", "--org-id", str(org_a.id), "--state", "co", "--user-key", "cli-key",
        ])

        assert result.exit_code == 0
        assert "PASS Saved CO credentials" in result.output
        credential = db_session.query(RegistryCredential).filter_by(org_id=org_a.id).one()
        assert credential.user_api_key == "cli-key"

    def test_sync_failure_exits_non_zero_and_is_logged(self, app, db_session, org_a, site_a):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "compliance", "sync", "--org-id", str(org_a.id), "--site-id", str(site_a.id),
            "--type", "items", "--retries", "3",
        ])

        assert result.exit_code == 1
        assert "FAIL items" in result.output
        assert "not linked" in result.output
        # Configuration errors are not retried: one attempt, one entry
        assert db_session.query(RegistrySyncLog).filter_by(org_id=org_a.id).count() == 1

    def test_sync_rejects_unknown_type(self, app, db_session, org_a, site_a):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "compliance", "sync", "--org-id", str(org_a.id), "--site-id", str(site_a.id), "--type", "inventory",
        ])

        assert result.exit_code != 0
        assert db_session.query(RegistrySyncLog).count() == 0

    def test_logs_listing(self, app, db_session, org_a, site_a):
        runner = app.test_cli_runner()
        runner.invoke(args=["compliance", "sync", "--org-id", str(org_a.id), "--site-id", str(site_a.id), "--type", "tags"])

        result = runner.invoke(args=["compliance", "logs", "--org-id", str(org_a.id)])

        assert result.exit_code == 0
        assert "tags" in result.output
        assert "failed" in result.output
