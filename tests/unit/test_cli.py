"""
Unit tests for the CLI entrypoint.
"""
import signal
import threading
from unittest.mock import Mock, patch

import pytest

from trawler.__main__ import install_signal_handlers, main
from trawler.jobs.base import JobHandle
from trawler.models import ConfigurationError, RunResult, RUN_CANCELLED


@pytest.fixture
def run_env(monkeypatch):
    """Minimal environment for a fast static-list run."""
    monkeypatch.setenv("TRAWLER_RUN_NAME", "nightly")
    monkeypatch.setenv("TRAWLER_PROFILE", "secrets")
    monkeypatch.setenv("TRAWLER_SLEEP_DURATION", "0s")
    monkeypatch.setenv("TRAWLER_DOWNLOADER_OVERRIDE", "git")
    for name in ("TRAWLER_PRODUCER", "TRAWLER_DRY_RUN", "TRAWLER_NAMESPACE"):
        monkeypatch.delenv(name, raising=False)


@patch('trawler.__main__.install_signal_handlers')
class TestMain:
    """Test CLI runs end to end with job creation mocked or dry-run."""

    def test_list_producers(self, mock_signals, capsys):
        assert main(["--list-producers"]) == 0

        out = capsys.readouterr().out
        assert "github:" in out
        assert "static-list:" in out
        assert "GITHUB_ORGS (required)" in out

    def test_configuration_error_exits_1(self, mock_signals, monkeypatch, capsys):
        for name in ("TRAWLER_PRODUCER", "TRAWLER_RUN_NAME", "TRAWLER_PROFILE"):
            monkeypatch.delenv(name, raising=False)

        assert main([]) == 1
        assert "❌ Error" in capsys.readouterr().err

    def test_unknown_producer_exits_1(self, mock_signals, run_env, capsys):
        assert main(["--producer", "bitbucket"]) == 1
        assert "unknown producer" in capsys.readouterr().err

    def test_dry_run(self, mock_signals, run_env, capsys):
        exit_code = main([
            "--producer", "static-list",
            "--dry-run",
            "--param", "TARGET_IDENTIFIERS=https://example.com/a.git\nhttps://example.com/b.git",
        ])

        assert exit_code == 0
        out = capsys.readouterr().out
        assert "Dry run" in out
        assert "Run completed: 2 dispatched" in out
        mock_signals.assert_called_once()

    @patch('trawler.__main__.KubernetesJobSubmitter')
    def test_creates_jobs_in_namespace(self, mock_submitter_cls, mock_signals, run_env):
        mock_submitter = Mock()
        mock_submitter.submit.return_value = JobHandle(name="nightly-abcde", namespace="crawl")
        mock_submitter_cls.return_value = mock_submitter

        exit_code = main([
            "--producer", "static-list",
            "--namespace", "crawl",
            "--param", "TARGET_IDENTIFIERS=a",
        ])

        assert exit_code == 0
        mock_submitter_cls.assert_called_once_with(namespace="crawl", image="trawler-pipeline:latest")
        request = mock_submitter.submit.call_args[0][0]
        assert request.identifier == "a"
        assert request.downloader == "git"
        assert request.metadata.run_name == "nightly"

    @patch('trawler.__main__.KubernetesJobSubmitter')
    def test_cluster_config_error_exits_1(self, mock_submitter_cls, mock_signals, run_env):
        mock_submitter_cls.side_effect = ConfigurationError("no kubeconfig")

        assert main(["--producer", "static-list", "--param", "TARGET_IDENTIFIERS=a"]) == 1

    @patch('trawler.__main__.RunCoordinator')
    def test_cancelled_run_exits_130(self, mock_coordinator_cls, mock_signals, run_env):
        mock_coordinator_cls.return_value.run.return_value = RunResult(status=RUN_CANCELLED)

        assert main(["--producer", "static-list", "--dry-run", "--param", "TARGET_IDENTIFIERS=a"]) == 130

    def test_bad_param_flag_exits_1(self, mock_signals, run_env):
        assert main(["--producer", "static-list", "--param", "TARGET_IDENTIFIERS"]) == 1


class TestSignalHandlers:
    """Test signal wiring."""

    @patch('trawler.__main__.signal.signal')
    def test_signals_set_cancel_event(self, mock_signal):
        event = threading.Event()

        install_signal_handlers(event)

        registered = {c[0][0]: c[0][1] for c in mock_signal.call_args_list}
        assert set(registered) == {signal.SIGINT, signal.SIGTERM}
        registered[signal.SIGTERM](signal.SIGTERM, None)
        assert event.is_set()
