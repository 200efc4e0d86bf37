"""Tests for the rsync wrapper."""

import shutil
from unittest import mock

import pytest

from rsync_backup_ng.__util__ import (
    ProcessTerminatedError,
    RsyncCallFailedError,
    RsyncOutputParseError,
)
from rsync_backup_ng.config import GlobalConfig, ModuleConfig
from rsync_backup_ng.core.context import background, cancel_on_signals, fork_context
from rsync_backup_ng.core.paths import SrcDstPath
from rsync_backup_ng.rsync import (
    RsyncLogging,
    RsyncOptions,
    RsyncOutcome,
    check_rsync_installed,
    extract_total_size,
    get_exit_code_description,
    get_path_status,
    get_rsync_params,
    get_rsync_version,
    is_space_exhaustion_candidate,
    run_rsync,
    run_rsync_with_retry,
    with_default_params,
)
from rsync_backup_ng.rsync.errors import extract_error, new_call_failed_error

PATHS = SrcDstPath("rsync://nas/home/", "/backup/snap/home")


def fake_popen(exit_code=0, stdout=b"", stderr=b""):
    """Popen replacement writing canned output into the capture files."""
    proc = mock.Mock(pid=4242)
    proc.wait.return_value = exit_code

    def _popen(cmd, stdout=None, stderr=None, env=None):
        stdout.write(_popen.stdout_data)
        stderr.write(_popen.stderr_data)
        return proc

    _popen.stdout_data = stdout
    _popen.stderr_data = stderr
    _popen.proc = proc
    return mock.Mock(side_effect=_popen)


class TestExitCodes:
    """Tests for exit status interpretation."""

    def test_known_description(self):
        """Test documented exit codes."""
        assert get_exit_code_description(23) == "partial transfer due to error"
        assert get_exit_code_description(5) == "error starting client-server protocol"

    def test_unknown_description(self):
        """Test an undocumented exit code."""
        assert get_exit_code_description(99) == "undefined rsync exit code: 99"

    def test_extract_error(self):
        """Test picking the daemon error line out of stderr."""
        stderr = "something\n@ERROR: auth failed on module home\nrsync error: ...\n"
        assert extract_error(stderr) == "auth failed on module home"
        assert extract_error("") == ""
        assert extract_error(None) == ""

    def test_new_call_failed_error(self):
        """Test the description combining the daemon error and exit code."""
        error = new_call_failed_error(5, "@ERROR: Unknown module 'x'\n")
        assert error.exit_code == 5
        assert error.description == (
            "Unknown module 'x', error starting client-server protocol"
        )
        assert new_call_failed_error(23, "").description == "partial transfer due to error"

    def test_space_exhaustion_candidates(self):
        """Test which failures may mean a full destination."""
        assert is_space_exhaustion_candidate(RsyncCallFailedError(11, "x"))
        assert is_space_exhaustion_candidate(RsyncCallFailedError(23, "x"))
        assert not is_space_exhaustion_candidate(RsyncCallFailedError(24, "x"))
        assert not is_space_exhaustion_candidate(OSError("disk full"))


class TestRsyncOptions:
    """Tests for RsyncOptions and parameter mapping."""

    def test_default_params(self):
        """Test that default parameters come first."""
        assert with_default_params("--dry-run") == ["--progress", "--verbose", "--dry-run"]

    def test_retry_count_clamped(self):
        """Test that retries stay within 0..5."""
        assert RsyncOptions().set_retry_count(9).retry_count == 5
        assert RsyncOptions().set_retry_count(-3).retry_count == 0
        assert RsyncOptions(retry_count=2).set_retry_count(None).retry_count == 2

    def test_chained_setters(self):
        """Test the fluent setters."""
        hook = mock.Mock()
        options = (
            RsyncOptions(["--recursive"])
            .add_params("--stats")
            .set_error_hook(hook)
            .set_predicted_size(100)
            .set_auth_password("secret")
        )
        assert options.params == ["--recursive", "--stats"]
        assert options.error_hook is hook
        assert options.predicted_size == 100
        assert options.password == "secret"

    def test_global_flags(self):
        """Test flags taken from the global settings."""
        params = get_rsync_params(GlobalConfig(), ModuleConfig("rsync://nas/home"))
        assert params == ["--perms", "--links"]

    def test_module_overrides(self):
        """Test that module flags win over global ones."""
        module = ModuleConfig(
            "rsync://nas/home",
            transfer_source_owner=True,
            recreate_symlinks=False,
            change_file_permission="Du+rwx,Fu+rw",
        )
        params = get_rsync_params(
            GlobalConfig(compress_file_transfer=True), module, ["--dry-run"]
        )
        assert params == [
            "--owner",
            "--perms",
            "--compress",
            "--chmod=Du+rwx,Fu+rw",
            "--dry-run",
        ]

    def test_logging_active(self):
        """Test that rsync logging needs a logger."""
        assert not RsyncLogging(enabled=True).active
        assert RsyncLogging(enabled=True, log=mock.Mock()).active


class TestRunRsync:
    """Tests for run_rsync with the process mocked."""

    def test_success(self):
        """Test command line, environment and captured output."""
        popen = fake_popen(stdout=b"sending incremental file list\n")
        options = RsyncOptions(["--verbose"]).set_auth_password("secret")
        with mock.patch("rsync_backup_ng.rsync.runner.subprocess.Popen", popen):
            out = run_rsync(background(), options, PATHS)

        assert out == "sending incremental file list\n"
        cmd = popen.call_args[0][0]
        assert cmd == ["rsync", "--verbose", PATHS.source, PATHS.dest]
        assert popen.call_args[1]["env"]["RSYNC_PASSWORD"] == "secret"

    def test_no_password_still_set(self):
        """Test that rsync never gets to prompt for a password."""
        popen = fake_popen()
        with mock.patch("rsync_backup_ng.rsync.runner.subprocess.Popen", popen):
            run_rsync(None, RsyncOptions(), SrcDstPath("rsync://nas/", ""))
        assert popen.call_args[0][0] == ["rsync", "rsync://nas/"]
        assert popen.call_args[1]["env"]["RSYNC_PASSWORD"] == ""

    def test_failure(self):
        """Test that a non-zero exit raises with the daemon error."""
        popen = fake_popen(exit_code=5, stderr=b"@ERROR: auth failed on module home\n")
        with mock.patch("rsync_backup_ng.rsync.runner.subprocess.Popen", popen):
            with pytest.raises(RsyncCallFailedError) as exc_info:
                run_rsync(background(), RsyncOptions(), PATHS)
        assert exc_info.value.exit_code == 5
        assert exc_info.value.description.startswith("auth failed on module home")

    def test_cancelled(self):
        """Test that a cancelled context stops the process."""
        popen = fake_popen()
        ctx = background()
        ctx.cancel()
        with mock.patch("rsync_backup_ng.rsync.runner.subprocess.Popen", popen):
            with pytest.raises(ProcessTerminatedError):
                run_rsync(ctx, RsyncOptions(), PATHS)
        popen.side_effect.proc.terminate.assert_called_once()

    def test_low_level_log(self):
        """Test that the command line and output are recorded."""
        popen = fake_popen(stdout=b"file.txt\n")
        log = mock.Mock()
        rsync_log = RsyncLogging(enabled=True, intensive=True, log=log)
        with mock.patch("rsync_backup_ng.rsync.runner.subprocess.Popen", popen):
            run_rsync(background(), RsyncOptions(["-r"]), PATHS, rsync_log)
        text = log.info.call_args[0][0]
        assert text.startswith(f"rsync -r {PATHS.source} {PATHS.dest}")
        assert "Stdout start" in text
        assert "file.txt" in text

    def test_exit_after_cancel(self):
        """Test that rsync exiting on the cancelling signal counts as termination."""
        ctx = background()
        popen = fake_popen(exit_code=20)

        def _wait(timeout=None):
            ctx.cancel()
            return 20

        popen.side_effect.proc.wait.side_effect = _wait
        with mock.patch("rsync_backup_ng.rsync.runner.subprocess.Popen", popen):
            with pytest.raises(ProcessTerminatedError):
                run_rsync(ctx, RsyncOptions(), PATHS)

    @pytest.mark.skipif(shutil.which("sh") is None, reason="no POSIX shell")
    def test_interrupted_by_signal(self, tmp_path, monkeypatch):
        """Test a SIGINT shared with rsync never reaches the error hook."""
        script = tmp_path / "rsync"
        script.write_text("#!/bin/sh\nkill -INT $PPID\nexit 20\n")
        script.chmod(0o755)
        monkeypatch.setattr("rsync_backup_ng.rsync.runner.RSYNC_CMD", str(script))
        hook = mock.Mock(return_value=0)
        pack = fork_context(background())
        with cancel_on_signals(pack):
            with pytest.raises(ProcessTerminatedError):
                run_rsync_with_retry(
                    pack.context, RsyncOptions(retry_count=0, error_hook=hook), PATHS
                )
        hook.assert_not_called()
        assert pack.context.cancelled()

    @pytest.mark.skipif(shutil.which("rsync") is None, reason="rsync not installed")
    def test_local_copy(self, tmp_path):
        """Test a real transfer between two local folders."""
        src = tmp_path / "src"
        src.mkdir()
        (src / "a.txt").write_text("hello")
        dst = tmp_path / "dst"
        options = RsyncOptions(with_default_params("--recursive"))
        run_rsync(background(), options, SrcDstPath(str(src) + "/", str(dst)))
        assert (dst / "a.txt").read_text() == "hello"


class TestRunRsyncWithRetry:
    """Tests for the retry loop."""

    def _runner(self, *results):
        """Runner returning or raising the given results in turn."""
        calls = []
        queue = list(results)

        def _run(ctx, options, paths, rsync_log):
            calls.append(paths)
            item = queue.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item

        _run.calls = calls
        return _run

    def test_first_attempt(self):
        """Test a call which succeeds immediately."""
        runner = self._runner("done")
        outcome = run_rsync_with_retry(None, RsyncOptions(), PATHS, runner=runner)
        assert outcome == RsyncOutcome(stdout="done")
        assert outcome.ok

    def test_recovered(self):
        """Test that a later success keeps the recovered error."""
        first = RsyncCallFailedError(10, "error in socket I/O")
        second = RsyncCallFailedError(12, "error in rsync protocol data stream")
        runner = self._runner(first, second, "done")
        outcome = run_rsync_with_retry(
            None, RsyncOptions(retry_count=2), PATHS, runner=runner
        )
        assert outcome.ok
        assert outcome.retry_error is second
        assert len(runner.calls) == 3

    def test_exhausted(self):
        """Test that the last error is kept once retries run out."""
        errors = [RsyncCallFailedError(10, "x"), RsyncCallFailedError(10, "y")]
        runner = self._runner(*errors)
        outcome = run_rsync_with_retry(
            None, RsyncOptions(retry_count=1), PATHS, runner=runner
        )
        assert not outcome.ok
        assert outcome.session_error is errors[1]

    def test_hook_arguments(self):
        """Test what the error hook sees and that it sets retries left."""
        seen = []

        def hook(error, paths, predicted, attempt, retry_left):
            seen.append((error.exit_code, paths, predicted, attempt, retry_left))
            return 1

        runner = self._runner(
            RsyncCallFailedError(23, "x"), RsyncCallFailedError(23, "y"), "ok"
        )
        options = RsyncOptions(retry_count=0, error_hook=hook, predicted_size=1000)
        outcome = run_rsync_with_retry(None, options, PATHS, runner=runner)
        assert outcome.ok
        assert seen == [(23, PATHS, 1000, 0, 0), (23, PATHS, 1000, 1, 0)]

    def test_hook_abort_propagates(self):
        """Test that an error raised by the hook is fatal."""

        def hook(*args):
            raise RuntimeError("stop")

        runner = self._runner(RsyncCallFailedError(23, "x"))
        with pytest.raises(RuntimeError, match="stop"):
            run_rsync_with_retry(
                None, RsyncOptions(retry_count=3, error_hook=hook), PATHS, runner=runner
            )

    def test_cancellation_not_retried(self):
        """Test that cancellation skips retries and the hook."""
        hook = mock.Mock(return_value=5)
        runner = self._runner(ProcessTerminatedError())
        with pytest.raises(ProcessTerminatedError):
            run_rsync_with_retry(
                None, RsyncOptions(retry_count=3, error_hook=hook), PATHS, runner=runner
            )
        hook.assert_not_called()


class TestUtils:
    """Tests for rsync helpers."""

    @pytest.mark.parametrize(
        "line,expected",
        [
            ("rsync  version 3.1.3  protocol version 31", ("3.1.3", "31")),
            ("rsync  version v3.2.7  protocol version 31", ("3.2.7", "31")),
            ("rsync version 2.6.9", ("2.6.9", "")),
        ],
    )
    def test_version(self, line, expected):
        """Test parsing of ``rsync --version``."""
        result = mock.Mock(stdout=line + "\nCopyright (C) 1996-2022\n")
        with mock.patch("rsync_backup_ng.rsync.utils.subprocess.run", return_value=result):
            assert get_rsync_version() == expected

    def test_version_unparsable(self):
        """Test output without a version."""
        result = mock.Mock(stdout="openrsync: protocol version 29\n")
        with mock.patch("rsync_backup_ng.rsync.utils.subprocess.run", return_value=result):
            with pytest.raises(RsyncOutputParseError):
                get_rsync_version()

    def test_version_not_installed(self):
        """Test that a missing binary is a parse error."""
        with mock.patch(
            "rsync_backup_ng.rsync.utils.subprocess.run", side_effect=FileNotFoundError()
        ):
            with pytest.raises(RsyncOutputParseError, match="cannot run"):
                get_rsync_version()

    def test_check_installed(self):
        """Test the PATH lookup."""
        with mock.patch("rsync_backup_ng.rsync.utils.shutil.which", return_value=None):
            assert check_rsync_installed() is False
        with mock.patch(
            "rsync_backup_ng.rsync.utils.shutil.which", return_value="/usr/bin/rsync"
        ):
            assert check_rsync_installed() is True

    def test_total_size(self):
        """Test parsing the stats summary."""
        out = "sent 20 bytes\ntotal size is 2,227,810,354  speedup is 507,127.33 (DRY RUN)\n"
        assert extract_total_size(out) == 2227810354

    def test_total_size_missing(self):
        """Test output without a stats summary."""
        with pytest.raises(RsyncOutputParseError):
            extract_total_size("sent 20 bytes\n")

    def test_path_status_ok(self):
        """Test probing a reachable source."""
        with mock.patch(
            "rsync_backup_ng.rsync.utils.run_rsync_with_retry",
            return_value=RsyncOutcome(stdout=""),
        ) as run:
            get_path_status(None, "rsync://nas/home", password="secret")
        _, options, paths = run.call_args[0]
        assert "--dry-run" in options.params
        assert "--recursive" not in options.params
        assert options.password == "secret"
        assert paths.source == "rsync://nas/home/"

    def test_path_status_failed(self):
        """Test probing an unreachable source."""
        error = RsyncCallFailedError(5, "error starting client-server protocol")
        with mock.patch(
            "rsync_backup_ng.rsync.utils.run_rsync_with_retry",
            return_value=RsyncOutcome(session_error=error),
        ):
            with pytest.raises(RsyncCallFailedError) as exc_info:
                get_path_status(None, "rsync://nas/home", recursive=True)
        assert exc_info.value is error
