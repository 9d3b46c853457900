"""
Unit tests for goswitch/utils
"""

import io
import json

import pytest
import requests

from goswitch.utils.download_history import MAX_RECORDS, DownloadHistory
from goswitch.utils.fileio import atomic_save_json, atomic_write_text
from goswitch.utils.input_validator import InputValidationError, InputValidator
from goswitch.utils.rate_limiter import RateLimiter
from goswitch.utils.retry import RetryHandler, is_transient_error
from goswitch.utils.speed_limiter import SpeedLimiter

from conftest import FakeResponse


class FakeClock:
    """Manually advanced monotonic clock; sleep advances it."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


# ============================================================================
# RETRY
# ============================================================================


class TestRetry:
    """Exponential backoff for transient failures"""

    def test_transient_classification(self):
        assert is_transient_error(requests.exceptions.ConnectionError())
        assert is_transient_error(requests.exceptions.Timeout())
        assert is_transient_error(requests.exceptions.HTTPError(response=FakeResponse(status_code=502)))
        assert is_transient_error(requests.exceptions.HTTPError(response=FakeResponse(status_code=429)))
        assert not is_transient_error(requests.exceptions.HTTPError(response=FakeResponse(status_code=404)))
        assert not is_transient_error(ValueError("bad json"))

    def test_default_handler_does_not_retry(self):
        calls = []

        def flaky():
            calls.append(1)
            raise requests.exceptions.ConnectionError("down")

        with pytest.raises(requests.exceptions.ConnectionError):
            RetryHandler().execute(flaky)

        assert len(calls) == 1

    def test_retries_then_succeeds(self):
        sleeps = []
        outcomes = iter([requests.exceptions.Timeout("slow"), requests.exceptions.Timeout("slow"), "ok"])

        def flaky():
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        handler = RetryHandler(max_retries=3, base_delay=1.0, jitter=False, sleep=sleeps.append)

        assert handler.execute(flaky) == "ok"
        assert sleeps == [1.0, 2.0]

    def test_non_transient_is_raised_immediately(self):
        sleeps = []
        handler = RetryHandler(max_retries=3, sleep=sleeps.append)

        with pytest.raises(KeyError):
            handler.execute(lambda: {}["missing"])

        assert sleeps == []

    def test_delay_is_capped(self):
        handler = RetryHandler(base_delay=1.0, max_delay=5.0, jitter=False)

        assert handler.calculate_delay(10) == 5.0

    def test_jitter_stays_within_half_to_full_delay(self):
        handler = RetryHandler(base_delay=4.0, jitter=True)

        for _ in range(20):
            assert 2.0 <= handler.calculate_delay(0) <= 4.0


# ============================================================================
# RATE AND SPEED LIMITS
# ============================================================================


class TestRateLimiter:
    """Token bucket request throttling"""

    @pytest.mark.parametrize("rate", [None, 0, -1])
    def test_non_positive_rate_is_unlimited(self, rate):
        clock = FakeClock()
        limiter = RateLimiter(rate, clock=clock, sleep=clock.sleep)

        for _ in range(100):
            limiter.acquire()

        assert limiter.unlimited
        assert clock.sleeps == []

    def test_waits_when_bucket_is_empty(self):
        clock = FakeClock()
        limiter = RateLimiter(2, clock=clock, sleep=clock.sleep)

        limiter.acquire()
        limiter.acquire()
        limiter.acquire()

        assert clock.sleeps == [pytest.approx(0.5)]

    def test_reset_refills(self):
        clock = FakeClock()
        limiter = RateLimiter(1, clock=clock, sleep=clock.sleep)
        limiter.acquire()

        limiter.reset()
        limiter.acquire()

        assert clock.sleeps == []


class TestSpeedLimiter:
    """Download bandwidth throttling"""

    def test_unlimited_never_sleeps(self):
        clock = FakeClock()
        limiter = SpeedLimiter(0, clock=clock, sleep=clock.sleep)
        out = io.BytesIO()

        limiter.write_with_limit(out, b"x" * 1000)

        assert out.getvalue() == b"x" * 1000
        assert clock.sleeps == []

    def test_sleeps_to_match_limit(self):
        clock = FakeClock()
        limiter = SpeedLimiter(50, clock=clock, sleep=clock.sleep)
        out = io.BytesIO()

        limiter.write_with_limit(out, b"x" * 100)

        assert clock.sleeps == [pytest.approx(2.0)]


# ============================================================================
# HISTORY, VALIDATION, FILE IO
# ============================================================================


class TestDownloadHistory:
    """Persistent install history"""

    def test_newest_first_and_persisted(self, tmp_path):
        history = DownloadHistory(tmp_path)
        history.add_record("1.21.0", "success")
        history.add_record("1.22.0", "failed", "checksum mismatch")

        reloaded = DownloadHistory(tmp_path)
        records = reloaded.get_history()

        assert [r["version"] for r in records] == ["1.22.0", "1.21.0"]
        assert records[0]["error_message"] == "checksum mismatch"

    def test_filter_and_limit(self, tmp_path):
        history = DownloadHistory(tmp_path)
        for status in ("failed", "success", "cancelled"):
            history.add_record("1.22.0", status)
        history.add_record("1.21.0", "success")

        assert len(history.get_history(version="1.22.0")) == 3
        assert len(history.get_history(limit=2)) == 2

    def test_caps_record_count(self, tmp_path):
        history = DownloadHistory(tmp_path)
        for i in range(MAX_RECORDS + 5):
            history.add_record(f"1.{i}.0", "success")

        assert len(json.loads(history.history_file.read_text())) == MAX_RECORDS

    def test_clear(self, tmp_path):
        history = DownloadHistory(tmp_path)
        history.add_record("1.22.0", "success")

        history.clear_history()

        assert DownloadHistory(tmp_path).get_history() == []

    def test_corrupted_file_is_ignored(self, tmp_path):
        (tmp_path / "download_history.json").write_text("[{oops")

        assert DownloadHistory(tmp_path).get_history() == []


class TestInputValidator:
    """Untrusted input checks"""

    @pytest.mark.parametrize("version", ["1.22.0", "1.23rc1", "1.21.0-rc1"])
    def test_valid_versions(self, version):
        assert InputValidator.validate_version_string(version)

    @pytest.mark.parametrize("version", ["", "   ", "..", "1.22/0", "a\\b", "-rf", "x" * 101])
    def test_invalid_versions(self, version):
        with pytest.raises(InputValidationError):
            InputValidator.validate_version_string(version)

    def test_filename(self):
        assert InputValidator.validate_filename("go1.22.0.linux-amd64.tar.gz")
        with pytest.raises(InputValidationError):
            InputValidator.validate_filename("../go.tar.gz")

    @pytest.mark.parametrize("url", [
        "https://go.dev/dl/?mode=json&include=all",
        "http://localhost:8080/dl/",
        "http://127.0.0.1/dl/",
    ])
    def test_valid_urls(self, url):
        assert InputValidator.validate_url(url)

    @pytest.mark.parametrize("url", ["", "ftp://go.dev/dl/", "go.dev/dl"])
    def test_invalid_urls(self, url):
        with pytest.raises(InputValidationError):
            InputValidator.validate_url(url)

    def test_safe_join_path(self, tmp_path):
        assert InputValidator.safe_join_path(str(tmp_path), "go", "bin") == str(tmp_path / "go" / "bin")
        with pytest.raises(InputValidationError):
            InputValidator.safe_join_path(str(tmp_path), "..", "etc")


class TestAtomicWrite:
    """Temp-file-then-replace writes"""

    def test_write_text_creates_parents(self, tmp_path):
        target = tmp_path / "a" / "b" / "file.txt"

        atomic_write_text(target, "hello")

        assert target.read_text() == "hello"
        assert [p.name for p in target.parent.iterdir()] == ["file.txt"]

    def test_save_json_overwrites(self, tmp_path):
        target = tmp_path / "data.json"
        atomic_save_json(target, {"v": 1})
        atomic_save_json(target, {"v": 2, "名称": "值"})

        assert json.loads(target.read_text(encoding="utf-8")) == {"v": 2, "名称": "值"}
