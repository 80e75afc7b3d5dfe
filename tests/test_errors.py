"""Tests for the error taxonomy and RateCache."""

import pytest

from proctelemetry.errors import (
    AccessDenied,
    ErrorKind,
    InvalidArgument,
    NoSuchProcess,
    OsQueryError,
    TelemetryError,
    ZombieProcess,
    classify,
)
from proctelemetry.ratecache import RateCache


class TestErrors:
    """Tests for the exception classes."""

    def test_kinds(self):
        """Test every error carries its kind."""
        assert NoSuchProcess(1).kind is ErrorKind.NO_SUCH_PROCESS
        assert AccessDenied(1).kind is ErrorKind.ACCESS_DENIED
        assert InvalidArgument("x").kind is ErrorKind.INVALID_ARGUMENT
        assert OsQueryError("x").kind is ErrorKind.OS_QUERY

    def test_builtin_bases(self):
        """Test errors can also be caught as the matching builtin."""
        assert isinstance(InvalidArgument("x"), ValueError)
        assert isinstance(OsQueryError("x"), OSError)
        assert isinstance(NoSuchProcess(1), TelemetryError)

    def test_messages_name_the_process(self):
        """Test default messages include pid and name."""
        assert str(NoSuchProcess(42, "sleep")) == "process no longer exists (pid=42, name='sleep')"
        assert str(AccessDenied(42)) == "access denied (pid=42)"
        assert str(AccessDenied()) == "access denied"

    def test_custom_message(self):
        """Test an explicit message replaces the default one."""
        exc = NoSuchProcess(7, msg="no process found with pid 7")
        assert str(exc) == "no process found with pid 7"
        assert exc.pid == 7

    def test_zombie_is_a_missing_process(self):
        """Test a zombie is caught wherever a vanished process is."""
        exc = ZombieProcess(9)
        assert isinstance(exc, NoSuchProcess)
        assert exc.kind is ErrorKind.NO_SUCH_PROCESS
        assert str(exc) == "process is a zombie (pid=9)"

    @pytest.mark.parametrize(
        "exc, kind",
        [
            (NoSuchProcess(1), ErrorKind.NO_SUCH_PROCESS),
            (AccessDenied(), ErrorKind.ACCESS_DENIED),
            (NotImplementedError(), ErrorKind.NOT_IMPLEMENTED),
            (KeyError("x"), None),
        ],
    )
    def test_classify(self, exc, kind):
        """Test classify maps exceptions to kinds."""
        assert classify(exc) is kind


class TestRateCache:
    """Tests for RateCache."""

    def test_exchange_returns_previous(self):
        """Test exchange stores the new sample and hands back the old one."""
        cache = RateCache()
        assert cache.exchange("cpu", 1) is None
        assert cache.exchange("cpu", 2) == 1
        assert cache.get("cpu") == 2

    def test_exchange_default(self):
        """Test the default is returned for a key seen for the first time."""
        cache = RateCache()
        assert cache.exchange("cpu", 1, default=0) == 0

    def test_keys_are_independent(self):
        """Test entries for different keys never mix."""
        cache = RateCache()
        cache.put(("cpu_percent", "cpu"), 1)
        cache.put(("cpu_times_percent", "cpu"), 2)
        assert len(cache) == 2
        assert ("cpu_percent", "cpu") in cache
        assert cache.get(("cpu_percent", "cpu")) == 1
        assert sorted(cache.keys()) == [("cpu_percent", "cpu"), ("cpu_times_percent", "cpu")]
