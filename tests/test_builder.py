import fcntl
import subprocess

import pytest

from fethkit import xnu
from fethkit.builder import Backend, FethBuilder, FethHandle
from fethkit.common import (
    IfconfigError,
    InvalidNameError,
    InvalidPrefixLenError,
    IoctlError,
    MacAddr,
)
from fethkit.feth import Feth
from fethkit.ifconfig import IfconfigFeth


class FakeRun:
    def __init__(self, stdout=b"", fail_on=None):
        self.calls = []
        self.stdout = stdout
        self.fail_on = fail_on

    def __call__(self, argv, **kwargs):
        args = list(argv[1:])
        self.calls.append(args)
        if self.fail_on is not None and self.fail_on in args:
            return subprocess.CompletedProcess(argv, 1, b"", b"failed")
        return subprocess.CompletedProcess(argv, 0, self.stdout, b"")


class FakeIoctl:
    def __init__(self, fail_on=()):
        self.requests = []
        self.fail_on = set(fail_on)

    def __call__(self, fd, request, buf, mutate=True):
        self.requests.append(request)
        if request in self.fail_on:
            raise OSError(1, "Operation not permitted")
        return 0


@pytest.fixture
def fake_run(monkeypatch):
    runner = FakeRun()
    monkeypatch.setattr(subprocess, "run", runner)
    return runner


def test_ifconfig_full_build(fake_run):
    mac = MacAddr.parse("02:00:00:00:00:01")
    handle = (
        FethBuilder()
        .backend(Backend.IFCONFIG)
        .unit(100)
        .peer("feth101")
        .addr("10.0.0.1", 24)
        .mtu(1400)
        .mac(mac)
        .up()
        .ipv6(True, False)
        .build()
    )
    assert handle.name == "feth100"
    assert handle.backend is Backend.IFCONFIG
    assert fake_run.calls == [
        ["feth100", "create"],
        ["feth100", "peer", "feth101"],
        ["feth100", "lladdr", "02:00:00:00:00:01"],
        ["feth100", "inet", "10.0.0.1", "netmask", "0xffffff00", "broadcast", "10.0.0.255"],
        ["feth100", "mtu", "1400"],
        ["feth100", "up"],
        ["feth100", "inet6", "performnud"],
        ["feth100", "inet6", "-autoconf"],
    ]


def test_ifconfig_auto_unit(fake_run):
    fake_run.stdout = b"feth7\n"
    handle = FethBuilder().backend(Backend.IFCONFIG).build()
    assert handle.name == "feth7"
    assert fake_run.calls == [["feth", "create"]]


def test_ifconfig_failure_destroys_created(monkeypatch):
    runner = FakeRun(fail_on="mtu")
    monkeypatch.setattr(subprocess, "run", runner)
    with pytest.raises(IfconfigError):
        FethBuilder().backend(Backend.IFCONFIG).unit(100).mtu(1400).build()
    assert runner.calls[-1] == ["feth100", "destroy"]


def test_validation_failure_destroys_created(fake_run):
    with pytest.raises(InvalidPrefixLenError):
        FethBuilder().backend(Backend.IFCONFIG).unit(100).addr("10.0.0.1", 40).build()
    assert fake_run.calls == [["feth100", "create"], ["feth100", "destroy"]]


def test_existing_failure_is_not_destroyed(monkeypatch):
    runner = FakeRun(fail_on="up")
    monkeypatch.setattr(subprocess, "run", runner)
    with pytest.raises(IfconfigError):
        FethBuilder().backend(Backend.IFCONFIG).existing("feth9").up().build()
    assert runner.calls == [["feth9", "up"]]


def test_unit_and_existing_replace_each_other(fake_run):
    handle = FethBuilder().backend(Backend.IFCONFIG).existing("feth9").unit(100).build()
    assert handle.name == "feth100"
    handle = FethBuilder().backend(Backend.IFCONFIG).unit(100).existing("feth9").build()
    assert handle.name == "feth9"
    assert fake_run.calls == [["feth100", "create"]]


def test_handle_delegates(fake_run):
    handle = FethHandle(IfconfigFeth("feth0"))
    assert handle.name == "feth0"
    results = [handle.down(), handle.remove_peer(), handle.destroy()]
    assert results == [None, None, None]
    assert fake_run.calls == [["feth0", "down"], ["feth0", "-peer"], ["feth0", "destroy"]]


def test_handle_status(fake_run):
    fake_run.stdout = b"flags=8863<UP> mtu 1500\n"
    status = FethHandle(IfconfigFeth("feth0")).status()
    assert status.name == "feth0"
    assert status.mtu == 1500
    assert status.is_up()


def test_ioctl_existing_invalid_name():
    with pytest.raises(InvalidNameError):
        FethBuilder().existing("").build()


def test_ioctl_default_backend_creates(monkeypatch):
    fake = FakeIoctl()
    monkeypatch.setattr(fcntl, "ioctl", fake)
    handle = FethBuilder().unit(100).build()
    assert handle.backend is Backend.IOCTL
    assert handle.interface == Feth("feth100")
    assert fake.requests == [xnu.SIOCIFCREATE2]


def test_ioctl_failure_destroys_created(monkeypatch):
    fake = FakeIoctl(fail_on=[xnu.SIOCSIFMTU])
    monkeypatch.setattr(fcntl, "ioctl", fake)
    with pytest.raises(IoctlError) as info:
        FethBuilder().unit(100).mtu(1400).build()
    assert info.value.operation == "SIOCSIFMTU"
    assert fake.requests == [xnu.SIOCIFCREATE2, xnu.SIOCSIFMTU, xnu.SIOCIFDESTROY]


def test_ioctl_existing_failure_not_destroyed(monkeypatch):
    fake = FakeIoctl(fail_on=[xnu.SIOCSIFMTU])
    monkeypatch.setattr(fcntl, "ioctl", fake)
    with pytest.raises(IoctlError):
        FethBuilder().existing("feth9").mtu(1400).build()
    assert fake.requests == [xnu.SIOCSIFMTU]