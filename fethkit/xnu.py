"""Kernel structure layouts, ioctl request codes and low-level helpers."""

from __future__ import annotations

import fcntl
import socket
import struct
import subprocess
from ipaddress import IPv4Address

from .common import IFF_UP, IFNAMSIZ, IoctlError, SocketError

__all__ = ["IFF_UP", "IFNAMSIZ"]

AF_INET = 2
AF_LINK = 18

IF_FAKE_S_CMD_SET_PEER = 1
IF_FAKE_G_CMD_GET_PEER = 1
ND6_IFF_PERFORMNUD = 0x1

IFREQ_SIZE = 32
IFDRV_SIZE = 40
IF_FAKE_REQUEST_SIZE = 160
SOCKADDR_IN_SIZE = 16
IN_ALIASREQ_SIZE = 64
ND_IFINFO_SIZE = 56
IN6_NDIREQ_SIZE = 72
IN6_IFREQ_SIZE = 288

# Offset of the request union inside struct ifreq.
IFRU_OFFSET = IFNAMSIZ
# Offset of the flags field inside struct in6_ndireq.
NDI_FLAGS_OFFSET = IFNAMSIZ + 20

_IOCPARM_MASK = 0x1FFF
_IOC_OUT = 0x40000000
_IOC_IN = 0x80000000
_IOC_INOUT = _IOC_IN | _IOC_OUT


def _ioc(direction: int, group: str | int, number: int, size: int) -> int:
    group_code = ord(group) if isinstance(group, str) else group
    return direction | ((size & _IOCPARM_MASK) << 16) | (group_code << 8) | number


def iow(group: str | int, number: int, size: int) -> int:
    """Encode a write-only ioctl request code."""
    return _ioc(_IOC_IN, group, number, size)


def iowr(group: str | int, number: int, size: int) -> int:
    """Encode a read-write ioctl request code."""
    return _ioc(_IOC_INOUT, group, number, size)


SIOCIFCREATE2 = iowr("i", 122, IFREQ_SIZE)
SIOCIFDESTROY = iow("i", 121, IFREQ_SIZE)
SIOCSDRVSPEC = iow("i", 123, IFDRV_SIZE)
SIOCGDRVSPEC = iowr("i", 123, IFDRV_SIZE)
SIOCSIFFLAGS = iow("i", 16, IFREQ_SIZE)
SIOCGIFFLAGS = iowr("i", 17, IFREQ_SIZE)
SIOCSIFMTU = iow("i", 52, IFREQ_SIZE)
SIOCGIFMTU = iowr("i", 51, IFREQ_SIZE)
SIOCDIFADDR = iow("i", 25, IFREQ_SIZE)
SIOCAIFADDR = iow("i", 26, IN_ALIASREQ_SIZE)
SIOCGIFADDR = iowr("i", 33, IFREQ_SIZE)
SIOCGIFNETMASK = iowr("i", 37, IFREQ_SIZE)
SIOCSIFLLADDR = iow("i", 60, IFREQ_SIZE)
# Encodes the 48-byte in6_ondireq; a 72-byte in6_ndireq buffer is passed.
SIOCGIFINFO_IN6 = iowr("i", 76, 48)
SIOCSIFINFO_FLAGS = iowr("i", 87, IN6_NDIREQ_SIZE)
SIOCAUTOCONF_START = iowr("i", 132, IN6_IFREQ_SIZE)
SIOCAUTOCONF_STOP = iowr("i", 133, IN6_IFREQ_SIZE)


def copy_name(name: str) -> bytes:
    """Return a NUL-terminated IFNAMSIZ-byte name buffer, truncating if needed."""
    raw = name.encode()[: IFNAMSIZ - 1]
    return raw.ljust(IFNAMSIZ, b"\0")


def read_name(buf: bytes | bytearray) -> str:
    """Read a NUL-terminated interface name from a buffer."""
    raw = bytes(buf[:IFNAMSIZ]).split(b"\0", 1)[0]
    return raw.decode(errors="replace")


def make_ifreq(name: str) -> bytearray:
    """Return a zeroed struct ifreq carrying the interface name."""
    ifr = bytearray(IFREQ_SIZE)
    ifr[:IFNAMSIZ] = copy_name(name)
    return ifr


def ifreq_with_int(name: str, value: int) -> bytearray:
    """Return a struct ifreq whose union holds the given C int."""
    ifr = make_ifreq(name)
    struct.pack_into("=i", ifr, IFRU_OFFSET, value)
    return ifr


def ifreq_short(ifr: bytes | bytearray) -> int:
    """Read the union of a struct ifreq as a C short (interface flags)."""
    return struct.unpack_from("=h", ifr, IFRU_OFFSET)[0]


def ifreq_int(ifr: bytes | bytearray) -> int:
    """Read the union of a struct ifreq as a C int (for example the MTU)."""
    return struct.unpack_from("=i", ifr, IFRU_OFFSET)[0]


def make_sockaddr_in(addr: IPv4Address) -> bytes:
    """Return a BSD struct sockaddr_in for the address with port 0."""
    return struct.pack(
        "=BBH4s8x", SOCKADDR_IN_SIZE, AF_INET, 0, IPv4Address(addr).packed
    )


def ifreq_get_addr(ifr: bytes | bytearray) -> IPv4Address | None:
    """Return the IPv4 address held in a struct ifreq, or None if not AF_INET."""
    family = ifr[IFRU_OFFSET + 1]
    if family != AF_INET:
        return None
    return IPv4Address(bytes(ifr[IFRU_OFFSET + 4 : IFRU_OFFSET + 8]))


def inet_socket() -> socket.socket:
    """Open a datagram IPv4 socket for interface ioctls."""
    try:
        return socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError as exc:
        raise SocketError(exc) from exc


def inet6_socket() -> socket.socket:
    """Open a datagram IPv6 socket for interface ioctls."""
    try:
        return socket.socket(socket.AF_INET6, socket.SOCK_DGRAM)
    except OSError as exc:
        raise SocketError(exc) from exc


def ioctl(sock, request: int, buf: bytearray, operation: str) -> bytearray:
    """Issue an ioctl, updating buf in place, and raise IoctlError on failure."""
    try:
        fcntl.ioctl(sock.fileno(), request, buf, True)
    except OSError as exc:
        raise IoctlError(operation, exc) from exc
    return buf


def set_fake_max_mtu(mtu: int) -> None:
    """Set net.link.fake.max_mtu so that feth interfaces accept jumbo frames."""
    result = subprocess.run(
        ["/usr/sbin/sysctl", "-w", f"net.link.fake.max_mtu={int(mtu)}"],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise OSError(result.stderr.strip() or f"sysctl exited with {result.returncode}")