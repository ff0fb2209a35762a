"""Management of feth (fake ethernet) interfaces through direct ioctl requests."""

from __future__ import annotations

import struct
from array import array
from dataclasses import dataclass
from ipaddress import IPv4Address

from . import xnu
from .common import (
    IFF_UP,
    IFNAMSIZ,
    FethStatus,
    InvalidNameError,
    IoctlError,
    MacAddr,
    broadcast_addr,
    parse_addr,
    prefix_to_mask,
    validate_name,
    validate_prefix_len,
)

_IFDRV = struct.Struct("=16sQQQ")
_SHORT = struct.Struct("=h")
_U32 = struct.Struct("=I")


def _fake_request(peer_name: str = "") -> array:
    """Return a zeroed if_fake_request buffer, optionally holding a peer name."""
    buf = array("B", bytes(xnu.IF_FAKE_REQUEST_SIZE))
    if peer_name:
        # iffr_peer_name follows 32 reserved bytes.
        buf[32 : 32 + IFNAMSIZ] = array("B", xnu.copy_name(peer_name))
    return buf


def _make_ifdrv(name: str, cmd: int, data: array) -> bytearray:
    address = data.buffer_info()[0]
    return bytearray(
        _IFDRV.pack(xnu.copy_name(name), cmd, xnu.IF_FAKE_REQUEST_SIZE, address)
    )


def _peer_from_request(data: array) -> str | None:
    name = xnu.read_name(data[32 : 32 + IFNAMSIZ].tobytes())
    return name or None


@dataclass(frozen=True)
class Feth:
    """A handle to a feth interface, managed through ioctl requests."""

    name: str

    @classmethod
    def _create_named(cls, name: str) -> Feth:
        with xnu.inet_socket() as sock:
            ifr = xnu.make_ifreq(name)
            xnu.ioctl(sock, xnu.SIOCIFCREATE2, ifr, "SIOCIFCREATE2")
            return cls(xnu.read_name(ifr))

    @classmethod
    def create(cls, unit: int) -> Feth:
        """Create ``feth<unit>``."""
        name = f"feth{unit}"
        validate_name(name)
        return cls._create_named(name)

    @classmethod
    def create_auto(cls) -> Feth:
        """Create a feth interface whose unit number the kernel picks."""
        feth = cls._create_named("feth")
        if not feth.name:
            raise InvalidNameError("empty name returned by kernel")
        return feth

    @classmethod
    def create_with_peer(cls, unit: int, peer_name: str) -> Feth:
        """Create ``feth<unit>`` and peer it with peer_name."""
        feth = cls.create(unit)
        feth.set_peer(peer_name)
        return feth

    @classmethod
    def from_existing(cls, name: str) -> Feth:
        """Wrap an existing interface by name without touching the kernel."""
        validate_name(name)
        return cls(name)

    def destroy(self) -> None:
        """Destroy this interface."""
        with xnu.inet_socket() as sock:
            xnu.ioctl(sock, xnu.SIOCIFDESTROY, xnu.make_ifreq(self.name), "SIOCIFDESTROY")

    def _set_peer_raw(self, peer_name: str, operation: str) -> None:
        with xnu.inet_socket() as sock:
            data = _fake_request(peer_name)
            ifd = _make_ifdrv(self.name, xnu.IF_FAKE_S_CMD_SET_PEER, data)
            xnu.ioctl(sock, xnu.SIOCSDRVSPEC, ifd, operation)

    def set_peer(self, peer_name: str) -> None:
        """Link this interface with peer_name."""
        validate_name(peer_name)
        self._set_peer_raw(peer_name, "SIOCSDRVSPEC set peer")

    def remove_peer(self) -> None:
        """Clear the peer association; an empty peer name means none."""
        self._set_peer_raw("", "SIOCSDRVSPEC remove peer")

    def _query_peer(self, sock) -> str | None:
        data = _fake_request()
        ifd = _make_ifdrv(self.name, xnu.IF_FAKE_G_CMD_GET_PEER, data)
        xnu.ioctl(sock, xnu.SIOCGDRVSPEC, ifd, "SIOCGDRVSPEC get peer")
        return _peer_from_request(data)

    def get_peer(self) -> str | None:
        """Return the name of the peer, or None if there is none."""
        with xnu.inet_socket() as sock:
            return self._query_peer(sock)

    def set_inet(self, addr: str, prefix_len: int) -> None:
        """Assign an IPv4 address with its netmask and broadcast address."""
        validate_prefix_len(prefix_len)
        ip = parse_addr(addr)
        mask = prefix_to_mask(prefix_len)
        bcast = broadcast_addr(ip, mask)
        req = bytearray(
            xnu.copy_name(self.name)
            + xnu.make_sockaddr_in(ip)
            + xnu.make_sockaddr_in(bcast)
            + xnu.make_sockaddr_in(mask)
        )
        with xnu.inet_socket() as sock:
            xnu.ioctl(sock, xnu.SIOCAIFADDR, req, "SIOCAIFADDR")

    def remove_inet(self) -> None:
        """Remove the IPv4 address."""
        with xnu.inet_socket() as sock:
            xnu.ioctl(sock, xnu.SIOCDIFADDR, xnu.make_ifreq(self.name), "SIOCDIFADDR")

    def set_mtu(self, mtu: int) -> None:
        """Set the MTU."""
        ifr = xnu.ifreq_with_int(self.name, mtu)
        with xnu.inet_socket() as sock:
            xnu.ioctl(sock, xnu.SIOCSIFMTU, ifr, "SIOCSIFMTU")

    def _update_flags(self, set_up: bool) -> None:
        with xnu.inet_socket() as sock:
            ifr = xnu.make_ifreq(self.name)
            xnu.ioctl(sock, xnu.SIOCGIFFLAGS, ifr, "SIOCGIFFLAGS")
            flags = xnu.ifreq_short(ifr)
            flags = flags | IFF_UP if set_up else flags & ~IFF_UP
            _SHORT.pack_into(ifr, xnu.IFRU_OFFSET, flags)
            xnu.ioctl(sock, xnu.SIOCSIFFLAGS, ifr, "SIOCSIFFLAGS")

    def up(self) -> None:
        """Bring the interface up."""
        self._update_flags(True)

    def down(self) -> None:
        """Bring the interface down."""
        self._update_flags(False)

    def set_mac(self, mac: MacAddr) -> None:
        """Set the link-layer address."""
        ifr = xnu.make_ifreq(self.name)
        sockaddr = bytes([6, xnu.AF_LINK]) + bytes(mac)
        ifr[xnu.IFRU_OFFSET : xnu.IFRU_OFFSET + len(sockaddr)] = sockaddr
        with xnu.inet_socket() as sock:
            xnu.ioctl(sock, xnu.SIOCSIFLLADDR, ifr, "SIOCSIFLLADDR")

    def configure_ipv6(self, perform_nud: bool, accept_router_adverts: bool) -> None:
        """Toggle neighbour unreachability detection and router advertisement acceptance."""
        with xnu.inet6_socket() as sock:
            nd = bytearray(xnu.IN6_NDIREQ_SIZE)
            nd[:IFNAMSIZ] = xnu.copy_name(self.name)
            xnu.ioctl(sock, xnu.SIOCGIFINFO_IN6, nd, "SIOCGIFINFO_IN6")

            old_flags = _U32.unpack_from(nd, xnu.NDI_FLAGS_OFFSET)[0]
            if perform_nud:
                new_flags = old_flags | xnu.ND6_IFF_PERFORMNUD
            else:
                new_flags = old_flags & ~xnu.ND6_IFF_PERFORMNUD & 0xFFFFFFFF
            if new_flags != old_flags:
                _U32.pack_into(nd, xnu.NDI_FLAGS_OFFSET, new_flags)
                xnu.ioctl(sock, xnu.SIOCSIFINFO_FLAGS, nd, "SIOCSIFINFO_FLAGS")

            ifr6 = bytearray(xnu.IN6_IFREQ_SIZE)
            ifr6[:IFNAMSIZ] = xnu.copy_name(self.name)
            if accept_router_adverts:
                xnu.ioctl(sock, xnu.SIOCAUTOCONF_START, ifr6, "SIOCAUTOCONF_START")
            else:
                xnu.ioctl(sock, xnu.SIOCAUTOCONF_STOP, ifr6, "SIOCAUTOCONF_STOP")

    def configure(self, peer_name: str, addr: str, prefix_len: int) -> None:
        """Set the peer, assign the address and bring the interface up."""
        self.set_peer(peer_name)
        self.set_inet(addr, prefix_len)
        self.up()

    def status(self) -> FethStatus:
        """Query flags, MTU, peer and IPv4 configuration."""
        with xnu.inet_socket() as sock:
            ifr = xnu.make_ifreq(self.name)
            xnu.ioctl(sock, xnu.SIOCGIFFLAGS, ifr, "SIOCGIFFLAGS")
            flags = xnu.ifreq_short(ifr) & 0xFFFF

            ifr = xnu.make_ifreq(self.name)
            xnu.ioctl(sock, xnu.SIOCGIFMTU, ifr, "SIOCGIFMTU")
            mtu = xnu.ifreq_int(ifr) & 0xFFFFFFFF

            try:
                peer = self._query_peer(sock)
            except IoctlError:
                peer = None

            inet = _optional_addr(sock, self.name, xnu.SIOCGIFADDR, "SIOCGIFADDR")
            netmask = _optional_addr(sock, self.name, xnu.SIOCGIFNETMASK, "SIOCGIFNETMASK")

        return FethStatus(self.name, flags, mtu, peer, inet, netmask)


def _optional_addr(sock, name: str, request: int, operation: str) -> IPv4Address | None:
    ifr = xnu.make_ifreq(name)
    try:
        xnu.ioctl(sock, request, ifr, operation)
    except IoctlError:
        return None
    return xnu.ifreq_get_addr(ifr)


@dataclass(frozen=True)
class FethPairSide:
    """Configuration for one side of a feth pair."""

    addr: str | None = None
    prefix_len: int | None = None
    mtu: int | None = None
    up: bool | None = None
    mac: MacAddr | None = None


def create_pair(
    unit_a: int,
    side_a: FethPairSide | None = None,
    unit_b: int = 1,
    side_b: FethPairSide | None = None,
) -> tuple[Feth, Feth]:
    """Create two peered feth interfaces, destroying both if any step fails."""
    side_a = side_a or FethPairSide()
    side_b = side_b or FethPairSide()

    a = Feth.create(unit_a)
    try:
        b = Feth.create(unit_b)
    except Exception:
        _quiet_destroy(a)
        raise

    try:
        # The kernel links both directions when one side sets its peer.
        a.set_peer(b.name)
        for feth, side in ((a, side_a), (b, side_b)):
            feth.set_mac(side.mac if side.mac is not None else MacAddr.random())
            if side.addr is not None:
                prefix_len = side.prefix_len if side.prefix_len is not None else 24
                feth.set_inet(side.addr, prefix_len)
            if side.mtu is not None:
                feth.set_mtu(side.mtu)
            if side.up is True:
                feth.up()
            elif side.up is False:
                feth.down()
    except Exception:
        _quiet_destroy(b)
        _quiet_destroy(a)
        raise

    return a, b


def _quiet_destroy(feth: Feth) -> None:
    try:
        feth.destroy()
    except Exception:
        pass