"""Builder API for creating and configuring feth interfaces with either backend."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .common import FethStatus, MacAddr
from .feth import Feth
from .ifconfig import IfconfigFeth


class Backend(Enum):
    """How a feth interface is managed."""

    IOCTL = "ioctl"
    IFCONFIG = "ifconfig"


@dataclass(frozen=True)
class FethHandle:
    """A feth interface managed by either backend."""

    interface: Feth | IfconfigFeth

    @property
    def backend(self) -> Backend:
        return Backend.IOCTL if isinstance(self.interface, Feth) else Backend.IFCONFIG

    @property
    def name(self) -> str:
        return self.interface.name

    def destroy(self) -> None:
        self.interface.destroy()

    def status(self) -> FethStatus:
        return self.interface.status()

    def set_peer(self, peer_name: str) -> None:
        self.interface.set_peer(peer_name)

    def remove_peer(self) -> None:
        self.interface.remove_peer()

    def set_inet(self, addr: str, prefix_len: int) -> None:
        self.interface.set_inet(addr, prefix_len)

    def remove_inet(self) -> None:
        self.interface.remove_inet()

    def set_mtu(self, mtu: int) -> None:
        self.interface.set_mtu(mtu)

    def up(self) -> None:
        self.interface.up()

    def down(self) -> None:
        self.interface.down()

    def set_mac(self, mac: MacAddr) -> None:
        self.interface.set_mac(mac)

    def configure_ipv6(self, perform_nud: bool, accept_router_adverts: bool) -> None:
        self.interface.configure_ipv6(perform_nud, accept_router_adverts)


class FethBuilder:
    """Collects interface settings and applies them in build()."""

    def __init__(self) -> None:
        self._backend = Backend.IOCTL
        self._unit: int | None = None
        self._existing: str | None = None
        self._peer: str | None = None
        self._addr: tuple[str, int] | None = None
        self._mtu: int | None = None
        self._mac: MacAddr | None = None
        self._bring_up = False
        self._ipv6: tuple[bool, bool] | None = None

    def backend(self, backend: Backend) -> FethBuilder:
        self._backend = backend
        return self

    def unit(self, unit: int) -> FethBuilder:
        """Create ``feth<unit>``; without it the kernel picks the unit."""
        self._unit = unit
        self._existing = None
        return self

    def existing(self, name: str) -> FethBuilder:
        """Configure an existing interface instead of creating one."""
        self._existing = name
        self._unit = None
        return self

    def peer(self, peer_name: str) -> FethBuilder:
        self._peer = peer_name
        return self

    def addr(self, addr: str, prefix_len: int) -> FethBuilder:
        self._addr = (addr, prefix_len)
        return self

    def mtu(self, mtu: int) -> FethBuilder:
        self._mtu = mtu
        return self

    def mac(self, mac: MacAddr) -> FethBuilder:
        self._mac = mac
        return self

    def up(self) -> FethBuilder:
        self._bring_up = True
        return self

    def ipv6(self, perform_nud: bool, accept_router_adverts: bool) -> FethBuilder:
        self._ipv6 = (perform_nud, accept_router_adverts)
        return self

    def build(self) -> FethHandle:
        """Create or wrap the interface and apply the settings.

        If a newly created interface fails to configure, it is destroyed
        before the error propagates.
        """
        kind = Feth if self._backend is Backend.IOCTL else IfconfigFeth
        created = self._existing is None
        if self._existing is not None:
            feth = kind.from_existing(self._existing)
        elif self._unit is not None:
            feth = kind.create(self._unit)
        else:
            feth = kind.create_auto()

        try:
            if self._peer is not None:
                feth.set_peer(self._peer)
            if self._mac is not None:
                feth.set_mac(self._mac)
            if self._addr is not None:
                feth.set_inet(*self._addr)
            if self._mtu is not None:
                feth.set_mtu(self._mtu)
            if self._bring_up:
                feth.up()
            if self._ipv6 is not None:
                feth.configure_ipv6(*self._ipv6)
        except Exception:
            if created:
                try:
                    feth.destroy()
                except Exception:
                    pass
            raise

        return FethHandle(feth)