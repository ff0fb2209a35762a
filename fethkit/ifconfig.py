"""Management of feth interfaces by running /sbin/ifconfig."""

from __future__ import annotations

import re
import subprocess
from dataclasses import dataclass
from ipaddress import AddressValueError, IPv4Address

from .common import (
    FethStatus,
    IfconfigError,
    InvalidNameError,
    MacAddr,
    broadcast_addr,
    parse_addr,
    prefix_to_mask,
    validate_name,
    validate_prefix_len,
)

IFCONFIG = "/sbin/ifconfig"

_HEX = re.compile(r"[0-9a-fA-F]+")
_DIGITS = re.compile(r"\d*")


def run_ifconfig(args: list[str]) -> str:
    """Run ifconfig with args and return its standard output."""
    args = list(args)
    try:
        result = subprocess.run([IFCONFIG, *args], capture_output=True)
    except OSError as exc:
        raise IfconfigError(args, exc) from exc
    if result.returncode != 0:
        stderr = (result.stderr or b"").decode(errors="replace").strip()
        raise IfconfigError(args, stderr)
    return (result.stdout or b"").decode(errors="replace")


@dataclass(frozen=True)
class IfconfigFeth:
    """A handle to a feth interface, managed by running ifconfig."""

    name: str

    @classmethod
    def create(cls, unit: int) -> IfconfigFeth:
        """Create ``feth<unit>``."""
        name = f"feth{unit}"
        validate_name(name)
        actual = run_ifconfig([name, "create"]).strip()
        return cls(actual or name)

    @classmethod
    def create_auto(cls) -> IfconfigFeth:
        """Create a feth interface whose unit number the kernel picks."""
        actual = run_ifconfig(["feth", "create"]).strip()
        if not actual:
            raise InvalidNameError("empty name returned by ifconfig")
        return cls(actual)

    @classmethod
    def from_existing(cls, name: str) -> IfconfigFeth:
        """Wrap an existing interface by name without running anything."""
        validate_name(name)
        return cls(name)

    def destroy(self) -> None:
        """Destroy this interface."""
        run_ifconfig([self.name, "destroy"])

    def set_peer(self, peer_name: str) -> None:
        """Link this interface with peer_name."""
        validate_name(peer_name)
        run_ifconfig([self.name, "peer", peer_name])

    def remove_peer(self) -> None:
        """Clear the peer association."""
        run_ifconfig([self.name, "-peer"])

    def set_inet(self, addr: str, prefix_len: int) -> None:
        """Assign an IPv4 address with its netmask and broadcast address."""
        validate_prefix_len(prefix_len)
        ip = parse_addr(addr)
        mask = prefix_to_mask(prefix_len)
        broadcast = broadcast_addr(ip, mask)
        run_ifconfig(
            [
                self.name,
                "inet",
                addr,
                "netmask",
                f"0x{int(mask):08x}",
                "broadcast",
                str(broadcast),
            ]
        )

    def remove_inet(self) -> None:
        """Remove the IPv4 address."""
        run_ifconfig([self.name, "inet", "delete"])

    def set_mtu(self, mtu: int) -> None:
        """Set the MTU."""
        run_ifconfig([self.name, "mtu", str(mtu)])

    def up(self) -> None:
        """Bring the interface up."""
        run_ifconfig([self.name, "up"])

    def down(self) -> None:
        """Bring the interface down."""
        run_ifconfig([self.name, "down"])

    def set_mac(self, mac: MacAddr) -> None:
        """Set the link-layer address."""
        run_ifconfig([self.name, "lladdr", str(mac)])

    def configure_ipv6(self, perform_nud: bool, accept_router_adverts: bool) -> None:
        """Toggle neighbour unreachability detection and router advertisement acceptance."""
        nud_flag = "performnud" if perform_nud else "-performnud"
        run_ifconfig([self.name, "inet6", nud_flag])
        autoconf_flag = "autoconf" if accept_router_adverts else "-autoconf"
        run_ifconfig([self.name, "inet6", autoconf_flag])

    def status(self) -> FethStatus:
        """Query the interface by parsing the output of ifconfig."""
        return parse_ifconfig_status(self.name, run_ifconfig([self.name]))


def _parse_ipv4(text: str) -> IPv4Address | None:
    try:
        return IPv4Address(text)
    except AddressValueError:
        return None


def parse_hex_mask(text: str) -> IPv4Address | None:
    """Parse a hexadecimal netmask such as ``0xffffff00``."""
    if text.startswith(("0x", "0X")):
        digits = text[2:]
    else:
        return None
    if not _HEX.fullmatch(digits):
        return None
    value = int(digits, 16)
    if value > 0xFFFFFFFF:
        return None
    return IPv4Address(value)


def parse_ifconfig_status(name: str, output: str) -> FethStatus:
    """Build a FethStatus from the text that ifconfig prints for one interface."""
    flags = 0
    mtu = 0
    peer: str | None = None
    inet: IPv4Address | None = None
    netmask: IPv4Address | None = None

    for line in output.splitlines():
        trimmed = line.strip()

        if trimmed.startswith("flags="):
            rest = trimmed[len("flags="):]
            end = rest.find("<")
            if end >= 0 and _HEX.fullmatch(rest[:end]):
                value = int(rest[:end], 16)
                if value <= 0xFFFF:
                    flags = value
            mtu_pos = trimmed.find("mtu ")
            if mtu_pos >= 0:
                digits = _DIGITS.match(trimmed[mtu_pos + 4:]).group()
                if digits and int(digits) <= 0xFFFFFFFF:
                    mtu = int(digits)

        if trimmed.startswith("peer: "):
            peer = trimmed[len("peer: "):].strip()

        if trimmed.startswith("inet "):
            parts = trimmed[len("inet "):].split()
            if parts:
                inet = _parse_ipv4(parts[0])
            if "netmask" in parts:
                index = parts.index("netmask")
                if index + 1 < len(parts):
                    mask_text = parts[index + 1]
                    netmask = parse_hex_mask(mask_text) or _parse_ipv4(mask_text)

    return FethStatus(name, flags, mtu, peer, inet, netmask)