"""Shared types, errors and address helpers for feth interface management."""

from __future__ import annotations

import ipaddress
import os
import re
from dataclasses import dataclass
from ipaddress import IPv4Address

IFNAMSIZ = 16
IFF_UP = 0x1

_HEX_OCTET = re.compile(r"[0-9a-fA-F]+")


@dataclass(frozen=True)
class MacAddr:
    """A 6-byte IEEE 802 MAC address."""

    octets: bytes

    def __post_init__(self) -> None:
        octets = bytes(self.octets)
        if len(octets) != 6:
            raise ValueError(f"a MAC address has 6 octets, got {len(octets)}")
        object.__setattr__(self, "octets", octets)

    @classmethod
    def random(cls) -> MacAddr:
        """Return a random locally administered unicast address."""
        raw = bytearray(os.urandom(6))
        raw[0] = (raw[0] | 0x02) & 0xFE
        return cls(bytes(raw))

    @classmethod
    def parse(cls, text: str) -> MacAddr:
        """Parse colon-separated hexadecimal notation such as ``02:00:00:00:00:01``."""
        parts = text.split(":")
        if len(parts) != 6:
            raise ValueError(f"invalid MAC address: {text}")
        values = []
        for part in parts:
            if not _HEX_OCTET.fullmatch(part):
                raise ValueError(f"invalid MAC address: {text}")
            value = int(part, 16)
            if value > 0xFF:
                raise ValueError(f"invalid MAC address: {text}")
            values.append(value)
        return cls(bytes(values))

    def __bytes__(self) -> bytes:
        return self.octets

    def __str__(self) -> str:
        return ":".join(f"{b:02x}" for b in self.octets)

    def __repr__(self) -> str:
        return f"MacAddr({self})"


class FethError(Exception):
    """Base class for every error raised while managing feth interfaces."""


class IoctlError(FethError):
    """An ioctl request failed."""

    def __init__(self, operation: str, source: OSError) -> None:
        self.operation = operation
        self.source = source
        super().__init__(f"ioctl {operation} failed: {source}")


class IfconfigError(FethError):
    """Running ifconfig failed."""

    def __init__(self, args: list[str], source: object) -> None:
        self.args_list = list(args)
        self.source = source
        super().__init__(f"ifconfig {' '.join(self.args_list)} failed: {source}")


class InvalidNameError(FethError):
    """An interface name is empty or too long."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"invalid interface name: {name}")


class InvalidAddressError(FethError):
    """A string is not a valid IPv4 address."""

    def __init__(self, input: str, source: object) -> None:
        self.input = input
        self.source = source
        super().__init__(f"invalid address: {input}: {source}")


class InvalidPrefixLenError(FethError):
    """A prefix length is outside 0-32."""

    def __init__(self, prefix_len: int) -> None:
        self.prefix_len = prefix_len
        super().__init__(f"invalid prefix length: {prefix_len} (must be 0-32)")


class SocketError(FethError):
    """A control socket could not be created."""

    def __init__(self, source: OSError) -> None:
        self.source = source
        super().__init__(f"failed to create socket: {source}")


@dataclass
class FethStatus:
    """Status information for a feth interface."""

    name: str
    flags: int
    mtu: int
    peer: str | None = None
    inet: IPv4Address | None = None
    netmask: IPv4Address | None = None

    def is_up(self) -> bool:
        return bool(self.flags & IFF_UP)


def validate_name(name: str) -> None:
    """Raise InvalidNameError unless the name fits an interface name buffer."""
    length = len(name.encode())
    if length == 0 or length >= IFNAMSIZ:
        raise InvalidNameError(name)


def validate_prefix_len(prefix_len: int) -> None:
    """Raise InvalidPrefixLenError unless 0 <= prefix_len <= 32."""
    if not 0 <= prefix_len <= 32:
        raise InvalidPrefixLenError(prefix_len)


def parse_addr(addr: str) -> IPv4Address:
    """Parse a dotted-quad IPv4 address."""
    try:
        return IPv4Address(addr)
    except ipaddress.AddressValueError as exc:
        raise InvalidAddressError(addr, exc) from exc


def prefix_to_mask(prefix_len: int) -> IPv4Address:
    """Return the netmask for a prefix length."""
    validate_prefix_len(prefix_len)
    if prefix_len == 0:
        return IPv4Address(0)
    return IPv4Address((0xFFFFFFFF << (32 - prefix_len)) & 0xFFFFFFFF)


def broadcast_addr(addr: IPv4Address, mask: IPv4Address) -> IPv4Address:
    """Return the broadcast address of the network of addr under mask."""
    return IPv4Address(int(addr) | (~int(mask) & 0xFFFFFFFF))