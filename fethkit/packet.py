"""Parsing and building of Ethernet, ARP, IPv4 and ICMP echo packets."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from ipaddress import IPv4Address
from typing import ClassVar

from .common import MacAddr

BROADCAST_MAC = MacAddr(b"\xff" * 6)
ZERO_MAC = MacAddr(bytes(6))

_ETH_HEADER = struct.Struct("!6s6sH")
_ARP = struct.Struct("!HHBBH6s4s6s4s")
_IPV4_HEADER = struct.Struct("!BBHHHBBH4s4s")
_ICMP_ECHO_HEADER = struct.Struct("!BBHHH")

_ARP_HW_ETHERNET = 1
_ARP_PROTO_IPV4 = 0x0800


def checksum(data: bytes | bytearray) -> int:
    """Return the RFC 1071 internet checksum of data."""
    data = bytes(data)
    if len(data) % 2:
        data += b"\0"
    total = sum(struct.unpack(f"!{len(data) // 2}H", data))
    while total >> 16:
        total = (total & 0xFFFF) + (total >> 16)
    return ~total & 0xFFFF


def mac_from_ipv4(ip: IPv4Address | str) -> MacAddr:
    """Return the locally administered address ``02:fe:a:b:c:d`` for an IPv4 address."""
    return MacAddr(b"\x02\xfe" + IPv4Address(ip).packed)


class EtherType(IntEnum):
    IPV4 = 0x0800
    ARP = 0x0806
    IPV6 = 0x86DD
    VLAN = 0x8100


_ETHERTYPE_NAMES = {
    EtherType.IPV4: "IPv4",
    EtherType.ARP: "ARP",
    EtherType.IPV6: "IPv6",
    EtherType.VLAN: "802.1Q",
}


def ethertype_name(value: int) -> str:
    """Return a display name for an EtherType value."""
    return _ETHERTYPE_NAMES.get(value, f"0x{value:04x}")


@dataclass(frozen=True)
class EthernetFrame:
    """An Ethernet II frame: header fields and payload."""

    dst: MacAddr
    src: MacAddr
    ethertype: int
    payload: bytes = b""

    HEADER_LEN: ClassVar[int] = _ETH_HEADER.size

    @classmethod
    def parse(cls, data: bytes | bytearray) -> EthernetFrame | None:
        """Parse a frame, or return None if it is shorter than the header."""
        if len(data) < _ETH_HEADER.size:
            return None
        dst, src, ethertype = _ETH_HEADER.unpack_from(data)
        return cls(MacAddr(dst), MacAddr(src), ethertype, bytes(data[_ETH_HEADER.size :]))

    def to_bytes(self) -> bytes:
        return (
            _ETH_HEADER.pack(bytes(self.dst), bytes(self.src), int(self.ethertype))
            + bytes(self.payload)
        )


class ArpOp(IntEnum):
    REQUEST = 1
    REPLY = 2

    def __str__(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class ArpPacket:
    """An ARP packet for IPv4 over Ethernet."""

    op: int
    sender_mac: MacAddr
    sender_ip: IPv4Address
    target_mac: MacAddr
    target_ip: IPv4Address

    SIZE: ClassVar[int] = _ARP.size

    @classmethod
    def parse(cls, data: bytes | bytearray) -> ArpPacket | None:
        """Parse an Ethernet/IPv4 ARP packet, or return None if it is not one."""
        if len(data) < _ARP.size:
            return None
        (hw_type, proto_type, hw_len, proto_len, op,
         sender_mac, sender_ip, target_mac, target_ip) = _ARP.unpack_from(data)
        if (
            hw_type != _ARP_HW_ETHERNET
            or proto_type != _ARP_PROTO_IPV4
            or hw_len != 6
            or proto_len != 4
        ):
            return None
        return cls(
            op,
            MacAddr(sender_mac),
            IPv4Address(sender_ip),
            MacAddr(target_mac),
            IPv4Address(target_ip),
        )

    @classmethod
    def reply(
        cls, sender_mac: MacAddr, sender_ip: IPv4Address | str, target: ArpPacket
    ) -> ArpPacket:
        """Build the reply to a request, answering from sender_mac/sender_ip."""
        return cls(
            ArpOp.REPLY,
            sender_mac,
            IPv4Address(sender_ip),
            target.sender_mac,
            target.sender_ip,
        )

    def to_bytes(self) -> bytes:
        return _ARP.pack(
            _ARP_HW_ETHERNET,
            _ARP_PROTO_IPV4,
            6,
            4,
            int(self.op),
            bytes(self.sender_mac),
            IPv4Address(self.sender_ip).packed,
            bytes(self.target_mac),
            IPv4Address(self.target_ip).packed,
        )

    def to_frame(self, dst: MacAddr) -> bytes:
        """Return a complete Ethernet frame carrying this packet."""
        return EthernetFrame(dst, self.sender_mac, EtherType.ARP, self.to_bytes()).to_bytes()


PROTO_ICMP = 1
PROTO_TCP = 6
PROTO_UDP = 17

_PROTOCOL_NAMES = {PROTO_ICMP: "ICMP", PROTO_TCP: "TCP", PROTO_UDP: "UDP"}


def protocol_name(protocol: int) -> str:
    """Return the name of an IP protocol number, or ``unknown``."""
    return _PROTOCOL_NAMES.get(protocol, "unknown")


@dataclass(frozen=True)
class Ipv4Header:
    """The fixed 20-byte part of an IPv4 header."""

    version: int
    ihl: int
    dscp_ecn: int
    total_len: int
    identification: int
    flags_fragment: int
    ttl: int
    protocol: int
    header_checksum: int
    src: IPv4Address
    dst: IPv4Address

    PROTO_ICMP: ClassVar[int] = PROTO_ICMP
    PROTO_TCP: ClassVar[int] = PROTO_TCP
    PROTO_UDP: ClassVar[int] = PROTO_UDP
    SIZE: ClassVar[int] = _IPV4_HEADER.size


@dataclass(frozen=True)
class Ipv4Packet:
    """An IPv4 packet: parsed header, raw header bytes with options, and payload."""

    header: Ipv4Header
    header_bytes: bytes
    payload: bytes

    @classmethod
    def parse(cls, data: bytes | bytearray) -> Ipv4Packet | None:
        """Parse an IPv4 packet, or return None if it is malformed."""
        if len(data) < _IPV4_HEADER.size:
            return None
        (version_ihl, dscp_ecn, total_len, ident, flags_fragment,
         ttl, protocol, header_checksum, src, dst) = _IPV4_HEADER.unpack_from(data)
        version = version_ihl >> 4
        if version != 4:
            return None
        ihl = (version_ihl & 0x0F) * 4
        if ihl < _IPV4_HEADER.size or len(data) < ihl:
            return None
        end = min(total_len, len(data))
        header = Ipv4Header(
            version, ihl, dscp_ecn, total_len, ident, flags_fragment,
            ttl, protocol, header_checksum, IPv4Address(src), IPv4Address(dst),
        )
        return cls(header, bytes(data[:ihl]), bytes(data[ihl:end]))


def build_ipv4(
    src: IPv4Address | str,
    dst: IPv4Address | str,
    protocol: int,
    payload: bytes | bytearray,
    ttl: int = 64,
) -> bytes:
    """Build an IPv4 packet with a 20-byte header and a valid header checksum."""
    total_len = _IPV4_HEADER.size + len(payload)
    if total_len > 0xFFFF:
        raise ValueError(f"IPv4 packet too long: {total_len} bytes")
    fields = [0x45, 0, total_len, 0, 0, ttl, protocol, 0,
              IPv4Address(src).packed, IPv4Address(dst).packed]
    fields[7] = checksum(_IPV4_HEADER.pack(*fields))
    return _IPV4_HEADER.pack(*fields) + bytes(payload)


class IcmpType(IntEnum):
    ECHO_REPLY = 0
    ECHO_REQUEST = 8

    def __str__(self) -> str:
        return self.name.lower().replace("_", "-")


@dataclass(frozen=True)
class IcmpEcho:
    """An ICMP echo request or reply."""

    icmp_type: int
    code: int
    checksum: int
    id: int
    seq: int
    data: bytes = b""

    @classmethod
    def parse(cls, data: bytes | bytearray) -> IcmpEcho | None:
        """Parse an echo request or reply, or return None for anything else."""
        if len(data) < _ICMP_ECHO_HEADER.size:
            return None
        icmp_type, code, cksum, ident, seq = _ICMP_ECHO_HEADER.unpack_from(data)
        if icmp_type not in (IcmpType.ECHO_REQUEST, IcmpType.ECHO_REPLY):
            return None
        return cls(icmp_type, code, cksum, ident, seq, bytes(data[_ICMP_ECHO_HEADER.size :]))

    def reply(self) -> bytes:
        """Return the bytes of an echo reply to this message."""
        unsummed = _ICMP_ECHO_HEADER.pack(IcmpType.ECHO_REPLY, 0, 0, self.id, self.seq) + self.data
        cksum = checksum(unsummed)
        return (
            _ICMP_ECHO_HEADER.pack(IcmpType.ECHO_REPLY, 0, cksum, self.id, self.seq)
            + self.data
        )