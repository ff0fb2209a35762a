"""Command-line tool for managing feth (fake ethernet) interfaces."""

from __future__ import annotations

import argparse
import asyncio
import re
import sys
from ipaddress import IPv4Address

from .aio import AsyncFethIO
from .common import FethError, FethStatus, MacAddr
from .feth import Feth
from .feth_io import FethIO
from .packet import (
    PROTO_ICMP,
    ArpOp,
    ArpPacket,
    EtherType,
    EthernetFrame,
    IcmpEcho,
    IcmpType,
    Ipv4Packet,
    build_ipv4,
    ethertype_name,
    mac_from_ipv4,
)

IFF_FLAGS = (
    (0x0001, "UP"),
    (0x0002, "BROADCAST"),
    (0x0008, "LOOPBACK"),
    (0x0010, "POINTOPOINT"),
    (0x0100, "NOTRAILERS"),
    (0x0200, "RUNNING"),
    (0x0400, "NOARP"),
    (0x0800, "PROMISC"),
    (0x1000, "ALLMULTI"),
    (0x2000, "OACTIVE"),
    (0x4000, "SIMPLEX"),
    (0x8000, "MULTICAST"),
)

_DIGITS = re.compile(r"\d+")


def format_flags(flags: int) -> str:
    """Render interface flags as ``hex<NAME,...>``."""
    names = ",".join(name for bit, name in IFF_FLAGS if flags & bit)
    return f"{flags:x}<{names}>"


def netmask_to_prefix(mask: IPv4Address) -> int:
    """Return the number of set bits in a netmask."""
    return bin(int(mask)).count("1")


def format_status(status: FethStatus) -> str:
    """Render an interface status in the style of ifconfig."""
    lines = [f"{status.name}: flags={format_flags(status.flags)} mtu {status.mtu}"]
    if status.inet is not None:
        if status.netmask is not None:
            prefix = netmask_to_prefix(status.netmask)
            netmask_hex = f"0x{int(status.netmask):08x}"
        else:
            prefix = 0
            netmask_hex = ""
        lines.append(f"\tinet {status.inet} netmask {netmask_hex} prefix {prefix}")
    if status.peer is not None:
        lines.append(f"\tpeer: {status.peer}")
    lines.append(f"\tstatus: {'active' if status.is_up() else 'inactive'}")
    return "\n".join(lines)


def format_frame(seq: int, frame: bytes) -> str:
    """Render a one-line summary of a captured frame."""
    eth = EthernetFrame.parse(frame)
    if eth is None:
        return f"#{seq} <short frame, {len(frame)} bytes>"
    return (
        f"#{seq} {eth.src} -> {eth.dst}  {ethertype_name(eth.ethertype)} "
        f"(0x{eth.ethertype:04x})  {len(frame)} bytes"
    )


def parse_cidr(text: str) -> tuple[str, int]:
    """Split ``addr/prefix`` into the address text and the prefix length."""
    addr, sep, prefix = text.partition("/")
    if not sep:
        raise ValueError(
            f"invalid CIDR notation: {text} (expected addr/prefix, e.g. 10.0.0.1/24)"
        )
    if not _DIGITS.fullmatch(prefix) or int(prefix) > 0xFF:
        raise ValueError(f"invalid prefix length: {prefix}")
    return addr, int(prefix)


def arp_response(
    frame: EthernetFrame, our_ip: IPv4Address | str, our_mac: MacAddr
) -> bytes | None:
    """Return the reply frame for an ARP request asking for our_ip, else None."""
    our_ip = IPv4Address(our_ip)
    arp = ArpPacket.parse(frame.payload)
    if arp is None or arp.op != ArpOp.REQUEST or arp.target_ip != our_ip:
        return None
    return ArpPacket.reply(our_mac, our_ip, arp).to_frame(arp.sender_mac)


def icmp_response(
    frame: EthernetFrame, our_ip: IPv4Address | str, our_mac: MacAddr
) -> bytes | None:
    """Return the reply frame for an ICMP echo request to our_ip, else None."""
    our_ip = IPv4Address(our_ip)
    ip = Ipv4Packet.parse(frame.payload)
    if ip is None or ip.header.protocol != PROTO_ICMP or ip.header.dst != our_ip:
        return None
    echo = IcmpEcho.parse(ip.payload)
    if echo is None or echo.icmp_type != IcmpType.ECHO_REQUEST:
        return None
    ip_reply = build_ipv4(our_ip, ip.header.src, PROTO_ICMP, echo.reply())
    return EthernetFrame(frame.src, our_mac, EtherType.IPV4, ip_reply).to_bytes()


def _describe_arp_reply(reply: bytes, our_ip: IPv4Address, our_mac: MacAddr) -> str:
    arp = ArpPacket.parse(EthernetFrame.parse(reply).payload)
    return (
        f"  ARP reply: {our_ip} is-at {our_mac}\n"
        f"    (to {arp.target_ip} at {arp.target_mac})"
    )


def _describe_icmp_reply(reply: bytes, our_ip: IPv4Address) -> str:
    ip = Ipv4Packet.parse(EthernetFrame.parse(reply).payload)
    echo = IcmpEcho.parse(ip.payload)
    return (
        f"  ICMP reply: {our_ip} -> {ip.header.dst}  "
        f"id={echo.id} seq={echo.seq} {len(ip.payload)} bytes"
    )


async def _run_icmp_responder(name: str, addr: str) -> None:
    our_ip = IPv4Address(addr)
    our_mac = mac_from_ipv4(our_ip)
    with AsyncFethIO.open(name) as io:
        print(f"listening on {name} as {our_ip} ({our_mac})")
        while True:
            data = await io.recv()
            eth = EthernetFrame.parse(data)
            if eth is None:
                continue
            if eth.ethertype == EtherType.ARP:
                reply = arp_response(eth, our_ip, our_mac)
                if reply is not None:
                    io.send(reply)
                    print(_describe_arp_reply(reply, our_ip, our_mac))
            elif eth.ethertype == EtherType.IPV4:
                reply = icmp_response(eth, our_ip, our_mac)
                if reply is not None:
                    io.send(reply)
                    print(_describe_icmp_reply(reply, our_ip))


def _u32(text: str) -> int:
    if not _DIGITS.fullmatch(text) or int(text) > 0xFFFFFFFF:
        raise argparse.ArgumentTypeError(f"invalid unsigned 32-bit value: {text}")
    return int(text)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fethctl", description="Manage macOS feth (fake ethernet) interfaces"
    )
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Create feth interfaces.")
    create.add_argument("units", nargs="*", type=_u32, help="unit numbers, e.g. 0 1")

    destroy = commands.add_parser("destroy", help="Destroy feth interfaces.")
    destroy.add_argument("names", nargs="*", help="interface names, e.g. feth0 feth1")

    set_cmd = commands.add_parser("set", help="Set feth interface parameters.")
    set_cmd.add_argument("name", help="interface name, e.g. feth0")
    set_cmd.add_argument("--peer", help='peer interface; "none" removes the peer')
    set_cmd.add_argument(
        "--addr", action="append", default=[],
        help="IPv4 address in CIDR notation; repeat for several",
    )
    set_cmd.add_argument("--mtu", type=_u32, help="MTU")
    set_cmd.add_argument("--mac", help='MAC address, or "random"')
    set_cmd.add_argument("--state", choices=("up", "down"), help="link state")

    status = commands.add_parser("status", help="Show the status of a feth interface.")
    status.add_argument("name")

    capture = commands.add_parser("capture", help="Capture and log L2 frames.")
    capture.add_argument("name")

    icmp = commands.add_parser("icmp", help="Answer ARP and ICMP echo requests.")
    icmp.add_argument("name")
    icmp.add_argument("addr", help="IPv4 address to claim")

    return parser


def _run_set(args: argparse.Namespace) -> None:
    name = args.name
    feth = Feth.from_existing(name)

    if args.mac is not None:
        mac = MacAddr.random() if args.mac == "random" else MacAddr.parse(args.mac)
        feth.set_mac(mac)
        print(f"set {name} mac {mac}")

    if args.peer is not None:
        if args.peer == "none":
            feth.remove_peer()
            print(f"removed peer from {name}")
        else:
            feth.set_peer(args.peer)
            print(f"set peer {name} -> {args.peer}")

    if args.addr:
        # Replace the existing address rather than adding to it.
        try:
            feth.remove_inet()
        except FethError:
            pass
        for cidr in args.addr:
            ip, prefix_len = parse_cidr(cidr)
            feth.set_inet(ip, prefix_len)
            print(f"set {name} addr {ip}/{prefix_len}")

    if args.mtu is not None:
        feth.set_mtu(args.mtu)
        print(f"set {name} mtu {args.mtu}")

    if args.state == "up":
        feth.up()
        print(f"{name} is up")
    elif args.state == "down":
        feth.down()
        print(f"{name} is down")


def _run_capture(name: str) -> None:
    with FethIO.open(name) as io:
        print(f"capturing on {name} ...")
        seq = 0
        while True:
            frame = io.recv()
            seq += 1
            print(format_frame(seq, frame))


def _run(args: argparse.Namespace) -> None:
    if args.command == "create":
        for unit in args.units:
            feth = Feth.create(unit)
            print(f"created {feth.name}")
    elif args.command == "destroy":
        for name in args.names:
            Feth.from_existing(name).destroy()
            print(f"destroyed {name}")
    elif args.command == "set":
        _run_set(args)
    elif args.command == "status":
        print(format_status(Feth.from_existing(args.name).status()))
    elif args.command == "capture":
        _run_capture(args.name)
    elif args.command == "icmp":
        IPv4Address(args.addr)
        asyncio.run(_run_icmp_responder(args.name, args.addr))


def main(argv: list[str] | None = None) -> int:
    """Run the command line and return the process exit status."""
    args = _build_parser().parse_args(argv)
    try:
        _run(args)
    except KeyboardInterrupt:
        return 130
    except (FethError, OSError, ValueError, EOFError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())