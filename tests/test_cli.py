from ipaddress import IPv4Address

import pytest

from fethkit.cli import (
    arp_response,
    format_flags,
    format_frame,
    format_status,
    icmp_response,
    main,
    netmask_to_prefix,
    parse_cidr,
)
from fethkit.common import FethStatus, MacAddr, prefix_to_mask
from fethkit.packet import (
    BROADCAST_MAC,
    PROTO_ICMP,
    PROTO_UDP,
    ZERO_MAC,
    ArpOp,
    ArpPacket,
    EtherType,
    EthernetFrame,
    IcmpEcho,
    IcmpType,
    Ipv4Packet,
    build_ipv4,
    checksum,
    mac_from_ipv4,
)

OUR_IP = IPv4Address("10.0.0.2")
PEER_IP = IPv4Address("10.0.0.1")
OUR_MAC = MacAddr(b"\x22" * 6)
PEER_MAC = MacAddr(b"\x11" * 6)


def _arp_request_frame(target_ip=OUR_IP, op=ArpOp.REQUEST):
    request = ArpPacket(op, PEER_MAC, PEER_IP, ZERO_MAC, target_ip)
    return EthernetFrame(BROADCAST_MAC, PEER_MAC, EtherType.ARP, request.to_bytes())


def _icmp_frame(icmp_bytes, dst=OUR_IP, protocol=PROTO_ICMP):
    ip = build_ipv4(PEER_IP, dst, protocol, icmp_bytes)
    return EthernetFrame(OUR_MAC, PEER_MAC, EtherType.IPV4, ip)


ECHO_REQUEST = bytes([8, 0, 0, 0, 0, 1, 0, 1, 0xAA, 0xBB])


def test_format_flags_empty():
    assert format_flags(0) == "0<>"


def test_format_flags_lists_set_bits_in_table_order():
    result = format_flags(0x8001)
    assert result.startswith("8001<")
    assert result[len("8001<"):-1].split(",") == ["UP", "MULTICAST"]


def test_format_flags_ignores_unnamed_bits():
    assert format_flags(0x0004) == "4<>"


@pytest.mark.parametrize("prefix", range(33))
def test_netmask_to_prefix_round_trip(prefix):
    assert netmask_to_prefix(prefix_to_mask(prefix)) == prefix


def test_parse_cidr_valid():
    assert parse_cidr("10.0.0.1/24") == ("10.0.0.1", 24)


def test_parse_cidr_missing_slash():
    with pytest.raises(ValueError, match="invalid CIDR notation"):
        parse_cidr("10.0.0.1")


@pytest.mark.parametrize("text", ["10.0.0.1/abc", "10.0.0.1/256", "10.0.0.1/-1", "10.0.0.1/"])
def test_parse_cidr_bad_prefix(text):
    with pytest.raises(ValueError):
        parse_cidr(text)


def test_format_status_full():
    status = FethStatus("feth0", 0x1, 1500, "feth1", PEER_IP, prefix_to_mask(24))
    lines = format_status(status).split("\n")
    assert lines[0] == "feth0: flags=1<UP> mtu 1500"
    assert lines[1] == "\tinet 10.0.0.1 netmask 0xffffff00 prefix 24"
    assert lines[2] == "\tpeer: feth1"
    assert lines[3] == "\tstatus: active"


def test_format_status_without_address():
    status = FethStatus("feth0", 0, 1500)
    lines = format_status(status).split("\n")
    assert len(lines) == 2
    assert lines[-1] == "\tstatus: inactive"
    assert not any("inet" in line for line in lines)


def test_format_status_address_without_netmask():
    status = FethStatus("feth0", 0, 1500, inet=PEER_IP)
    assert "\tinet 10.0.0.1 netmask  prefix 0" in format_status(status).split("\n")


def test_format_frame_short():
    assert format_frame(3, b"\x00" * 5) == "#3 <short frame, 5 bytes>"


def test_format_frame_arp():
    frame = _arp_request_frame().to_bytes()
    line = format_frame(7, frame)
    assert line.startswith(f"#7 {PEER_MAC} -> {BROADCAST_MAC}  ")
    assert "ARP (0x0806)" in line
    assert line.endswith(f"  {len(frame)} bytes")


def test_arp_response_builds_reply():
    reply = arp_response(_arp_request_frame(), OUR_IP, OUR_MAC)
    eth = EthernetFrame.parse(reply)
    assert eth.dst == PEER_MAC
    assert eth.src == OUR_MAC
    assert eth.ethertype == EtherType.ARP
    arp = ArpPacket.parse(eth.payload)
    assert arp.op == ArpOp.REPLY
    assert arp.sender_mac == OUR_MAC
    assert arp.sender_ip == OUR_IP
    assert arp.target_mac == PEER_MAC
    assert arp.target_ip == PEER_IP


def test_arp_response_ignores_other_target():
    frame = _arp_request_frame(target_ip=IPv4Address("10.0.0.3"))
    assert arp_response(frame, OUR_IP, OUR_MAC) is None


def test_arp_response_ignores_replies():
    frame = _arp_request_frame(op=ArpOp.REPLY)
    assert arp_response(frame, OUR_IP, OUR_MAC) is None


def test_arp_response_ignores_non_arp_payload():
    frame = EthernetFrame(BROADCAST_MAC, PEER_MAC, EtherType.ARP, b"\x00" * 4)
    assert arp_response(frame, OUR_IP, OUR_MAC) is None


def test_icmp_response_builds_reply():
    request = _icmp_frame(ECHO_REQUEST)
    reply = icmp_response(request, OUR_IP, OUR_MAC)
    eth = EthernetFrame.parse(reply)
    assert eth.dst == PEER_MAC
    assert eth.src == OUR_MAC
    assert eth.ethertype == EtherType.IPV4
    ip = Ipv4Packet.parse(eth.payload)
    assert ip.header.src == OUR_IP
    assert ip.header.dst == PEER_IP
    assert ip.header.protocol == PROTO_ICMP
    assert checksum(ip.header_bytes) == 0
    echo = IcmpEcho.parse(ip.payload)
    assert echo.icmp_type == IcmpType.ECHO_REPLY
    assert checksum(ip.payload) == 0
    assert (echo.id, echo.seq) == (1, 1)
    assert echo.data == bytes([0xAA, 0xBB])


def test_icmp_response_ignores_other_destination():
    frame = _icmp_frame(ECHO_REQUEST, dst=IPv4Address("10.0.0.9"))
    assert icmp_response(frame, OUR_IP, OUR_MAC) is None


def test_icmp_response_ignores_echo_reply():
    echo_reply = bytes([0]) + ECHO_REQUEST[1:]
    assert icmp_response(_icmp_frame(echo_reply), OUR_IP, OUR_MAC) is None


def test_icmp_response_ignores_other_protocol():
    frame = _icmp_frame(ECHO_REQUEST, protocol=PROTO_UDP)
    assert icmp_response(frame, OUR_IP, OUR_MAC) is None


def test_icmp_response_matches_responder_mac():
    mac = mac_from_ipv4(OUR_IP)
    reply = icmp_response(_icmp_frame(ECHO_REQUEST), OUR_IP, mac)
    assert EthernetFrame.parse(reply).src == mac


def test_main_requires_command():
    with pytest.raises(SystemExit) as info:
        main([])
    assert info.value.code == 2


def test_main_rejects_long_name(capsys):
    assert main(["status", "a234567890123456"]) == 1
    assert "error: invalid interface name" in capsys.readouterr().err


def test_main_rejects_bad_mac(capsys):
    assert main(["set", "feth0", "--mac", "zz"]) == 1
    assert "invalid MAC address" in capsys.readouterr().err


def test_main_rejects_bad_icmp_address(capsys):
    assert main(["icmp", "feth0", "not-an-ip"]) == 1
    assert capsys.readouterr().err.startswith("error: ")


def test_main_destroy_nothing(capsys):
    assert main(["destroy"]) == 0
    assert capsys.readouterr().out == ""


def test_main_rejects_negative_unit():
    with pytest.raises(SystemExit) as info:
        main(["create", "-5"])
    assert info.value.code == 2