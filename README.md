# fethkit

Manage macOS `feth` (fake ethernet) interfaces from Python: create and
destroy them, link them as peers, assign an IPv4 address, MTU and MAC,
bring them up or down, tune IPv6 neighbour discovery, and read or write
raw ethernet frames on them.

Changing interfaces and opening BPF devices requires root. The package
has no dependencies outside the standard library.

## Installing

```
pip install .
```

## Managing interfaces

`fethkit.feth.Feth` issues ioctl requests directly:

```python
from fethkit.feth import Feth

feth = Feth.create(0)            # feth0
auto = Feth.create_auto()        # the kernel picks the unit
feth.set_peer("feth1")
feth.set_inet("10.0.0.1", 24)    # netmask and broadcast are derived
feth.set_mtu(1400)
feth.up()
print(feth.status())             # FethStatus(name, flags, mtu, peer, inet, netmask)
feth.destroy()
```

Other methods: `create_with_peer`, `from_existing` (wraps a name without
touching the kernel), `get_peer`, `remove_peer`, `remove_inet`, `down`,
`set_mac`, `configure_ipv6(perform_nud, accept_router_adverts)` and
`configure(peer_name, addr, prefix_len)`.

`fethkit.ifconfig.IfconfigFeth` offers the same operations by running
`/sbin/ifconfig`; its `status()` parses the command's output with
`parse_ifconfig_status`.

### Builder

```python
from fethkit.builder import Backend, FethBuilder
from fethkit.common import MacAddr

handle = (
    FethBuilder()
    .unit(100)
    .peer("feth101")
    .addr("10.0.0.1", 24)
    .mtu(1400)
    .mac(MacAddr.random())
    .up()
    .build()
)
print(handle.name, handle.backend, handle.status())
handle.destroy()
```

Call `.backend(Backend.IFCONFIG)` to use `/sbin/ifconfig`, or
`.existing("feth0")` to configure an interface that already exists. If a
configuration step fails, an interface the builder created is destroyed
before the error is raised.

### Pairs

```python
from fethkit.feth import FethPairSide, create_pair

a, b = create_pair(0, FethPairSide(addr="10.0.0.1", up=True), 1, FethPairSide(up=True))
```

Each side gets a random locally administered MAC unless one is given;
the prefix length defaults to 24. If any step fails, both interfaces are
destroyed.

`fethkit.xnu.set_fake_max_mtu(mtu)` runs `sysctl` to raise
`net.link.fake.max_mtu` so that feth interfaces accept jumbo frames.

### Errors

Errors are raised as subclasses of `fethkit.common.FethError`:
`InvalidNameError`, `InvalidPrefixLenError`, `InvalidAddressError`,
`IoctlError`, `IfconfigError` and `SocketError`.

## Raw frames

`fethkit.feth_io.FethIO.open(name)` opens two BPF devices on the
interface: one in promiscuous, immediate mode for capture and one for
injecting complete frames. `recv()` returns one frame at a time (a BPF
read may hold several), `send()` and `send_vectored()` write a frame, and
`fileno()` gives the capture descriptor for `select` or `poll`. It is a
context manager.

`fethkit.aio.AsyncFethIO` does the same under asyncio (`await io.recv()`)
and `into_split()` hands over a `BpfReader` and a `FrameWriter` that can
be used independently.

`fethkit.packet` parses and builds Ethernet frames, ARP packets, IPv4
packets (`build_ipv4`) and ICMP echo messages, and computes the internet
checksum.

## Command line

```
fethctl create 0 1
fethctl set feth0 --peer feth1 --addr 10.0.0.1/24 --mtu 1400 --mac random --state up
fethctl status feth0
fethctl capture feth1
fethctl icmp feth1 10.0.0.2
fethctl destroy feth0 feth1
```

`set --peer none` removes the peer; repeated `--addr` options replace the
existing address. `capture` prints one line per frame until interrupted.
`icmp` answers ARP requests and ICMP echo requests for the given address,
using the MAC `02:fe` followed by the address's four octets.

## What it does not do

Only IPv4 addresses can be assigned; IPv6 support is limited to the
neighbour-unreachability and router-advertisement switches. The `icmp`
command answers echo requests only and does no other IP handling. It
works on macOS only.

## Tests

```
pip install '.[test]'
pytest
```