"""Raw frame I/O on a feth interface through BPF devices."""

from __future__ import annotations

import errno
import fcntl
import os
import struct
from collections.abc import Iterable

from . import xnu
from .common import IFNAMSIZ

BPF_BUFFER_LEN = 131_072

# struct bpf_hdr: 32-bit timeval, caplen, datalen, hdrlen, padded to 20 bytes.
_BPF_HDR = struct.Struct("=IIIIH2x")

_IOC_VOID = 0x20000000
_UINT = struct.Struct("=I")

BIOCSBLEN = xnu.iowr("B", 102, _UINT.size)
BIOCPROMISC = _IOC_VOID | (ord("B") << 8) | 105
BIOCSETIF = xnu.iow("B", 108, xnu.IFREQ_SIZE)
BIOCIMMEDIATE = xnu.iow("B", 112, _UINT.size)
BIOCSHDRCMPLT = xnu.iow("B", 117, _UINT.size)
BIOCSSEESENT = xnu.iow("B", 119, _UINT.size)


class FrameBuffer:
    """Splits the records of one BPF read into captured frames."""

    def __init__(self, capacity: int = BPF_BUFFER_LEN) -> None:
        self.capacity = capacity
        self._data = b""
        self._pos = 0

    def load(self, data: bytes | bytearray) -> None:
        """Replace the buffered records with the result of a new read."""
        self._data = bytes(data)
        self._pos = 0

    @property
    def pending(self) -> bool:
        """True while unparsed bytes remain."""
        return self._pos < len(self._data)

    def next_frame(self) -> bytes | None:
        """Return the next captured frame, or None when the buffer is exhausted."""
        data = self._data
        length = len(data)
        while self._pos + _BPF_HDR.size <= length:
            start = self._pos
            _, _, cap_len, _, hdr_len = _BPF_HDR.unpack_from(data, start)
            # Records are aligned to 4-byte boundaries.
            total = (hdr_len + cap_len + 3) & ~3
            if total == 0:
                break
            self._pos = start + total
            end = start + hdr_len + cap_len
            # Skip padding records and records running past the valid data.
            if cap_len == 0 or end > length:
                continue
            return data[start + hdr_len : end]
        self._pos = length
        return None


def open_bpf() -> int:
    """Open the first /dev/bpfN device that is not busy and return its descriptor."""
    for index in range(256):
        try:
            return os.open(f"/dev/bpf{index}", os.O_RDWR)
        except OSError as exc:
            if exc.errno != errno.EBUSY:
                raise
    raise FileNotFoundError(errno.ENOENT, "no available /dev/bpf device")


def _set_uint(fd: int, request: int, value: int) -> int:
    buf = bytearray(_UINT.pack(value))
    fcntl.ioctl(fd, request, buf, True)
    return _UINT.unpack(buf)[0]


def configure_bpf(fd: int, ifname: str) -> int:
    """Set a BPF descriptor up to capture every frame on ifname.

    Returns the buffer length the kernel settled on, which reads must use.
    """
    actual_len = _set_uint(fd, BIOCSBLEN, BPF_BUFFER_LEN)
    _set_uint(fd, BIOCIMMEDIATE, 1)
    _set_uint(fd, BIOCSSEESENT, 0)
    fcntl.ioctl(fd, BIOCSETIF, xnu.make_ifreq(ifname), True)
    _set_uint(fd, BIOCSHDRCMPLT, 1)
    fcntl.ioctl(fd, BIOCPROMISC, 0)
    return actual_len


def _open_writer(ifname: str) -> int:
    """Open a BPF descriptor bound to ifname for injecting complete frames."""
    fd = open_bpf()
    try:
        fcntl.ioctl(fd, BIOCSETIF, xnu.make_ifreq(ifname), True)
        _set_uint(fd, BIOCSHDRCMPLT, 1)
    except BaseException:
        os.close(fd)
        raise
    return fd


def _check_name(ifname: str) -> None:
    if len(ifname.encode()) >= IFNAMSIZ:
        raise ValueError(f"interface name too long: {ifname}")


class FethIO:
    """Reads and writes raw Ethernet frames on an existing interface."""

    def __init__(
        self, name: str, read_fd: int, write_fd: int, buffer_len: int = BPF_BUFFER_LEN
    ) -> None:
        self.name = name
        self._read_fd = read_fd
        self._write_fd = write_fd
        self._buffer = FrameBuffer(buffer_len)

    @classmethod
    def open(cls, ifname: str) -> FethIO:
        """Open raw I/O on the I/O side of a feth pair."""
        _check_name(ifname)
        read_fd = open_bpf()
        try:
            buffer_len = configure_bpf(read_fd, ifname)
            write_fd = _open_writer(ifname)
        except BaseException:
            os.close(read_fd)
            raise
        return cls(ifname, read_fd, write_fd, buffer_len)

    def _require_open(self) -> None:
        if self._read_fd < 0:
            raise ValueError("I/O handle is closed")

    @property
    def buffer_len(self) -> int:
        return self._buffer.capacity

    @property
    def write_fd(self) -> int:
        self._require_open()
        return self._write_fd

    def fileno(self) -> int:
        """Return the readable descriptor, for use with select or poll."""
        self._require_open()
        return self._read_fd

    def set_nonblocking(self, nonblocking: bool) -> None:
        """Switch the readable descriptor between blocking and non-blocking mode."""
        self._require_open()
        os.set_blocking(self._read_fd, not nonblocking)

    def into_parts(self) -> tuple[str, int, int, int]:
        """Hand over ``(name, read_fd, write_fd, buffer_len)``; the handle is then detached."""
        self._require_open()
        parts = (self.name, self._read_fd, self._write_fd, self._buffer.capacity)
        self._read_fd = self._write_fd = -1
        return parts

    def send(self, data: bytes | bytearray | memoryview) -> int:
        """Send one complete Ethernet frame."""
        self._require_open()
        return os.write(self._write_fd, data)

    def send_vectored(self, buffers: Iterable[bytes | bytearray | memoryview]) -> int:
        """Send one frame gathered from several buffers."""
        self._require_open()
        return os.writev(self._write_fd, list(buffers))

    def recv(self) -> bytes:
        """Return the next captured frame, reading from the device when needed."""
        self._require_open()
        while True:
            frame = self._buffer.next_frame()
            if frame is not None:
                return frame
            data = os.read(self._read_fd, self._buffer.capacity)
            if not data:
                raise EOFError(f"capture device for {self.name} was closed")
            self._buffer.load(data)

    def close(self) -> None:
        """Close both descriptors."""
        for fd in {self._read_fd, self._write_fd}:
            if fd >= 0:
                os.close(fd)
        self._read_fd = self._write_fd = -1

    def __enter__(self) -> FethIO:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()