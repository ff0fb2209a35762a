"""Asynchronous raw frame I/O on a feth interface with asyncio."""

from __future__ import annotations

import asyncio
import os
from collections.abc import Iterable

from .feth_io import BPF_BUFFER_LEN, FethIO, FrameBuffer


class BpfReader:
    """Receives captured frames from a non-blocking capture descriptor."""

    def __init__(self, name: str, fd: int, buffer_len: int = BPF_BUFFER_LEN) -> None:
        self.name = name
        self._fd = fd
        self._buffer = FrameBuffer(buffer_len)
        os.set_blocking(fd, False)

    def fileno(self) -> int:
        if self._fd < 0:
            raise ValueError("reader is closed")
        return self._fd

    def try_next_frame(self) -> bytes | None:
        """Return an already buffered frame without any I/O, or None."""
        return self._buffer.next_frame()

    async def recv(self) -> bytes:
        """Return the next captured frame, waiting for the device if needed."""
        while True:
            frame = self._buffer.next_frame()
            if frame is not None:
                return frame
            await self._fill()

    async def _fill(self) -> None:
        fd = self.fileno()
        while True:
            try:
                data = os.read(fd, self._buffer.capacity)
            except BlockingIOError:
                await self._wait_readable(fd)
                continue
            if not data:
                raise EOFError(f"capture device for {self.name} was closed")
            self._buffer.load(data)
            return

    @staticmethod
    async def _wait_readable(fd: int) -> None:
        loop = asyncio.get_running_loop()
        ready = loop.create_future()

        def wake() -> None:
            if not ready.done():
                ready.set_result(None)

        loop.add_reader(fd, wake)
        try:
            await ready
        finally:
            loop.remove_reader(fd)

    def close(self) -> None:
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1


class FrameWriter:
    """Sends complete Ethernet frames; writes are plain kernel buffer copies."""

    def __init__(self, name: str, fd: int) -> None:
        self.name = name
        self._fd = fd

    def fileno(self) -> int:
        if self._fd < 0:
            raise ValueError("writer is closed")
        return self._fd

    def send(self, data: bytes | bytearray | memoryview) -> int:
        """Send one frame."""
        return os.write(self.fileno(), data)

    def send_vectored(self, buffers: Iterable[bytes | bytearray | memoryview]) -> int:
        """Send one frame gathered from several buffers."""
        return os.writev(self.fileno(), list(buffers))

    def close(self) -> None:
        if self._fd >= 0:
            os.close(self._fd)
            self._fd = -1


class AsyncFethIO:
    """Asynchronous frame I/O built from a synchronous FethIO."""

    def __init__(self, sync_io: FethIO) -> None:
        sync_io.set_nonblocking(True)
        name, read_fd, write_fd, buffer_len = sync_io.into_parts()
        self.name = name
        self._reader: BpfReader | None = BpfReader(name, read_fd, buffer_len)
        self._writer: FrameWriter | None = FrameWriter(name, write_fd)

    @classmethod
    def open(cls, ifname: str) -> AsyncFethIO:
        """Open asynchronous raw I/O on the named interface."""
        return cls(FethIO.open(ifname))

    def _halves(self) -> tuple[BpfReader, FrameWriter]:
        if self._reader is None or self._writer is None:
            raise ValueError("I/O handle has been split or closed")
        return self._reader, self._writer

    def fileno(self) -> int:
        return self._halves()[0].fileno()

    @property
    def write_fd(self) -> int:
        return self._halves()[1].fileno()

    def into_split(self) -> tuple[BpfReader, FrameWriter]:
        """Hand over independent read and write halves; this handle is then detached."""
        halves = self._halves()
        self._reader = self._writer = None
        return halves

    async def recv(self) -> bytes:
        """Return the next captured frame."""
        return await self._halves()[0].recv()

    def send(self, data: bytes | bytearray | memoryview) -> int:
        """Send one frame."""
        return self._halves()[1].send(data)

    def send_vectored(self, buffers: Iterable[bytes | bytearray | memoryview]) -> int:
        """Send one frame gathered from several buffers."""
        return self._halves()[1].send_vectored(buffers)

    def close(self) -> None:
        if self._reader is not None:
            self._reader.close()
        if self._writer is not None:
            self._writer.close()
        self._reader = self._writer = None

    def __enter__(self) -> AsyncFethIO:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()