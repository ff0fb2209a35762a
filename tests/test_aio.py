import asyncio
import os
import struct

import pytest

from fethkit.aio import AsyncFethIO, BpfReader, FrameWriter
from fethkit.feth_io import FethIO


def record(payload: bytes, hdrlen: int = 20) -> bytes:
    header = struct.pack("=IIIIH", 0, 0, len(payload), len(payload), hdrlen)
    body = header.ljust(hdrlen, b"\0") + payload
    return body + bytes(-len(body) % 4)


@pytest.fixture
def pipes():
    created = []

    def make():
        r, w = os.pipe()
        created.extend([r, w])
        return r, w

    yield make
    for fd in created:
        try:
            os.close(fd)
        except OSError:
            pass


@pytest.mark.asyncio
async def test_reader_receives_buffered_frames(pipes):
    r, w = pipes()
    reader = BpfReader("feth1", r)
    os.write(w, record(b"one") + record(b"two"))
    assert await reader.recv() == b"one"
    assert reader.try_next_frame() == b"two"
    assert reader.try_next_frame() is None


@pytest.mark.asyncio
async def test_reader_waits_for_data(pipes):
    r, w = pipes()
    reader = BpfReader("feth1", r)
    loop = asyncio.get_running_loop()
    loop.call_later(0.05, os.write, w, record(b"late frame"))
    frame = await asyncio.wait_for(reader.recv(), timeout=5)
    assert frame == b"late frame"


@pytest.mark.asyncio
async def test_reader_end_of_stream(pipes):
    r, w = pipes()
    reader = BpfReader("feth1", r)
    os.close(w)
    with pytest.raises(EOFError):
        await asyncio.wait_for(reader.recv(), timeout=5)


def test_writer_send(pipes):
    r, w = pipes()
    writer = FrameWriter("feth1", w)
    assert writer.send(b"abc") == 3
    assert writer.send_vectored([b"de", b"f"]) == 3
    assert os.read(r, 100) == b"abcdef"
    writer.close()
    with pytest.raises(ValueError):
        writer.send(b"x")


@pytest.mark.asyncio
async def test_async_io_from_sync(pipes):
    cap_r, cap_w = pipes()
    out_r, out_w = pipes()
    sync_io = FethIO("feth2", cap_r, out_w, buffer_len=2048)
    aio = AsyncFethIO(sync_io)
    assert aio.name == "feth2"
    assert aio.fileno() == cap_r
    assert aio.write_fd == out_w
    assert not os.get_blocking(cap_r)
    with pytest.raises(ValueError):
        sync_io.fileno()

    os.write(cap_w, record(b"ping"))
    assert await aio.recv() == b"ping"
    assert aio.send(b"pong") == 4
    assert os.read(out_r, 100) == b"pong"


@pytest.mark.asyncio
async def test_into_split(pipes):
    cap_r, cap_w = pipes()
    out_r, out_w = pipes()
    aio = AsyncFethIO(FethIO("feth3", cap_r, out_w))
    reader, writer = aio.into_split()
    assert reader.name == writer.name == "feth3"
    assert reader.fileno() == cap_r
    assert writer.fileno() == out_w
    with pytest.raises(ValueError):
        aio.send(b"x")

    os.write(cap_w, record(b"split frame"))
    assert await reader.recv() == b"split frame"
    assert writer.send_vectored([b"a", b"b"]) == 2
    assert os.read(out_r, 10) == b"ab"


def test_close_releases_descriptors(pipes):
    cap_r, _ = pipes()
    _, out_w = pipes()
    with AsyncFethIO(FethIO("feth4", cap_r, out_w)) as aio:
        assert aio.fileno() == cap_r
    with pytest.raises(OSError):
        os.fstat(cap_r)
    with pytest.raises(OSError):
        os.fstat(out_w)


def test_open_rejects_long_name():
    with pytest.raises(ValueError):
        AsyncFethIO.open("a234567890123456")