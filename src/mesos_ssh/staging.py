"""Encoding for the scp "sink mode" file transfer protocol.

Each file is sent as a header line ``C<perm> <size> <name>\\n``, the raw
file bytes and a single NUL. The remote ``scp -t`` receiver writes them
into the target directory; closing stdin ends the transfer.
"""

from __future__ import annotations

import stat
from pathlib import Path
from typing import Iterable, Iterator

# Remote receiver, run with the staging directory appended.
SCP_RECEIVER = "/usr/bin/scp -tr"

CHUNK_SIZE = 32 * 1024


def scp_header(path: str | Path) -> bytes:
    """Header line announcing ``path``'s permission bits, size and name."""
    path = Path(path)
    info = path.stat()
    if not stat.S_ISREG(info.st_mode):
        raise IsADirectoryError(f"Not a regular file: {path}")
    return b"C%04o %d %s\n" % (
        stat.S_IMODE(info.st_mode),
        info.st_size,
        path.name.encode(),
    )


def iter_scp_stream(
    paths: Iterable[str | Path], chunk_size: int = CHUNK_SIZE
) -> Iterator[bytes]:
    """Yield the byte stream that stages every file in ``paths``."""
    for path in paths:
        yield scp_header(path)
        with open(path, "rb") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                yield chunk
        yield b"\0"
