#!/usr/bin/env python3
# examples/send_file.py
#
# Uploads a file and posts its mxc:// URI to a room.
#   python examples/send_file.py '!room:example.org' ./notes.txt

import asyncio
import mimetypes
import os
import sys
from pathlib import Path

from lorena_matrix import MatrixSession


async def main(room_id: str, path: Path) -> None:
    session = MatrixSession()
    await session.connect(os.getenv("MATRIX_USER", ""), os.getenv("MATRIX_PASSWORD", ""))
    mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    up = await session.upload_file(path.read_bytes(), path.name, mime)
    await session.send_message(room_id, "m.text", up["content_uri"])
    print(f"sent {up['content_uri']} to {room_id}")


if __name__ == "__main__":
    if len(sys.argv) != 3:
        sys.exit("usage: send_file.py ROOM_ID FILE")
    asyncio.run(main(sys.argv[1], Path(sys.argv[2])))
