#!/usr/bin/env python3
# examples/sync_loop.py
#
# Logs in and prints classified events as they arrive; accepts every invite.
#   SERVER_MATRIX=https://matrix.example.org MATRIX_USER=alice MATRIX_PASSWORD=... \
#     python examples/sync_loop.py

import asyncio
import os

from lorena_matrix import MatrixError, MatrixSession

USER = os.getenv("MATRIX_USER", "")
PASSWORD = os.getenv("MATRIX_PASSWORD", "")


async def main() -> None:
    session = MatrixSession()
    await session.connect(USER, PASSWORD)
    print(f"connected as {session.current_user_id}")

    batch = ""
    while True:
        try:
            res = await session.events(batch)
        except MatrixError as e:
            print(f"sync failed: {e.status} {e.detail}")
            await asyncio.sleep(5)
            continue
        batch = res.next_batch
        for ev in res.events:
            print(f"[{ev.kind}] {ev.room_id} {ev.sender}: {ev.payload!r}")
            if ev.kind == "incoming-invite":
                await session.accept_connection(ev.room_id)


if __name__ == "__main__":
    asyncio.run(main())
