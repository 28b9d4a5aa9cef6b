#!/usr/bin/env python3
"""Runnable demo: copy one file to two files and a TCP listener.

No external services needed; the TCP listener runs in-process.

    python examples/fanout_demo.py
"""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

from rich.console import Console

from pdd.config.arguments import parse_operations
from pdd.observability.logs import configure_logging
from pdd.pipeline.sequencer import Sequencer

console = Console()


async def main(workdir: Path) -> None:
    # 1. Something to copy
    src = workdir / "disk.img"
    src.write_bytes(bytes(i % 256 for i in range(10_000)))

    # 2. A listener standing in for a backup host
    received = bytearray()

    async def _handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        while chunk := await reader.read(65536):
            received.extend(chunk)
        writer.close()

    server = await asyncio.start_server(_handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]

    # 3. Same grammar as `pdd copy`
    operations = parse_operations(
        [
            f"if={src}",
            f"of={workdir / 'a.img'}",
            f"of={workdir / 'b.img'}",
            f"os=127.0.0.1:{port}",
            "bs=4096",
        ]
    )

    outcome = await Sequencer(operations).run_async()
    await asyncio.sleep(0.1)
    server.close()
    await server.wait_closed()

    for result in outcome.operations:
        console.print(f"[bold]#{result.index}[/bold] {result.summary}")
        for sink in result.sinks:
            console.print(f"  {sink.description}: {sink.blocks_written} blocks")
    intact = bytes(received) == src.read_bytes()
    console.print(f"[green]Listener received {len(received)} bytes[/green]", intact)


if __name__ == "__main__":
    configure_logging("info")
    with tempfile.TemporaryDirectory() as tmp:
        asyncio.run(main(Path(tmp)))
