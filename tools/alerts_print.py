from __future__ import annotations

import argparse
import asyncio
from datetime import datetime

import websockets

from hazardwatch.channel import topic_url
from hazardwatch.protocol import DEFAULT_TOPIC, ProtocolError, decode_alert


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Watch alerts broadcast on a hub topic")
    parser.add_argument("--hub", default="ws://127.0.0.1:8766", help="ws://host:port of the alert hub")
    parser.add_argument("--topic", default=DEFAULT_TOPIC)
    parser.add_argument("--raw", action="store_true", help="Print messages exactly as received")
    return parser


def format_alert(msg: str | bytes) -> str:
    try:
        event = decode_alert(msg)
    except ProtocolError as e:
        return f"?? malformed message ({e})"
    when = event.timestamp or datetime.now().astimezone().isoformat(timespec="seconds")
    if event.kind == "seismic":
        return f"{when} SEISMIC magnitude={event.magnitude}"
    return f"{when} FIRE"


async def main() -> None:
    args = build_parser().parse_args()
    url = topic_url(args.hub, args.topic)
    print(f"Listening on {url}")
    async with websockets.connect(url) as ws:
        async for msg in ws:
            print(msg if args.raw else format_alert(msg))


if __name__ == "__main__":
    asyncio.run(main())
