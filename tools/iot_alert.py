from __future__ import annotations

import argparse
import asyncio
import json

import websockets


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Simulate an IoT sensor raising a hazard alert on the hub")
    parser.add_argument("--server", default="ws://127.0.0.1:8766/iot", help="ws://host:port/iot")
    parser.add_argument("--type", choices=["fire", "seismic"], required=True)
    parser.add_argument("--magnitude", help="Magnitude to attach to a seismic alert, e.g. 4.2")
    parser.add_argument("--timeout-s", type=float, default=5.0)
    return parser


async def main() -> None:
    args = build_parser().parse_args()
    body: dict[str, object] = {"type": args.type}
    if args.magnitude:
        body["detail"] = {"magnitude": args.magnitude}
    async with websockets.connect(args.server, open_timeout=args.timeout_s) as ws:
        await ws.send(json.dumps(body, separators=(",", ":")))
        try:
            reply = await asyncio.wait_for(ws.recv(), timeout=args.timeout_s)
        except asyncio.TimeoutError:
            raise SystemExit("No reply from hub (timeout)")
        print(reply)
        if "error" in json.loads(reply):
            raise SystemExit(1)


if __name__ == "__main__":
    asyncio.run(main())
