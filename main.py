from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from pathlib import Path

from hazardwatch.config import AlarmConfig, ChannelConfig, HubConfig, SeismicConfig, VisionConfig
from hazardwatch.engine import HazardEngine
from hazardwatch.errors import DeviceUnavailable
from hazardwatch.hub import AlertHub
from hazardwatch.logging_utils import setup_logging
from hazardwatch.protocol import AlertEvent
from hazardwatch.sampler import list_input_devices

HELP = "commands: start | stop | dismiss | analyze <image path> | status | quit"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hazard detection and alert broadcast engine")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    sub = parser.add_subparsers(dest="command", required=True)

    hub = sub.add_parser("hub", help="Run the alert broadcast hub")
    hub.add_argument("--host", default=os.environ.get("HUB_HOST", "0.0.0.0"))
    hub.add_argument("--port", type=int, default=int(os.environ.get("HUB_PORT", "8766")))

    mon = sub.add_parser("monitor", help="Run one client: seismic monitoring + alert subscription")
    mon.add_argument("--hub-url", default=os.environ.get("HUB_URL", "ws://127.0.0.1:8766"))
    mon.add_argument("--topic", default=os.environ.get("ALERT_TOPIC", "alerts"))
    mon.add_argument("--device", default=os.environ.get("AUDIO_DEVICE"), help="Input device index or name substring")
    mon.add_argument("--no-seismic", action="store_true", help="Subscribe only; don't open the microphone")
    mon.add_argument("--no-alarm", action="store_true", help="Don't play alarm tones")

    sub.add_parser("devices", help="List audio input devices")
    return parser


async def _run_hub(args: argparse.Namespace) -> int:
    cfg = dataclasses.replace(HubConfig.from_env(), host=args.host, port=args.port)
    await AlertHub(cfg).run()
    return 0


def _print_transition(previous: AlertEvent | None, current: AlertEvent | None) -> None:
    if current is None:
        print("-- alert dismissed")
    elif current.kind == "seismic":
        print(f"!! SEISMIC ALERT magnitude={current.magnitude}  (type 'dismiss' to silence)")
    else:
        print("!! FIRE ALERT  (type 'dismiss' to silence)")


async def _run_monitor(args: argparse.Namespace) -> int:
    log = logging.getLogger("hazardwatch.cli")
    channel_cfg = dataclasses.replace(ChannelConfig.from_env(), hub_url=args.hub_url, topic=args.topic)
    seismic_cfg = dataclasses.replace(SeismicConfig.from_env(), audio_device=args.device)
    alarm_cfg = AlarmConfig.from_env()
    if args.no_alarm:
        alarm_cfg = dataclasses.replace(alarm_cfg, enabled=False)

    engine = HazardEngine(
        seismic=seismic_cfg,
        alarm=alarm_cfg,
        channel=channel_cfg,
        vision=VisionConfig.from_env(),
    )
    engine.alert.observe(_print_transition)

    def report() -> None:
        for control, message in sorted(engine.errors.items()):
            print(f"[{control}] {message}")

    try:
        await engine.connect()
        if not args.no_seismic:
            engine.start_monitoring()
        report()
        print(HELP)

        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            cmd, _, arg = line.strip().partition(" ")
            cmd = cmd.lower()
            if cmd in ("q", "quit", "exit"):
                break
            if cmd == "start":
                engine.start_monitoring()
            elif cmd == "stop":
                await engine.stop_monitoring()
            elif cmd == "dismiss":
                if not engine.dismiss():
                    print("-- nothing to dismiss")
            elif cmd == "analyze":
                path = Path(arg.strip())
                try:
                    image = path.read_bytes()
                except OSError as e:
                    print(f"[analyze] cannot read {path}: {e}")
                    continue
                detection = await engine.analyze_frame(image)
                if detection is not None:
                    print(f"-- fire detected: {detection.safety_note}")
                elif "analyze" not in engine.errors:
                    print("-- no fire detected")
            elif cmd == "status":
                print(
                    f"state={engine.state.value} monitoring={engine.monitoring} "
                    f"peak={engine.sampler.last_peak} magnitude={engine.last_magnitude} "
                    f"hub={'up' if engine.channel and engine.channel.connected else 'down'}"
                )
            elif cmd:
                print(HELP)
            report()
    finally:
        await engine.close()
        log.info("Session closed (state=%s)", engine.state.value)
    return 0


def _run_devices() -> int:
    try:
        devices = list_input_devices()
    except DeviceUnavailable as e:
        print(e.user_message)
        return 1
    print("Input devices:")
    for d in devices:
        print(f"[{d['index']:2d}] ch={d['channels']} defaultRate={d['rate']} {d['name']}")
    return 0


async def _amain() -> int:
    args = build_parser().parse_args()
    setup_logging(args.log_level)
    if args.command == "hub":
        return await _run_hub(args)
    if args.command == "monitor":
        return await _run_monitor(args)
    return _run_devices()


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
