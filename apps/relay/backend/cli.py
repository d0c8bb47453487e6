"""
Command line entrypoint.

    realtime-relay serve [--host H] [--port P]
    realtime-relay send-file question.wav [--out recordings/]
    realtime-relay talk
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

import uvicorn

from apps.relay.backend.settings import HOST, PORT, RELAY_SESSION_CONFIG
from src.realtime_relay.api import UpstreamClient
from src.realtime_relay.batch import BatchAudioSender
from src.realtime_relay.config import UpstreamConfig
from src.realtime_relay.errors import ConnectError
from src.realtime_relay.playback import NullAudioPlayer, WavFileRecorder
from utils.ml_logging import get_logger

logger = get_logger("relay.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="realtime-relay",
        description="Relay microphone audio to the OpenAI Realtime API",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the relay websocket server")
    serve.add_argument("--host", default=HOST)
    serve.add_argument("--port", type=int, default=PORT)

    send_file = sub.add_parser("send-file", help="Stream WAV files and print the answer")
    send_file.add_argument("files", nargs="+", help="16-bit PCM WAV files (24 kHz mono)")
    send_file.add_argument("--out", default="", help="Directory for the assistant's WAV answers")
    send_file.add_argument("--timeout", type=float, default=60.0)

    sub.add_parser("talk", help="Converse through this machine's microphone and speaker")
    return parser


async def _send_files(files: List[str], out: str, timeout: float) -> int:
    config = UpstreamConfig.from_env(RELAY_SESSION_CONFIG or None)
    client = UpstreamClient(config, logger=logger)
    player = WavFileRecorder(out) if out else NullAudioPlayer(logger)
    sender = BatchAudioSender(client, player=player, logger=logger)
    try:
        await client.connect()
    except ConnectError as e:
        logger.error(str(e))
        return 1
    try:
        result = await sender.run(files, timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"No response within {timeout:.0f}s")
        return 1
    finally:
        await client.close()
    print(json.dumps(result, indent=2))
    return 0


async def _talk() -> int:
    # PyAudio is an optional extra; only this command needs it.
    from src.realtime_relay.local_agent import LocalVoiceAgent

    agent = LocalVoiceAgent(UpstreamConfig.from_env(RELAY_SESSION_CONFIG or None), logger=logger)
    try:
        await agent.run()
    except ConnectError as e:
        logger.error(str(e))
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        uvicorn.run("apps.relay.backend.main:app", host=args.host, port=args.port)
        return 0
    if args.command == "send-file":
        return asyncio.run(_send_files(args.files, args.out, args.timeout))
    try:
        return asyncio.run(_talk())
    except KeyboardInterrupt:
        logger.info("Conversation ended.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
