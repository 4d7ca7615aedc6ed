#!/usr/bin/env python3
"""
A simple chat room built on protopeer requests.

The host runs an Application; every participant connects to it as a Peer.
Chat lines travel as "say" requests from a participant to the host, which
relays them to everybody else as "said" requests. Participants accept every
"said" request, so the sender learns how many people got the line.

Usage:
    # Start the host
    python examples/p2p_chat.py --host --port 8765 --name Alice

    # Join from other terminals
    python examples/p2p_chat.py --connect ws://127.0.0.1:8765/ --name Bob
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from loguru import logger

from protopeer import Application, connect
from protopeer.network import PeerError

# Configure logging
logging.basicConfig(level=logging.WARNING)
logger.remove()
logger.add(sys.stderr, level="INFO")


class ChatHost:
    def __init__(self, name: str, port: int):
        self.name = name
        self.app = Application()
        self.server = self.app.handle_websocket(port=port)

    async def start(self):
        """Start the chat host."""
        self.app.on_request("say", self.handle_say)
        self.app.on_peer_online(lambda peer: self.announce(f"{peer.id} joined"))
        self.app.on_peer_offline(lambda peer: self.announce(f"{peer.id} left"))
        await self.app.start()
        print(f"\n🚀 Chat hosted by {self.name} on {self.server.url}")

    async def stop(self):
        await self.app.close(close_servers=True)

    async def handle_say(self, peer, request, accept, reject):
        text = (request.data or {}).get("text", "")
        if not text:
            await reject("empty message", 400)
            return
        print(f"\n💬 {peer.id}: {text}")
        count = await self.relay(peer.id, text, exclude=peer)
        await accept({"delivered": count})

    def announce(self, text: str):
        print(f"\n🟢 {text}")
        asyncio.ensure_future(self.relay("host", text))

    async def relay(self, sender: str, text: str, exclude=None) -> int:
        """Forward a line to every participant except ``exclude``."""
        targets = [p for p in self.app.peers if p is not exclude]
        results = await asyncio.gather(
            *(p.send("said", {"sender": sender, "text": text}) for p in targets),
            return_exceptions=True,
        )
        return sum(1 for r in results if not isinstance(r, Exception))

    async def say(self, text: str):
        print(f"📤 Sent to {await self.relay(self.name, text)} participant(s)")


class ChatGuest:
    def __init__(self, name: str, url: str):
        self.name = name
        self.url = url
        self.peer = None

    async def start(self):
        """Join the chat."""
        separator = "&" if "?" in self.url else "?"
        self.peer = await connect(f"{self.url}{separator}peer_id={self.name}", peer_id="host")
        self.peer.on_request(self.handle_said)
        self.peer.on_close(lambda: print("\n🔴 Disconnected from host"))
        print(f"\n🚀 Joined {self.url} as {self.name}")

    async def stop(self):
        if self.peer is not None:
            self.peer.close()
            await self.peer.transport.wait_closed()

    async def handle_said(self, request, accept, reject):
        if request.method != "said":
            await reject("method not found", 404)
            return
        print(f"\n💬 {request.data['sender']}: {request.data['text']}")
        print("> ", end="", flush=True)
        await accept()

    async def say(self, text: str):
        result = await self.peer.send("say", {"text": text})
        print(f"📤 Sent to {result['delivered']} participant(s)")


async def input_loop(chat):
    """Handle user input in a loop."""
    loop = asyncio.get_running_loop()
    while True:
        try:
            text = await loop.run_in_executor(None, input, "> ")
        except (EOFError, KeyboardInterrupt):
            break
        if text.lower() == "/quit":
            break
        if not text.strip():
            continue
        try:
            await chat.say(text)
        except PeerError as e:
            print(f"\n⚠️  Error: {e}")


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="protopeer chat room")
    parser.add_argument("--name", required=True, help="Your display name in the chat")
    parser.add_argument("--host", action="store_true", help="Host the chat room")
    parser.add_argument("--port", type=int, default=8765, help="Port to host on")
    parser.add_argument("--connect", metavar="URL", help="WebSocket URL of the host")
    args = parser.parse_args()
    if not args.host and not args.connect:
        parser.error("either --host or --connect is required")
    return args


async def main():
    """Run the chat application."""
    args = parse_args()
    chat = ChatHost(args.name, args.port) if args.host else ChatGuest(args.name, args.connect)

    try:
        await chat.start()
        await input_loop(chat)
    except KeyboardInterrupt:
        print("\nShutting down...")
    finally:
        await chat.stop()
        print("Goodbye!")


if __name__ == "__main__":
    asyncio.run(main())
