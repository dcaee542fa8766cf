#!/usr/bin/env python3
"""
Konsolen-Client: Tritt einem Chat-Raum bei und zeigt die Nachrichten live an.

Eingaben:
    <text>                  Nachricht senden
    /reply <id> <text>      Auf eine Nachricht antworten
    /react <id> <emoji>     Reaktion setzen bzw. entfernen
    /delete <id>            Nachricht fuer mich loeschen
    /read                   Alle Nachrichten als gelesen markieren
    /quit                   Beenden

Verwendung:
    python chat_console.py --user 64f0c0ffee --token eyJhbGciOi... --room 650a1b2c3d
    python chat_console.py --user u1 --token t1 --room r1 --base-url http://localhost:3000/api
"""
import argparse
import asyncio
import logging

from collabchat.config import settings
from collabchat.main import ChatSession, open_session
from collabchat.services.api import ApiError


def print_timeline(session: ChatSession) -> None:
    print("-" * 60)
    for view in session.render():
        marker = "…" if view.pending else " "
        reply = f" (re: {view.reply_preview[:30]})" if view.reply_preview else ""
        reactions = " ".join(f"{emoji}{count}" for emoji, count in view.reactions.items())
        print(f"{marker} [{view.id[:10]}] {view.sender_name}{reply}: {view.content or view.type.value} {reactions}")
    for notice in session.notices:
        print(f"! {notice.title}: {notice.description}")
    session.notices.clear()


async def handle_line(session: ChatSession, room_id: str, line: str) -> bool:
    command, _, rest = line.partition(" ")
    if command == "/quit":
        return False
    if command == "/reply":
        parent_id, _, text = rest.partition(" ")
        result = await session.mutations.reply(parent_id, text, room_id=room_id)
    elif command == "/react":
        message_id, _, emoji = rest.partition(" ")
        result = await session.mutations.react(message_id, emoji)
    elif command == "/delete":
        result = await session.mutations.delete_for_self(rest.strip())
    elif command == "/read":
        session.mark_room_read()
        await session.mutations.drain()
        return True
    else:
        result = await session.mutations.send(room_id, line)
    if not result.ok and result.restored_input:
        print(f"Nicht gesendet, Entwurf: {result.restored_input}")
    return True


async def run(args: argparse.Namespace) -> None:
    async with open_session(
        args.user,
        lambda: args.token,
        api_base_url=args.base_url,
        socket_url=args.socket_url,
    ) as session:
        try:
            await session.open_room(args.room)
        except ApiError as exc:
            print(f"Raum konnte nicht geladen werden: {exc}")
            return
        loop = asyncio.get_running_loop()
        print_timeline(session)
        while True:
            line = (await loop.run_in_executor(None, input, "> ")).strip()
            if not line:
                print_timeline(session)
                continue
            try:
                if not await handle_line(session, args.room, line):
                    break
            except (KeyError, ValueError) as exc:
                print(f"Ungueltige Eingabe: {exc}")
            print_timeline(session)


def main():
    parser = argparse.ArgumentParser(description="Chat-Raum in der Konsole")
    parser.add_argument("--user", required=True, help="Eigene Benutzer-ID")
    parser.add_argument("--token", required=True, help="Bearer-Token")
    parser.add_argument("--room", required=True, help="Chat-Raum-ID")
    parser.add_argument(
        "--base-url", "-u",
        type=str,
        default=settings.api_base_url,
        help=f"REST-URL (Standard: {settings.api_base_url})",
    )
    parser.add_argument(
        "--socket-url",
        type=str,
        default=settings.socket_url,
        help=f"WebSocket-URL (Standard: {settings.socket_url})",
    )
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
