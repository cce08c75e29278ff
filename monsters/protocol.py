"""Wire formats for the registration and broadcast channels.

Registration channel (server -> client, then client -> server)::

    WELCOME TO <GAME NAME>
    Enter your name:
    <name>
    Welcome <name>! Your current score: <n>
    INFO CHANNEL=<bus-address> TOPIC=<topic>
    hit <clientTimestampMillis>          (repeatable)
    WINNER <name>                        (server, at most once per round)
    exit                                 (optional)

Broadcast channel payloads::

    <spawnId> <x> <y>
    WINNER <name>
    The game is over!
"""

from __future__ import annotations

from typing import Dict, Optional

from .models import BroadcastEvent, GameOverEvent, HitReport, SpawnEvent, WinnerEvent

NAME_PROMPT = "Enter your name:"
EXIT_COMMAND = "exit"
HIT_COMMAND = "hit"
WINNER_PREFIX = "WINNER"
INFO_PREFIX = "INFO"
GAME_OVER_TEXT = GameOverEvent().encode()


def welcome_line(game_name: str) -> str:
    return f"WELCOME TO {game_name}"


def greeting_line(name: str, score: int) -> str:
    return f"Welcome {name}! Your current score: {score}"


def info_line(bus_address: str, topic: str) -> str:
    return f"{INFO_PREFIX} CHANNEL={bus_address} TOPIC={topic}"


def winner_line(name: str) -> str:
    return WinnerEvent(name).encode()


def parse_info(line: str) -> Dict[str, str]:
    """Parse an ``INFO`` line into its ``KEY=value`` pairs."""
    if not line.startswith(INFO_PREFIX + " "):
        return {}
    values = {}
    for part in line[len(INFO_PREFIX) + 1:].split():
        key, sep, value = part.partition("=")
        if sep and key:
            values[key] = value
    return values


def is_exit(line: str) -> bool:
    return line.strip().lower() == EXIT_COMMAND


def parse_hit(line: str) -> Optional[HitReport]:
    """Parse ``hit <ts>`` or the legacy ``hit <cell> <ts>``.

    Returns ``None`` for anything malformed.
    """
    tokens = line.split()
    if not tokens or tokens[0].lower() != HIT_COMMAND or len(tokens) not in (2, 3):
        return None
    try:
        numbers = [int(token) for token in tokens[1:]]
    except ValueError:
        return None
    if any(number < 0 for number in numbers):
        return None
    if len(numbers) == 1:
        return HitReport(timestamp_ms=numbers[0])
    return HitReport(timestamp_ms=numbers[1], cell=numbers[0])


def parse_event(payload: str) -> Optional[BroadcastEvent]:
    """Decode a broadcast payload; unknown payloads yield ``None``."""
    text = payload.strip()
    if text == GAME_OVER_TEXT:
        return GameOverEvent()
    if text.startswith(WINNER_PREFIX + " "):
        name = text[len(WINNER_PREFIX) + 1:].strip()
        return WinnerEvent(name) if name else None
    parts = text.split()
    if len(parts) != 3:
        return None
    try:
        spawn_id, x, y = (int(part) for part in parts)
    except ValueError:
        return None
    return SpawnEvent(spawn_id=spawn_id, x=x, y=y)
