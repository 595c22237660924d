"""Offline demo archive.

Builds a small workspace with one public, one random, one password-protected
and one admin-only channel so the API and UI can be exercised without a Slack
token.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from faker import Faker

from .models import Channel, Message, User, Workspace, message_id, to_iso
from .storage import SQLiteStore

SAMPLE_WORKSPACE_ID = "sample-workspace"

_SAMPLE_CHANNELS = [
    ("C001", "general", False, False, None),
    ("C002", "random", False, False, None),
    ("C003", "private-project", True, False, "project123"),
    ("C004", "admin-only", True, True, "admin123"),
]


@dataclass
class SampleConfig:
    users: int = 3
    messages_per_channel: int = 5
    seed: int = 42


def _slug(text: str) -> str:
    return "".join(c for c in text.lower().replace(" ", ".") if c.isalnum() or c == ".")


def generate_users(config: SampleConfig, faker: Faker, rng: random.Random) -> list[User]:
    users: list[User] = []
    for idx in range(config.users):
        name = faker.name()
        users.append(
            User(
                id=f"U{idx + 1:03d}",
                workspace_id=SAMPLE_WORKSPACE_ID,
                username=_slug(name),
                display_name=name,
                avatar="",
                is_admin=1 if idx == 0 else int(rng.random() < 0.1),
            )
        )
    return users


def generate_messages(
    config: SampleConfig,
    channel_id: str,
    users: list[User],
    faker: Faker,
    rng: random.Random,
    *,
    now: datetime,
) -> list[Message]:
    messages: list[Message] = []
    count = config.messages_per_channel
    for idx in range(count):
        author = rng.choice(users)
        when = now - timedelta(hours=count - idx)
        ts = f"{when.timestamp():.6f}"
        messages.append(
            Message(
                id=message_id(channel_id, ts),
                channel_id=channel_id,
                ts=ts,
                user_id=author.id,
                username=author.username,
                text=faker.sentence(nb_words=rng.randint(4, 16)),
                timestamp=to_iso(when),
                thread_ts=None,
            )
        )
    return messages


def create_sample_data(store: SQLiteStore, config: SampleConfig | None = None) -> str:
    config = config or SampleConfig()
    rng = random.Random(config.seed)
    faker = Faker()
    faker.seed_instance(config.seed)
    now = datetime.now(tz=UTC).replace(microsecond=0)

    store.upsert_workspace(
        Workspace(
            id=SAMPLE_WORKSPACE_ID,
            name="Sample Workspace",
            domain="sample.slack.com",
            access_token="sample-token",
        )
    )
    users = generate_users(config, faker, rng)
    store.upsert_users(users)

    for channel_id, name, is_private, is_admin_only, password in _SAMPLE_CHANNELS:
        store.upsert_channel(
            Channel(
                id=channel_id,
                workspace_id=SAMPLE_WORKSPACE_ID,
                name=name,
                is_private=int(is_private),
                is_admin_only=int(is_admin_only),
                password=password,
                member_count=len(users),
            )
        )
        for message in generate_messages(config, channel_id, users, faker, rng, now=now):
            store.insert_message_if_absent(message)
        store.commit()
        store.refresh_channel_last_message(channel_id)

    store.mark_workspace_synced(SAMPLE_WORKSPACE_ID)
    return SAMPLE_WORKSPACE_ID
