"""In-memory stand-ins for the Discord and OpenAI objects the bot talks to."""

import itertools
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import discord

from ery.models.batch import MessageBatch, TriggerType
from ery.models.config import BotSettings
from ery.services.agent import AgentResult

BOT_ID = 900000000000000001
BOT_ROLE_ID = 900000000000000002
GUILD_ID = 800000000000000001
CHANNEL_ID = 700000000000000001
OWNER_ID = 600000000000000001
USER_ID = 500000000000000001

_BASE_TIME = datetime.now(timezone.utc) - timedelta(minutes=5)
_ticks = itertools.count(1)
_sent_ids = itertools.count(990000000000000001)
_DEFAULT = object()


def make_settings(**overrides):
    values = {"discord_token": "test-token", "ai_api_key": "test-key"}
    values.update(overrides)
    return BotSettings(**values)


def make_user(user_id=USER_ID, name="alice", *, bot=False):
    return SimpleNamespace(id=user_id, name=name, display_name=name.title(), bot=bot)


def make_guild(guild_id=GUILD_ID, *, permissions=None):
    bot_role = SimpleNamespace(id=BOT_ROLE_ID, name="Ery", position=1)
    me = SimpleNamespace(
        id=BOT_ID,
        name="ery",
        display_name="Ery",
        bot=True,
        roles=[bot_role],
        top_role=bot_role,
        guild_permissions=permissions if permissions is not None else discord.Permissions.all(),
    )
    return FakeGuild(guild_id, me)


class FakeGuild:
    def __init__(self, guild_id, me, *, name="Test Server", owner_id=OWNER_ID):
        self.id = guild_id
        self.name = name
        self.me = me
        self.owner_id = owner_id
        self.members = {}
        self.channels = {}

    def get_member(self, user_id):
        return self.members.get(user_id)

    async def fetch_member(self, user_id):
        member = self.members.get(user_id)
        if member is None:
            raise LookupError(user_id)
        return member

    def get_channel_or_thread(self, channel_id):
        return self.channels.get(channel_id)


class FakeChannel:
    """A text channel that remembers what was posted to it."""

    def __init__(self, channel_id=CHANNEL_ID, guild=None, *, name="general", permissions=None):
        self.id = channel_id
        self.name = name
        self.guild = guild
        self.permissions = permissions if permissions is not None else discord.Permissions.all()
        self.sent = []
        self.fetched = []
        self.fetch_error = None
        self._messages = {}
        if guild is not None:
            guild.channels[channel_id] = self

    def remember(self, message):
        self._messages[message.id] = message

    def permissions_for(self, member):
        return self.permissions

    async def fetch_message(self, message_id):
        self.fetched.append(message_id)
        if self.fetch_error is not None:
            raise self.fetch_error
        message = self._messages.get(message_id)
        if message is None:
            raise discord.DiscordException(f"Unknown message {message_id}")
        return message

    async def send(self, content, *, reply_to=None):
        bot = make_user(BOT_ID, "ery", bot=True)
        message = FakeMessage(
            next(_sent_ids),
            content,
            author=bot,
            channel=self,
            guild=self.guild,
            created_at=datetime.now(timezone.utc),
        )
        message.reply_to = reply_to
        self.sent.append(message)
        self.remember(message)
        return message

    async def history(self, limit=100, before=None, after=None):
        messages = sorted(self._messages.values(), key=lambda m: m.created_at, reverse=True)
        for message in messages[:limit]:
            yield message


class FakeMessage:
    def __init__(
        self,
        message_id,
        content="",
        *,
        author,
        channel,
        guild,
        created_at,
        mentions=(),
        role_mentions=(),
        mention_everyone=False,
        reference=None,
        attachments=(),
        embeds=(),
        reactions=(),
    ):
        self.id = message_id
        self.content = content
        self.author = author
        self.channel = channel
        self.guild = guild
        self.created_at = created_at
        self.mentions = list(mentions)
        self.role_mentions = list(role_mentions)
        self.mention_everyone = mention_everyone
        self.reference = reference
        self.attachments = list(attachments)
        self.embeds = list(embeds)
        self.reactions = list(reactions)
        self.pinned = False
        self.reply_to = None

    async def reply(self, content):
        return await self.channel.send(content, reply_to=self.id)

    def __repr__(self):
        return f"<FakeMessage id={self.id} content={self.content!r}>"


def make_message(
    message_id,
    content="",
    *,
    author=None,
    channel=None,
    guild=_DEFAULT,
    created_at=None,
    reply_to=None,
    resolved=True,
    **fields,
):
    """Build a message posted in ``channel`` (a fresh guild text channel by default).

    ``reply_to`` is either a message, which becomes the resolved reference
    unless ``resolved`` is False, or a bare message id.
    """

    if guild is _DEFAULT:
        guild = channel.guild if channel is not None else make_guild()
    if channel is None:
        channel = FakeChannel(CHANNEL_ID, guild)
    if created_at is None:
        created_at = _BASE_TIME + timedelta(milliseconds=next(_ticks))

    reference = None
    if reply_to is not None:
        if isinstance(reply_to, FakeMessage):
            reference = SimpleNamespace(
                message_id=reply_to.id, resolved=reply_to if resolved else None
            )
        else:
            reference = SimpleNamespace(message_id=reply_to, resolved=None)

    message = FakeMessage(
        message_id,
        content,
        author=author or make_user(),
        channel=channel,
        guild=guild,
        created_at=created_at,
        reference=reference,
        **fields,
    )
    channel.remember(message)
    return message


def completion(content=None, tool_calls=(), *, prompt_tokens=10, completion_tokens=5):
    """A chat completion shaped like the OpenAI SDK's response objects."""

    calls = [
        SimpleNamespace(
            id=call_id,
            type="function",
            function=SimpleNamespace(name=name, arguments=arguments),
        )
        for call_id, name, arguments in tool_calls
    ]
    message = SimpleNamespace(content=content, tool_calls=calls or None)
    return SimpleNamespace(
        choices=[
            SimpleNamespace(message=message, finish_reason="tool_calls" if calls else "stop")
        ],
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


class FakeOpenAI:
    """Replays scripted completions; exceptions in the script are raised instead."""

    def __init__(self, *responses, default=None):
        self.requests = []
        self._responses = list(responses)
        self._default = default
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        if self._responses:
            item = self._responses.pop(0)
        else:
            item = self._default if self._default is not None else completion()
        if isinstance(item, Exception):
            raise item
        return item


def make_bot_client():
    return SimpleNamespace(user=SimpleNamespace(id=BOT_ID))


def make_batch(*messages, trigger=TriggerType.MESSAGE_COUNT):
    """Seal ``messages`` (one fresh message by default) the way the batcher would."""

    if not messages:
        messages = (make_message(next(_ticks), "hello"),)
    first = messages[0]
    return MessageBatch(
        channel_id=first.channel.id,
        guild_id=first.guild.id if first.guild is not None else None,
        messages=tuple(messages),
        trigger_type=trigger,
        trigger_message_id=messages[-1].id,
    )


class ScriptedAgent:
    """Stands in for the agent: returns ``outcome`` (or raises it) once ``gate`` opens."""

    def __init__(self, outcome=None, gate=None):
        self.outcome = outcome
        self.gate = gate
        self.processed = []

    async def process_task_thread(self, thread):
        self.processed.append(thread.id)
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(self.outcome, Exception):
            raise self.outcome
        if self.outcome is not None:
            return self.outcome
        return AgentResult(
            success=True,
            batch_id=thread.batch_id,
            message_count=len(thread.batch.messages),
            iterations=1,
            termination="completed",
        )
