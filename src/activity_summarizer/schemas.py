"""Core data schemas for conversation segmentation."""

from pydantic import BaseModel, ConfigDict, Field


class Message(BaseModel):
    """A single chat message as delivered by the message source.

    `ts` is the platform timestamp id (fixed-point seconds as a string). It is
    kept as raw text here; segmentation parses and validates it.
    """

    model_config = ConfigDict(frozen=True)

    ts: str
    channel: str
    text: str = ""
    user: str | None = None
    thread_ts: str | None = None
    subtype: str | None = None

    @property
    def is_thread_reply(self) -> bool:
        """Return whether this message replies to another message's thread."""

        return bool(self.thread_ts) and self.thread_ts != self.ts


class Conversation(BaseModel):
    """A group of messages judged to belong to one exchange."""

    id: str
    channel_id: str
    channel_name: str | None = None
    is_thread: bool = False
    thread_ts: str | None = None
    messages: list[Message]
    start_time: str
    end_time: str
    participants: list[str] = Field(default_factory=list)
    message_count: int
    user_message_count: int = 0


class SegmentationStats(BaseModel):
    """Provenance counters for one segmentation run."""

    total_messages: int = 0
    total_conversations: int = 0
    threads_extracted: int = 0
    time_gap_splits: int = 0
    semantic_splits: int = 0

    @classmethod
    def combine(cls, parts: list["SegmentationStats"]) -> "SegmentationStats":
        """Sum counters across channels."""

        return cls(
            total_messages=sum(item.total_messages for item in parts),
            total_conversations=sum(item.total_conversations for item in parts),
            threads_extracted=sum(item.threads_extracted for item in parts),
            time_gap_splits=sum(item.time_gap_splits for item in parts),
            semantic_splits=sum(item.semantic_splits for item in parts),
        )


class ChannelFailure(BaseModel):
    """A channel whose segmentation could not complete."""

    channel_id: str
    error_type: str
    error: str
    message_count: int = 0


class SegmentationResult(BaseModel):
    """Partition of a message set into conversations, plus stats."""

    conversations: list[Conversation] = Field(default_factory=list)
    stats: SegmentationStats = Field(default_factory=SegmentationStats)
    failures: list[ChannelFailure] = Field(default_factory=list)


class ConversationGroup(BaseModel):
    """Related conversations, possibly across channels, reported as one activity."""

    id: str
    conversations: list[Conversation]
    shared_references: list[str] = Field(default_factory=list)
    start_time: str
    end_time: str
    participants: list[str] = Field(default_factory=list)
    channel_ids: list[str] = Field(default_factory=list)
    total_message_count: int
    total_user_message_count: int = 0
    has_threads: bool = False
    original_conversation_ids: list[str] = Field(default_factory=list)


class ConsolidationStats(BaseModel):
    """Counters describing why conversations were grouped."""

    original_conversations: int = 0
    consolidated_groups: int = 0
    bot_conversations_merged: int = 0
    trivial_conversations_merged: int = 0
    trivial_orphans_kept: int = 0
    adjacent_merged: int = 0
    proximity_merged: int = 0
    same_author_merged: int = 0
    reference_groups_merged: int = 0
    embedding_failures: int = 0


class ConsolidationResult(BaseModel):
    """Grouping of conversations; every input conversation is in exactly one group."""

    groups: list[ConversationGroup] = Field(default_factory=list)
    stats: ConsolidationStats = Field(default_factory=ConsolidationStats)
