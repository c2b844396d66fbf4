"""Normalize raw Baileys message envelopes delivered by the gateway.

All transport-specific unwrapping (ephemeral and view-once containers,
reply context, album associations, protobuf ``Long`` timestamps) lives here.
Everything downstream works with :class:`NormalizedMessage`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

KIND_IMAGE = "image"
KIND_VIDEO = "video"
KIND_ALBUM = "album"
KIND_TEXT = "text"
KIND_UNSUPPORTED = "unsupported"

STATUS_BROADCAST_JID = "status@broadcast"
# Stands in for the linked account on messages it sent itself.
OWN_PARTICIPANT_ID = "me"

_WRAPPER_KEYS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
    "editedMessage",
)
_MAX_UNWRAP_DEPTH = 5
_MEDIA_KEYS = ("imageMessage", "videoMessage", "documentMessage", "stickerMessage")


@dataclass(frozen=True)
class MessageContent:
    """Classified message body."""

    kind: str
    text: str = ""
    album_group_id: Optional[str] = None
    body: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QuotedMessage:
    """The message a command replies to."""

    message_id: Optional[str]
    participant_id: Optional[str]
    content: MessageContent
    envelope: Dict[str, Any]

    @property
    def kind(self) -> str:
        return self.content.kind


@dataclass(frozen=True)
class NormalizedMessage:
    """Transport-neutral view of one inbound message."""

    message_id: str
    conversation_id: str
    participant_id: str
    timestamp_seconds: int
    content: MessageContent
    quoted: Optional[QuotedMessage]
    raw: Mapping[str, Any]
    from_me: bool = False
    push_name: Optional[str] = None

    @property
    def kind(self) -> str:
        return self.content.kind

    @property
    def text(self) -> str:
        return self.content.text

    @property
    def album_group_id(self) -> Optional[str]:
        return self.content.album_group_id

    @property
    def command(self) -> Optional[str]:
        """Lower-cased ``!command`` token, or None for plain text."""
        text = self.text.strip().lower()
        if not text.startswith("!"):
            return None
        return text.split()[0]

    @property
    def sender_name(self) -> str:
        """Display name, falling back to the phone part of the jid."""
        if self.push_name and self.push_name.strip():
            return self.push_name.strip()
        return self.participant_id.split("@")[0]


def parse_timestamp(value: Any) -> int:
    """Parse Baileys timestamps (int, numeric string or protobuf Long)."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return 0
    if isinstance(value, Mapping):
        low = int(value.get("low") or 0)
        high = int(value.get("high") or 0)
        return (high << 32) + (low & 0xFFFFFFFF)
    return 0


def unwrap_message(message: Any) -> Dict[str, Any]:
    """Strip ephemeral/view-once containers around the real content."""
    current = message if isinstance(message, dict) else {}
    for _ in range(_MAX_UNWRAP_DEPTH):
        for key in _WRAPPER_KEYS:
            wrapper = current.get(key)
            if isinstance(wrapper, dict) and isinstance(wrapper.get("message"), dict):
                current = wrapper["message"]
                break
        else:
            return current
    return current


def _association_parent_id(container: Any) -> Optional[str]:
    if not isinstance(container, Mapping):
        return None
    association = container.get("messageAssociation")
    if not isinstance(association, Mapping):
        return None
    parent_key = association.get("parentMessageKey")
    if not isinstance(parent_key, Mapping):
        return None
    parent_id = parent_key.get("id")
    return str(parent_id) if parent_id else None


def extract_album_group_id(
    message: Mapping[str, Any], *, message_id: Optional[str] = None
) -> Optional[str]:
    """Best-effort album grouping token.

    Album children point at the album message through a message association;
    depending on the client version it sits on ``messageContextInfo`` or on
    the media's own ``contextInfo``. The album message itself is the group.
    """
    candidates = [_association_parent_id(message.get("messageContextInfo"))]
    for media_key in _MEDIA_KEYS:
        media = message.get(media_key)
        if isinstance(media, Mapping):
            candidates.append(_association_parent_id(media))
            candidates.append(_association_parent_id(media.get("contextInfo")))
    if isinstance(message.get("albumMessage"), Mapping) and message_id:
        candidates.append(str(message_id))

    for candidate in candidates:
        if candidate:
            return candidate
    return None


def _is_image_document(document: Any) -> bool:
    if not isinstance(document, Mapping):
        return False
    return str(document.get("mimetype") or "").lower().startswith("image/")


def classify_content(
    message: Any, *, message_id: Optional[str] = None
) -> MessageContent:
    """Classify an (already unwrapped or raw) message body."""
    body = unwrap_message(message)
    group_id = extract_album_group_id(body, message_id=message_id)

    if isinstance(body.get("imageMessage"), Mapping):
        caption = body["imageMessage"].get("caption") or ""
        return MessageContent(KIND_IMAGE, str(caption), group_id, body)
    if _is_image_document(body.get("documentMessage")):
        caption = body["documentMessage"].get("caption") or ""
        return MessageContent(KIND_IMAGE, str(caption), group_id, body)
    if isinstance(body.get("videoMessage"), Mapping):
        caption = body["videoMessage"].get("caption") or ""
        return MessageContent(KIND_VIDEO, str(caption), group_id, body)
    if isinstance(body.get("albumMessage"), Mapping):
        return MessageContent(KIND_ALBUM, "", group_id, body)

    text = body.get("conversation")
    if not text and isinstance(body.get("extendedTextMessage"), Mapping):
        text = body["extendedTextMessage"].get("text")
    if isinstance(text, str):
        return MessageContent(KIND_TEXT, text, None, body)

    return MessageContent(KIND_UNSUPPORTED, "", group_id, body)


def _find_context_info(body: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    for key in ("extendedTextMessage", *_MEDIA_KEYS):
        inner = body.get(key)
        if isinstance(inner, Mapping) and isinstance(inner.get("contextInfo"), Mapping):
            return inner["contextInfo"]
    return None


def _build_quoted(
    context_info: Mapping[str, Any], conversation_id: str
) -> Optional[QuotedMessage]:
    quoted_body = context_info.get("quotedMessage")
    if not isinstance(quoted_body, dict):
        return None

    stanza_id = context_info.get("stanzaId")
    message_id = str(stanza_id) if stanza_id else None
    participant = context_info.get("participant") or None
    envelope: Dict[str, Any] = {
        "key": {
            "remoteJid": context_info.get("remoteJid") or conversation_id,
            "id": message_id,
            "fromMe": False,
            "participant": participant,
        },
        "message": quoted_body,
    }
    return QuotedMessage(
        message_id=message_id,
        participant_id=str(participant) if participant else None,
        content=classify_content(quoted_body, message_id=message_id),
        envelope=envelope,
    )


def normalize_envelope(raw: Any) -> Optional[NormalizedMessage]:
    """Build a :class:`NormalizedMessage`, or None for envelopes without content."""
    if not isinstance(raw, Mapping):
        return None
    key = raw.get("key")
    message = raw.get("message")
    if not isinstance(key, Mapping) or not isinstance(message, dict):
        return None

    message_id = key.get("id")
    conversation_id = key.get("remoteJid")
    if not message_id or not conversation_id:
        return None

    message_id = str(message_id)
    conversation_id = str(conversation_id)
    from_me = bool(key.get("fromMe"))
    if from_me:
        participant_id = OWN_PARTICIPANT_ID
    else:
        participant_id = str(key.get("participant") or conversation_id)
    content = classify_content(message, message_id=message_id)
    context_info = _find_context_info(content.body)
    quoted = _build_quoted(context_info, conversation_id) if context_info else None

    return NormalizedMessage(
        message_id=message_id,
        conversation_id=conversation_id,
        participant_id=participant_id,
        timestamp_seconds=parse_timestamp(raw.get("messageTimestamp")),
        content=content,
        quoted=quoted,
        raw=raw,
        from_me=from_me,
        push_name=raw.get("pushName") or None,
    )
