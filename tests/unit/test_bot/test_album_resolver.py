"""Tests for resolving upload commands into upload targets."""

import pytest

from gallerybot.bot.features.album_resolver import (
    MODE_BATCH,
    MODE_SINGLE,
    SOURCE_CACHE_RECOVERED,
    SOURCE_QUOTED_SINGLE,
    AlbumResolver,
)
from gallerybot.bot.utils.envelope import normalize_envelope
from gallerybot.bot.utils.recent_messages import (
    InboundImageRecord,
    RecentMessageCache,
)
from gallerybot.exceptions import ResolutionError

GROUP = "120363000000000001@g.us"
ALICE = "6281111111111@s.whatsapp.net"
BOB = "6282222222222@s.whatsapp.net"


def _image_body(group_id=None):
    body = {"imageMessage": {"mimetype": "image/jpeg", "url": "https://mmg/x"}}
    if group_id:
        body["messageContextInfo"] = {
            "messageAssociation": {"parentMessageKey": {"id": group_id}}
        }
    return body


def _image(message_id, ts, *, group_id=None, participant=ALICE):
    raw = {
        "key": {"remoteJid": GROUP, "id": message_id, "participant": participant},
        "message": _image_body(group_id),
        "messageTimestamp": ts,
    }
    return normalize_envelope(raw)


def _command(quoted_id=None, quoted_body=None, *, ts=2000, participant=BOB):
    context = {}
    if quoted_body is not None:
        context = {
            "stanzaId": quoted_id,
            "participant": ALICE,
            "quotedMessage": quoted_body,
        }
    raw = {
        "key": {"remoteJid": GROUP, "id": "CMD", "participant": participant},
        "message": {"extendedTextMessage": {"text": "!upload", "contextInfo": context}},
        "messageTimestamp": ts,
    }
    return normalize_envelope(raw)


def _cache_with(*messages):
    cache = RecentMessageCache(max_entries=100, ttl_seconds=3600)
    for message in messages:
        cache.track(InboundImageRecord.from_message(message))
    return cache


def test_album_group_beats_unrelated_entries():
    """A tracked quoted photo with a group id resolves to its whole group."""
    cache = _cache_with(
        _image("G-3", 1004, group_id="G"),
        _image("G-1", 1000, group_id="G"),
        _image("G-2", 1002, group_id="G"),
        _image("U-1", 1001),
        _image("U-2", 1003, group_id="OTHER"),
    )
    resolver = AlbumResolver(cache, window_seconds=45)

    resolution = resolver.resolve(_command("G-2", _image_body("G")))

    assert [target.message_id for target in resolution.targets] == [
        "G-1",
        "G-2",
        "G-3",
    ]
    assert resolution.strategy == "cached_album_group"
    assert all(
        target.source_kind == SOURCE_CACHE_RECOVERED for target in resolution.targets
    )


def test_rapid_album_reply_to_second_photo_returns_all_in_send_order():
    """Replying to the middle photo of an album uploads the whole album."""
    cache = _cache_with(
        _image("IMG-A", 1000, group_id="alb1"),
        _image("IMG-B", 1002, group_id="alb1"),
        _image("IMG-C", 1004, group_id="alb1"),
    )
    resolver = AlbumResolver(cache)

    resolution = resolver.resolve(_command("IMG-B", _image_body("alb1")))

    assert resolution.mode == MODE_BATCH
    assert [target.timestamp_seconds for target in resolution.targets] == [
        1000,
        1002,
        1004,
    ]


def test_album_marker_falls_back_to_participant_proximity():
    """An untracked album placeholder collects the sender's photos nearby."""
    cache = _cache_with(
        _image("P-1", 1990),
        _image("P-2", 1992),
        _image("P-3", 1994),
        _image("P-4", 1996),
        _image("FAR", 1900),
        _image("BOB", 1995, participant=BOB),
    )
    resolver = AlbumResolver(cache, window_seconds=45)

    resolution = resolver.resolve(
        _command("ALBUM-1", {"albumMessage": {"expectedImageCount": 4}}, ts=2000)
    )

    assert [target.message_id for target in resolution.targets] == [
        "P-1",
        "P-2",
        "P-3",
        "P-4",
    ]
    assert resolution.strategy == "album_marker_proximity"


def test_album_marker_without_tracked_photos_fails():
    """Nothing tracked for an album reply is a terminal resolution error."""
    resolver = AlbumResolver(_cache_with(), window_seconds=45)

    with pytest.raises(ResolutionError) as exc_info:
        resolver.resolve(_command("ALBUM-1", {"albumMessage": {}}))

    assert exc_info.value.code == ResolutionError.ALBUM_TARGETS_NOT_FOUND


def test_untracked_single_photo_passes_through():
    """A never-seen plain photo resolves to itself."""
    resolver = AlbumResolver(_cache_with())

    resolution = resolver.resolve(_command("NEW-1", _image_body()))

    assert resolution.mode == MODE_SINGLE
    assert len(resolution.targets) == 1
    target = resolution.targets[0]
    assert target.message_id == "NEW-1"
    assert target.source_kind == SOURCE_QUOTED_SINGLE
    assert target.media_reference["key"]["id"] == "NEW-1"
    assert target.media_reference["message"] == _image_body()


def test_tracked_single_photo_without_group_uses_proximity():
    """A tracked photo without group id picks up its sender's burst."""
    cache = _cache_with(
        _image("S-1", 1000),
        _image("S-2", 1030),
        _image("S-3", 1100),
    )
    resolver = AlbumResolver(cache, window_seconds=45)

    resolution = resolver.resolve(_command("S-1", _image_body()))

    assert [target.message_id for target in resolution.targets] == ["S-1", "S-2"]
    assert resolution.strategy == "cached_proximity"


@pytest.mark.parametrize(
    ("quoted_body", "expected_code"),
    [
        (None, ResolutionError.MISSING_QUOTED_MESSAGE),
        ({"videoMessage": {}}, ResolutionError.VIDEO_NOT_SUPPORTED),
        ({"conversation": "teks biasa"}, ResolutionError.UNSUPPORTED_MEDIA),
        ({"stickerMessage": {}}, ResolutionError.UNSUPPORTED_MEDIA),
    ],
)
def test_classify_rejects_non_photo_replies(quoted_body, expected_code):
    """Commands without a photo reply fail before any strategy runs."""
    resolver = AlbumResolver(_cache_with())

    with pytest.raises(ResolutionError) as exc_info:
        resolver.resolve(_command("Q-1", quoted_body))

    assert exc_info.value.code == expected_code


def test_direct_chat_proximity_skips_own_photos():
    """Own photos in a direct chat stay out of the contact's burst."""

    def _direct(message_id, ts, *, from_me):
        return normalize_envelope(
            {
                "key": {"remoteJid": ALICE, "id": message_id, "fromMe": from_me},
                "message": _image_body(),
                "messageTimestamp": ts,
            }
        )

    cache = _cache_with(
        _direct("A-1", 1000, from_me=False),
        _direct("OWN-1", 1005, from_me=True),
        _direct("A-2", 1010, from_me=False),
    )
    command = normalize_envelope(
        {
            "key": {"remoteJid": ALICE, "id": "CMD", "fromMe": False},
            "message": {
                "extendedTextMessage": {
                    "text": "!upload",
                    "contextInfo": {
                        "stanzaId": "A-1",
                        "participant": ALICE,
                        "quotedMessage": _image_body(),
                    },
                }
            },
            "messageTimestamp": 1020,
        }
    )

    resolution = AlbumResolver(cache, window_seconds=45).resolve(command)

    assert [target.message_id for target in resolution.targets] == ["A-1", "A-2"]
