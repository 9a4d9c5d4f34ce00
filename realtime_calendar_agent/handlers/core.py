from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..audio.playback import PlaybackTrack, StreamPlayer
from ..audio.wav import decode_pcm16
from ..errors import ErrorCategory, InvalidState, TransportError
from ..state.conversation import ConversationItem, ItemDelta

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from ..session import RealtimeSession

logger = logging.getLogger(__name__)


async def handle_error(event: dict) -> None:
    """Log a server ``error`` event; the connection stays up."""

    error = event.get("error") or {}
    logger.error(
        "server_error",
        extra={
            "event_type": "server_error",
            "error_category": ErrorCategory.API.value,
            "error_code": error.get("code"),
            "error_message": error.get("message"),
            "event_id": error.get("event_id") or event.get("event_id"),
        },
    )


async def handle_conversation_interrupted(session: RealtimeSession) -> PlaybackTrack | None:
    """Stop playback, then cancel the response for the exact sample reached."""

    track = await session.player.interrupt()
    if track is None:
        return None
    try:
        await session.cancel_response(track.track_id, track.offset)
    except (InvalidState, TransportError) as exc:
        logger.warning(
            "cancel_response_failed",
            extra={
                "event_type": "cancel_response_failed",
                "track_id": track.track_id,
                "error": str(exc),
                "error_category": ErrorCategory.PROTOCOL.value,
            },
        )
    else:
        logger.info(
            "barge_in",
            extra={"event_type": "barge_in", "track_id": track.track_id, "offset": track.offset},
        )
    return track


async def handle_conversation_updated(
    item: ConversationItem,
    delta: ItemDelta | None,
    player: StreamPlayer,
    sample_rate_hz: int,
) -> None:
    """Play audio deltas and attach a WAV file to completed items with audio."""

    if delta is not None and delta.audio and player.connected:
        player.add_16bit_pcm(delta.audio, item.id)
    if item.status == "completed" and item.formatted.audio:
        item.formatted.file = decode_pcm16(item.formatted.audio, sample_rate_hz, sample_rate_hz)
