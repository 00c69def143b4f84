"""Manual channel control, mainly for testing a deployment's dialplan and sounds."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from api.dependencies import get_call_actions, get_signaling_link
from api.schemas import ChannelActionResponse, LinkStatusResponse, PlayRequest
from telephony.actions import CallActions
from telephony.signaling import SignalingLink

router = APIRouter(prefix="/ari", tags=["ari"])


@router.get("/status", response_model=LinkStatusResponse)
async def link_status(link: SignalingLink = Depends(get_signaling_link)) -> LinkStatusResponse:
    return LinkStatusResponse(
        connected=link.connected,
        application=link.app,
        timestamp=datetime.now(timezone.utc),
    )


@router.post("/{channel_id}/play", response_model=ChannelActionResponse)
async def play_on_channel(
    channel_id: str,
    body: PlayRequest,
    actions: CallActions = Depends(get_call_actions),
) -> ChannelActionResponse:
    await actions.play(channel_id, body.media)
    return ChannelActionResponse(success=True, message=f"Played {body.media} on channel {channel_id}")


@router.post("/{channel_id}/hangup", response_model=ChannelActionResponse)
async def hangup_channel(
    channel_id: str,
    actions: CallActions = Depends(get_call_actions),
) -> ChannelActionResponse:
    hung_up = await actions.hangup(channel_id)
    message = f"Channel {channel_id} hung up" if hung_up else f"Channel {channel_id} was already gone"
    return ChannelActionResponse(success=True, message=message)
