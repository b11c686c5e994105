"""Virtual Chef chat route."""

from __future__ import annotations

from fastapi import APIRouter, Request

from virtualchef.config.settings import settings
from virtualchef.relay.service import ChatRelay, RelayConfig

router = APIRouter()
chat_relay = ChatRelay(RelayConfig.from_settings(settings))


@router.post("/virtual-chef")
async def virtual_chef(request: Request):
    return await chat_relay.handle(request)
