"""
Notification channel API Router.

POST /channels/{integration_id}/test sends a sample alert to one of the
caller's channels, authenticated by an account API key.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.core.database import get_db
from signalrelay.services.channel_tester import ChannelTester
from signalrelay.services.credential_resolver import CredentialResolver

logger = logging.getLogger(__name__)

router = APIRouter()


class ChannelTestResponse(BaseModel):
    success: bool = True
    message: str
    status: Optional[int] = None


def get_channel_tester(db: AsyncSession = Depends(get_db)) -> ChannelTester:
    return ChannelTester(db)


@router.post("/{integration_id}/test", response_model=ChannelTestResponse)
async def send_channel_test(
    integration_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    tester: ChannelTester = Depends(get_channel_tester),
):
    """Send a sample alert to a stored channel."""
    api_key = await CredentialResolver(db).authenticate_api_key(request.headers, request.query_params)
    result = await tester.send_test(api_key.user_id, integration_id)
    return ChannelTestResponse(message=result.message, status=result.status_code)
