"""Delivery confirmation shown on destination messages after a relay attempt."""

from __future__ import annotations

import logging

from core.config import CONFIRMATION_MESSAGE, CONFIRMATION_MODES, CONFIRMATION_NONE, CONFIRMATION_REACTION
from core.errors import DestinationError
from core.formatting import confirmation_text
from core.models import DestinationMessage
from core.ports import DestinationPort

LOGGER = logging.getLogger(__name__)

SUCCESS_EMOJI = "👍"
FAILURE_EMOJI = "❌"


class ConfirmationService:
    """Signals relay success or failure back on the originating message."""

    def __init__(self, destination: DestinationPort, mode: str) -> None:
        self._destination = destination
        if mode not in CONFIRMATION_MODES:
            LOGGER.warning("Unknown confirmation mode %r, using %s", mode, CONFIRMATION_REACTION)
            mode = CONFIRMATION_REACTION
        self._mode = mode

    @property
    def mode(self) -> str:
        return self._mode

    async def confirm(self, message: DestinationMessage, success: bool) -> None:
        if self._mode == CONFIRMATION_NONE:
            return

        if self._mode == CONFIRMATION_MESSAGE:
            if message.topic_id is None:
                return
            try:
                await self._destination.send_text(
                    confirmation_text(success),
                    topic_id=message.topic_id,
                    reply_to=message.message_id,
                )
            except DestinationError as exc:
                LOGGER.debug("Failed to send confirmation message: %s", exc)
            return

        # A failed reaction is not escalated to a text reply.
        emoji = SUCCESS_EMOJI if success else FAILURE_EMOJI
        try:
            await self._destination.set_reaction(message.message_id, emoji)
        except DestinationError as exc:
            LOGGER.debug("Failed to set confirmation reaction: %s", exc)
