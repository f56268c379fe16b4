"""Relays server-ready notifications into the current preview target."""

from collections.abc import AsyncIterator
from contextlib import aclosing

from ..log_config import get_logger
from ..types import PreviewState, ServerReady


class PreviewBridge:
    """
    Last-write-wins holder of the preview URL.

    Every ready event replaces the target and puts it back into loading; the
    consumer acknowledges with mark_loaded/mark_failed. Acknowledgements
    carrying a superseded generation are ignored, so a stale load finishing
    late never marks a newer URL as loaded.
    """

    def __init__(self):
        self.url = ""
        self.port: int | None = None
        self.state = PreviewState.IDLE
        self.generation = 0
        self.log = get_logger("preview")

    def publish(self, event: ServerReady) -> None:
        self.url = event.url
        self.port = event.port
        self.generation += 1
        self.state = PreviewState.LOADING
        self.log.info(
            "preview.target",
            port=event.port,
            url=event.url,
            generation=self.generation,
        )

    def refresh(self) -> bool:
        if not self.url:
            return False
        self.generation += 1
        self.state = PreviewState.LOADING
        self.log.debug("preview.refresh", url=self.url, generation=self.generation)
        return True

    def _acknowledge(self, state: PreviewState, generation: int | None) -> bool:
        if not self.url:
            return False
        if generation is not None and generation != self.generation:
            self.log.debug(
                "preview.stale_ack",
                generation=generation,
                current_generation=self.generation,
            )
            return False
        self.state = state
        return True

    def mark_loaded(self, generation: int | None = None) -> bool:
        return self._acknowledge(PreviewState.LOADED, generation)

    def mark_failed(self, generation: int | None = None) -> bool:
        return self._acknowledge(PreviewState.ERROR, generation)

    def clear(self) -> None:
        if self.url:
            self.log.info("preview.cleared", url=self.url)
        self.url = ""
        self.port = None
        self.state = PreviewState.IDLE

    async def listen(self, events: AsyncIterator[ServerReady]) -> None:
        """Consume ready events until the channel ends or the task is cancelled."""
        async with aclosing(events) as stream:
            async for event in stream:
                self.publish(event)
