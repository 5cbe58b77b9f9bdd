"""Live check-in QR view: re-renders on every input change, guarding against stale logo loads."""

import asyncio

from PIL import Image

from dojoqr.circular import CircularRenderer, RenderPass
from dojoqr.identity import CheckinIdentity
from dojoqr.logging import audit, get_logger

log = get_logger("view")


class CheckinQRView:
    """Holds the latest render pass for one location.

    ``trigger`` runs synchronously whenever the identity or colours change.
    A pass with a remote logo finishes later on the event loop; by then a
    newer pass may exist, so each pass carries the generation it was started
    with and its logo step checks it before painting.

    Triggers may also happen outside a running event loop (for example
    from the constructor); the logo step of such a pass starts on the next
    ``settle``.
    """

    def __init__(self, renderer: CircularRenderer, identity: CheckinIdentity | None = None):
        self.renderer = renderer
        self.identity = identity
        self.current: RenderPass | None = None
        self._generation = 0
        self._pending: set[asyncio.Task] = set()
        self._deferred: RenderPass | None = None
        if identity is not None:
            self.trigger(identity)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def surface(self) -> Image.Image | None:
        return self.current.surface if self.current else None

    def trigger(self, identity: CheckinIdentity) -> RenderPass:
        """Start a new pass for *identity* and make it current.

        Encoding failures propagate and leave the previous pass current.
        """
        generation = self._generation + 1
        pass_ = self.renderer.begin(identity, generation=generation)
        self._generation = generation
        self.identity = identity
        self.current = pass_

        if not pass_.complete:
            try:
                self._schedule(pass_)
            except RuntimeError:
                # No running loop; only the newest pass is worth finishing
                self._deferred = pass_
        return pass_

    def _schedule(self, pass_: RenderPass) -> None:
        task = asyncio.get_running_loop().create_task(
            self.renderer.complete(pass_, is_current=lambda: pass_.generation == self._generation)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def settle(self) -> None:
        """Wait until every outstanding logo load has finished."""
        if self._deferred is not None:
            pass_, self._deferred = self._deferred, None
            self._schedule(pass_)
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def on_token_rotated(self, location_id: str, token: str) -> None:
        """Token lifecycle listener: re-render with the new token."""
        if self.identity is None or self.identity.location_id != location_id:
            return
        audit("view.token_rotated", logger=log, location=location_id, token=token)
        self.trigger(self.identity.with_token(token))
