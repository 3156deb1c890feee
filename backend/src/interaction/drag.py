"""Drag session — turns pointer events into a horizontal glitch distance.

    IDLE --pointer_down--> ACTIVE --pointer_up / cancel--> IDLE

The session knows nothing about windows or event loops. Whoever owns the
input (GlitchCanvas, the ZMQ server) feeds it discrete events and acts on
what it returns; once a session is active that owner routes every
move/up to it, wherever the pointer is.
"""

import logging
import math
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def to_canvas_y(pointer_y: float, canvas_top: float = 0.0, scale_y: float = 1.0) -> int:
    """Map a screen-space Y to a canvas row.

    scale_y is internal canvas height divided by displayed height.
    """
    return math.floor((pointer_y - canvas_top) * scale_y)


@dataclass
class DragSession:
    active: bool = False
    anchor_pointer_x: int = 0
    anchor_canvas_y: int = 0

    def pointer_down(
        self,
        pointer_x: float,
        pointer_y: float,
        *,
        canvas_top: float = 0.0,
        scale_y: float = 1.0,
    ) -> bool:
        """Start a gesture. Returns False if one is already in progress."""
        if self.active:
            logger.debug("pointer_down ignored: drag already active")
            return False
        self.active = True
        self.anchor_pointer_x = round(pointer_x)
        self.anchor_canvas_y = to_canvas_y(pointer_y, canvas_top, scale_y)
        return True

    def pointer_move(self, pointer_x: float) -> int | None:
        """Distance travelled since pointer_down, or None when idle."""
        if not self.active:
            return None
        return round(pointer_x) - self.anchor_pointer_x

    def pointer_up(self) -> bool:
        """End the gesture. True exactly once per started gesture."""
        if not self.active:
            return False
        self.active = False
        return True

    def cancel(self) -> bool:
        """Pointer capture lost. Ends the gesture like pointer_up."""
        return self.pointer_up()
