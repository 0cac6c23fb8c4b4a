"""
Freehand signature capture engine.

Turns a stream of normalized pointer events (mouse or touch) into a raster
signature held on a Pillow image, and exports it as a PNG data URI.

The pieces, leaves first:
- map_event_to_point: client coordinates -> canvas-local CSS pixels
- Surface: backing store at css size * device pixel ratio, drawn in CSS pixels
- SignaturePad: capture session state machine (idle/drawing) plus the
  surface lifecycle (mount, resize, unmount) and export

A SignaturePad is owned by exactly one caller and is not thread-safe; callers
that share one across threads serialize access themselves (see SessionManager).
"""

from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from PIL import Image, ImageColor, ImageDraw

from .utils import encode_png_data_uri

logger = logging.getLogger(__name__)

# Sentinel handed to the change callback when there is no signature
NO_SIGNATURE = ""

# Largest backing store a surface may allocate (4096 x 4096)
MAX_BACKING_PIXELS = 4096 * 4096

ChangeCallback = Callable[[str], None]


class InputSource(str, Enum):
    MOUSE = "mouse"
    TOUCH = "touch"


class PointerAction(str, Enum):
    DOWN = "down"
    MOVE = "move"
    UP = "up"
    LEAVE = "leave"


class CaptureState(str, Enum):
    IDLE = "idle"
    DRAWING = "drawing"


@dataclass(frozen=True)
class Point:
    x: float
    y: float


ORIGIN = Point(0.0, 0.0)


@dataclass(frozen=True)
class Contact:
    client_x: float
    client_y: float


@dataclass(frozen=True)
class PointerEvent:
    """
    One input sample, whatever device produced it.

    Mouse events carry their position in client_x/client_y. Touch events carry
    the active contacts in touches; only the first one is used.
    """

    action: PointerAction
    source: InputSource = InputSource.MOUSE
    client_x: float = 0.0
    client_y: float = 0.0
    touches: Tuple[Contact, ...] = ()

    def client_position(self) -> Optional[Tuple[float, float]]:
        if self.source is InputSource.TOUCH:
            if not self.touches:
                return None
            first = self.touches[0]
            return first.client_x, first.client_y
        return self.client_x, self.client_y


@dataclass(frozen=True)
class BoundingRect:
    """Layout box of the drawable region, in CSS pixels."""

    left: float
    top: float
    width: float
    height: float

    @property
    def size(self) -> Tuple[float, float]:
        return self.width, self.height


def map_event_to_point(event: PointerEvent, rect: Optional[BoundingRect]) -> Optional[Point]:
    """
    Convert an event's client coordinates to canvas-local coordinates.

    Returns the origin when there is no geometry (surface not attached) and None
    for a touch event that has no active contact.
    """
    if rect is None:
        return ORIGIN
    position = event.client_position()
    if position is None:
        return None
    client_x, client_y = position
    if not (math.isfinite(client_x) and math.isfinite(client_y)):
        return None
    return Point(client_x - rect.left, client_y - rect.top)


@dataclass(frozen=True)
class StrokeStyle:
    color: str = "#000000"
    width: float = 2.0
    background: str = "#ffffff"


class Surface:
    """
    Raster backing store.

    The image is allocated at int(css size * scale) physical pixels and every
    drawing call takes CSS-pixel coordinates, multiplied by scale here. A zero
    area surface allocates nothing and ignores drawing.
    """

    def __init__(self, css_width: float, css_height: float, scale: float, style: StrokeStyle) -> None:
        if not all(math.isfinite(value) for value in (css_width, css_height, scale)):
            raise ValueError("Surface size and device pixel ratio must be finite")
        if scale <= 0:
            raise ValueError(f"Device pixel ratio must be positive, got {scale}")
        self.css_width = max(0.0, float(css_width))
        self.css_height = max(0.0, float(css_height))
        self.scale = float(scale)
        self.style = style
        self.backing_width = int(self.css_width * self.scale)
        self.backing_height = int(self.css_height * self.scale)
        if self.backing_width * self.backing_height > MAX_BACKING_PIXELS:
            raise ValueError(
                f"Surface of {self.backing_width}x{self.backing_height} pixels exceeds the limit "
                f"of {MAX_BACKING_PIXELS}"
            )
        self._ink = ImageColor.getrgb(style.color)[:3]
        self._paper = ImageColor.getrgb(style.background)[:3]

        self._image: Optional[Image.Image] = None
        self._draw: Optional[ImageDraw.ImageDraw] = None
        if not self.is_degenerate:
            self._image = Image.new("RGB", (self.backing_width, self.backing_height), self._paper)
            self._draw = ImageDraw.Draw(self._image)

    @property
    def is_degenerate(self) -> bool:
        return self.backing_width <= 0 or self.backing_height <= 0

    @property
    def backing_size(self) -> Tuple[int, int]:
        return self.backing_width, self.backing_height

    def fill_background(self) -> None:
        if self._draw is None:
            return
        self._draw.rectangle((0, 0, self.backing_width, self.backing_height), fill=self._paper)

    def draw_segment(self, start: Point, end: Point) -> bool:
        """Draw one round-capped segment. Returns False when nothing could be drawn."""
        if self._draw is None:
            return False

        width = self.style.width * self.scale
        x0, y0 = start.x * self.scale, start.y * self.scale
        x1, y1 = end.x * self.scale, end.y * self.scale
        self._draw.line([(x0, y0), (x1, y1)], fill=self._ink, width=max(1, round(width)))

        # Pillow has no line caps; a disc on each end gives round caps and joins
        radius = width / 2
        for x, y in ((x0, y0), (x1, y1)):
            self._draw.ellipse((x - radius, y - radius, x + radius, y + radius), fill=self._ink)
        return True

    def is_blank(self) -> bool:
        if self._image is None:
            return True
        colors = self._image.getcolors(maxcolors=1)
        return colors is not None and colors[0][1] == self._paper

    def to_png(self) -> Optional[bytes]:
        if self._image is None:
            return None
        buffer = io.BytesIO()
        self._image.save(buffer, format="PNG")
        return buffer.getvalue()


@dataclass
class CaptureSession:
    is_active: bool = False
    has_ink: bool = False
    last_point: Optional[Point] = None

    @property
    def state(self) -> CaptureState:
        return CaptureState.DRAWING if self.is_active else CaptureState.IDLE


class SignaturePad:
    """
    Signature capture widget without the widget.

    Lifecycle: construct, mount(rect, dpr), feed events through handle() (or the
    begin/extend/end stroke calls directly), resize() on layout changes,
    unmount() when done. The change callback receives a PNG data URI when a stroke
    that left ink is completed, and NO_SIGNATURE on clear.

    Resizing reallocates the surface and loses the ink, unless the pad was
    created with preserve_ink_on_resize=True; then the point history is kept and
    replayed onto the new surface.
    """

    def __init__(
        self,
        on_change: ChangeCallback,
        *,
        style: Optional[StrokeStyle] = None,
        preserve_ink_on_resize: bool = False,
    ) -> None:
        self._on_change = on_change
        self.style = style or StrokeStyle()
        self.preserve_ink_on_resize = preserve_ink_on_resize
        self.session = CaptureSession()
        self._surface: Optional[Surface] = None
        self._rect: Optional[BoundingRect] = None
        self._history: List[List[Point]] = []

    # -- Surface lifecycle ---------------------------------------------------
    @property
    def is_mounted(self) -> bool:
        return self._surface is not None

    @property
    def surface(self) -> Optional[Surface]:
        return self._surface

    @property
    def rect(self) -> Optional[BoundingRect]:
        return self._rect

    @property
    def state(self) -> CaptureState:
        return self.session.state

    @property
    def has_ink(self) -> bool:
        return self.session.has_ink

    def mount(self, rect: BoundingRect, device_pixel_ratio: float = 1.0) -> None:
        self._allocate(rect, device_pixel_ratio)
        self.session = CaptureSession()
        self._history = []
        logger.debug(f"Signature surface mounted at {self._surface.backing_size} (dpr={device_pixel_ratio})")

    def resize(self, rect: BoundingRect, device_pixel_ratio: Optional[float] = None) -> None:
        if self._surface is None:
            return
        scale = device_pixel_ratio if device_pixel_ratio is not None else self._surface.scale
        self._allocate(rect, scale)
        if self.preserve_ink_on_resize:
            self.session.has_ink = self._replay()
        else:
            self.session.has_ink = False
        logger.debug(f"Signature surface resized to {self._surface.backing_size} (dpr={scale})")

    def reposition(self, rect: BoundingRect) -> None:
        """Track a moved layout box; a changed size is a resize."""
        if self._surface is None or self._rect is None:
            return
        if rect.size != self._rect.size:
            self.resize(rect)
            return
        self._rect = rect

    def unmount(self) -> None:
        self._surface = None
        self._rect = None
        self.session = CaptureSession()
        self._history = []

    def _allocate(self, rect: BoundingRect, device_pixel_ratio: float) -> None:
        # A fresh Surface starts with the scale and stroke style applied and a white fill
        self._surface = Surface(rect.width, rect.height, device_pixel_ratio, self.style)
        self._rect = rect

    def _replay(self) -> bool:
        drew = False
        for stroke in self._history:
            for start, end in zip(stroke, stroke[1:]):
                drew = self._surface.draw_segment(start, end) or drew
        return drew

    # -- Stroke rendering ----------------------------------------------------
    def map_event(self, event: PointerEvent) -> Optional[Point]:
        return map_event_to_point(event, self._rect)

    def begin_stroke(self, point: Point) -> None:
        self.session.is_active = True
        self.session.last_point = point
        if self.preserve_ink_on_resize:
            self._history.append([point])

    def extend_stroke(self, point: Point) -> None:
        if not self.session.is_active or self.session.last_point is None:
            return
        drawn = self._surface is not None and self._surface.draw_segment(self.session.last_point, point)
        self.session.last_point = point
        if drawn:
            self.session.has_ink = True
        if self.preserve_ink_on_resize and self._history:
            self._history[-1].append(point)

    def end_stroke(self) -> Optional[str]:
        """
        Finish the active stroke.

        Returns the exported artifact when the pad has ink (the change callback
        has been invoked with it), otherwise None.
        """
        if not self.session.is_active:
            return None
        self.session.is_active = False
        self.session.last_point = None
        if not self.session.has_ink:
            return None
        artifact = self.export()
        self._on_change(artifact)
        return artifact

    def handle(self, event: PointerEvent) -> Optional[str]:
        """Feed one event through the state machine. Returns the artifact if a stroke committed."""
        if event.action is PointerAction.DOWN:
            point = self.map_event(event)
            if point is not None:
                self.begin_stroke(point)
            return None

        if event.action is PointerAction.MOVE:
            if not self.session.is_active:
                return None
            point = self.map_event(event)
            if point is not None:
                self.extend_stroke(point)
            return None

        # up and leave both end the stroke
        return self.end_stroke()

    def clear(self) -> str:
        self.session = CaptureSession()
        self._history = []
        if self._surface is not None:
            self._surface.fill_background()
        self._on_change(NO_SIGNATURE)
        return NO_SIGNATURE

    # -- Export ----------------------------------------------------------------
    def export_png(self) -> Optional[bytes]:
        if self._surface is None:
            return None
        return self._surface.to_png()

    def export(self) -> str:
        png = self.export_png()
        if png is None:
            return NO_SIGNATURE
        return encode_png_data_uri(png)
