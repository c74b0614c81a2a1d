"""
2-D affine transforms for mapping boxes from model space to display space.

Uses the column convention x' = a*x + c*y + tx, y' = b*x + d*y + ty.
"""
from dataclasses import dataclass
from typing import Tuple

from visual_clutter.core.events import BoundingBox


@dataclass(frozen=True)
class AffineTransform:
    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 1.0
    tx: float = 0.0
    ty: float = 0.0

    @classmethod
    def identity(cls) -> "AffineTransform":
        return cls()

    @classmethod
    def scale(cls, sx: float, sy: float) -> "AffineTransform":
        return cls(a=sx, d=sy)

    @classmethod
    def translate(cls, tx: float, ty: float) -> "AffineTransform":
        return cls(tx=tx, ty=ty)

    @classmethod
    def to_display(cls, width: float, height: float) -> "AffineTransform":
        """Map normalised [0, 1] coordinates onto a width x height display."""
        return cls.scale(width, height)

    def concat(self, other: "AffineTransform") -> "AffineTransform":
        """Transform that applies self first, then other."""
        return AffineTransform(
            a=self.a * other.a + self.b * other.c,
            b=self.a * other.b + self.b * other.d,
            c=self.c * other.a + self.d * other.c,
            d=self.c * other.b + self.d * other.d,
            tx=self.tx * other.a + self.ty * other.c + other.tx,
            ty=self.tx * other.b + self.ty * other.d + other.ty,
        )

    def apply_point(self, x: float, y: float) -> Tuple[float, float]:
        return (
            self.a * x + self.c * y + self.tx,
            self.b * x + self.d * y + self.ty,
        )

    def apply_rect(self, box: BoundingBox) -> BoundingBox:
        """Axis-aligned bounds of the transformed rectangle."""
        corners = [
            self.apply_point(x, y)
            for x in (box.x, box.max_x)
            for y in (box.y, box.max_y)
        ]
        xs = [p[0] for p in corners]
        ys = [p[1] for p in corners]
        return BoundingBox(x=min(xs), y=min(ys), width=max(xs) - min(xs), height=max(ys) - min(ys))
