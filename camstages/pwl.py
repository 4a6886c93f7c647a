"""Piecewise linear functions."""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, NamedTuple, Sequence, TextIO

DEFAULT_EPS = 1e-6


@dataclass
class Interval:
    """A closed interval [start, end]."""

    start: float
    end: float

    def contains(self, value: float) -> bool:
        return self.start <= value <= self.end

    def clip(self, value: float) -> float:
        if value < self.start:
            return self.start
        if value > self.end:
            return self.end
        return value

    def length(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class Point:
    """A 2-D point or vector."""

    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: Point) -> Point:
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point) -> Point:
        return Point(self.x - other.x, self.y - other.y)

    def __mul__(self, factor: float) -> Point:
        return Point(self.x * factor, self.y * factor)

    def __truediv__(self, factor: float) -> Point:
        return Point(self.x / factor, self.y / factor)

    def dot(self, other: Point) -> float:
        return self.x * other.x + self.y * other.y

    def len2(self) -> float:
        return self.x * self.x + self.y * self.y

    def length(self) -> float:
        return math.sqrt(self.len2())


class PerpType(Enum):
    """What kind of closest point :meth:`Pwl.invert` found."""

    NOT_FOUND = "not_found"
    START = "start"
    END = "end"
    VERTEX = "vertex"
    PERPENDICULAR = "perpendicular"


class Inversion(NamedTuple):
    """Result of :meth:`Pwl.invert`."""

    kind: PerpType
    perp: Point | None
    span: int


class Pwl:
    """A piecewise linear function given by its control points."""

    def __init__(self, points: Iterable[Point | Sequence[float]] = ()) -> None:
        self.points: list[Point] = [
            p if isinstance(p, Point) else Point(float(p[0]), float(p[1])) for p in points
        ]

    @classmethod
    def from_flat(cls, values: Iterable[float]) -> Pwl:
        """Build from a flat sequence x0, y0, x1, y1, ... with increasing x."""
        flat = [float(v) for v in values]
        if len(flat) % 2:
            raise ValueError("Pwl: odd number of values")
        pwl = cls()
        for x, y in zip(flat[::2], flat[1::2]):
            if pwl.points and x <= pwl.points[-1].x:
                raise ValueError("Pwl: x values must be strictly increasing")
            pwl.points.append(Point(x, y))
        if len(pwl.points) < 2:
            raise ValueError("Pwl: at least two points are required")
        return pwl

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[Point]:
        return iter(self.points)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Pwl):
            return NotImplemented
        return self.points == other.points

    def __repr__(self) -> str:
        return f"Pwl({[(p.x, p.y) for p in self.points]!r})"

    def _require_curve(self) -> None:
        if len(self.points) < 2:
            raise ValueError("Pwl: at least two points are required")

    def append(self, x: float, y: float, eps: float = DEFAULT_EPS) -> None:
        if not self.points or self.points[-1].x + eps < x:
            self.points.append(Point(x, y))

    def prepend(self, x: float, y: float, eps: float = DEFAULT_EPS) -> None:
        if not self.points or self.points[0].x - eps > x:
            self.points.insert(0, Point(x, y))

    def domain(self) -> Interval:
        return Interval(self.points[0].x, self.points[-1].x)

    def range(self) -> Interval:
        ys = [p.y for p in self.points]
        return Interval(min(ys), max(ys))

    def empty(self) -> bool:
        return not self.points

    def find_span(self, x: float, span: int) -> int:
        """Return the index of the segment containing x, starting from a guess."""
        self._require_curve()
        pts = self.points
        last_span = len(pts) - 2
        span = max(0, min(last_span, span))
        while span < last_span and x >= pts[span + 1].x:
            span += 1
        while span and x < pts[span].x:
            span -= 1
        return span

    def _eval_in_span(self, x: float, span: int) -> float:
        p0, p1 = self.points[span], self.points[span + 1]
        return p0.y + (x - p0.x) * (p1.y - p0.y) / (p1.x - p0.x)

    def eval(self, x: float, span: int | None = None) -> float:
        """Evaluate at x; span is an optional starting guess (-1 or None for none)."""
        self._require_curve()
        guess = len(self.points) // 2 - 1 if span is None or span == -1 else span
        return self._eval_in_span(x, self.find_span(x, guess))

    def invert(self, xy: Point, span: int = -1, eps: float = DEFAULT_EPS) -> Inversion:
        """Find the closest perpendicular to xy, searching from span + 1."""
        if span < -1:
            raise ValueError("Pwl: span must be at least -1")
        pts = self.points
        n = len(pts)
        prev_off_end = False
        for s in range(span + 1, n - 1):
            span_vec = pts[s + 1] - pts[s]
            t = (xy - pts[s]).dot(span_vec) / span_vec.len2()
            if t < -eps:
                if s == 0:
                    return Inversion(PerpType.START, pts[s], s)
                if prev_off_end:
                    return Inversion(PerpType.VERTEX, pts[s], s)
            elif t > 1 + eps:
                if s == n - 2:
                    return Inversion(PerpType.END, pts[s + 1], s)
                prev_off_end = True
            else:
                return Inversion(PerpType.PERPENDICULAR, pts[s] + span_vec * t, s)
        return Inversion(PerpType.NOT_FOUND, None, max(span + 1, n - 1))

    def compose(self, other: Pwl, eps: float = DEFAULT_EPS) -> Pwl:
        """Return the function that applies self first and then other."""
        self._require_curve()
        other._require_curve()
        pts, opts = self.points, other.points
        this_x, this_y = pts[0].x, pts[0].y
        this_span = 0
        other_span = other.find_span(this_y, 0)
        result = Pwl([Point(this_x, other.eval(this_y, other_span))])
        while this_span != len(pts) - 1:
            dx = pts[this_span + 1].x - pts[this_span].x
            dy = pts[this_span + 1].y - pts[this_span].y
            if (
                abs(dy) > eps
                and other_span + 1 < len(opts)
                and pts[this_span + 1].y >= opts[other_span + 1].x + eps
            ):
                this_x = pts[this_span].x + (opts[other_span + 1].x - pts[this_span].y) * dx / dy
                other_span += 1
                this_y = opts[other_span].x
            elif (
                abs(dy) > eps
                and other_span > 0
                and pts[this_span + 1].y <= opts[other_span - 1].x - eps
            ):
                this_x = pts[this_span].x + (opts[other_span + 1].x - pts[this_span].y) * dx / dy
                other_span -= 1
                this_y = opts[other_span].x
            else:
                this_span += 1
                this_x, this_y = pts[this_span].x, pts[this_span].y
            result.append(this_x, other.eval(this_y, other_span), eps)
        return result

    def map(self, f: Callable[[float, float], Any]) -> list[Any]:
        """Call f(x, y) at every control point and return the results."""
        return [f(p.x, p.y) for p in self.points]

    @staticmethod
    def map2(pwl0: Pwl, pwl1: Pwl, f: Callable[[float, float, float], Any]) -> list[Any]:
        """Call f(x, y0, y1) wherever either function has a control point."""
        pwl0._require_curve()
        pwl1._require_curve()
        p0, p1 = pwl0.points, pwl1.points
        span0 = span1 = 0
        x = min(p0[0].x, p1[0].x)
        results = [f(x, pwl0.eval(x, span0), pwl1.eval(x, span1))]
        while span0 < len(p0) - 1 or span1 < len(p1) - 1:
            if span0 == len(p0) - 1:
                span1 += 1
                x = p1[span1].x
            elif span1 == len(p1) - 1:
                span0 += 1
                x = p0[span0].x
            elif p0[span0 + 1].x > p1[span1 + 1].x:
                span1 += 1
                x = p1[span1].x
            else:
                span0 += 1
                x = p0[span0].x
            results.append(f(x, pwl0.eval(x, span0), pwl1.eval(x, span1)))
        return results

    @staticmethod
    def combine(
        pwl0: Pwl,
        pwl1: Pwl,
        f: Callable[[float, float, float], float],
        eps: float = DEFAULT_EPS,
    ) -> Pwl:
        """Build a Pwl whose values are f(x, y0, y1) at every knot of either input."""
        result = Pwl()

        def add(x: float, y0: float, y1: float) -> None:
            result.append(x, f(x, y0, y1), eps)

        Pwl.map2(pwl0, pwl1, add)
        return result

    def match_domain(self, domain: Interval, clip: bool = True, eps: float = DEFAULT_EPS) -> None:
        """Extend to cover domain, either flat (clip) or by extrapolation."""
        self._require_curve()
        start_x = self.points[0].x if clip else domain.start
        self.prepend(domain.start, self.eval(start_x, 0), eps)
        end_x = self.points[-1].x if clip else domain.end
        self.append(domain.end, self.eval(end_x, len(self.points) - 2), eps)

    def generate_lut(self) -> list[float]:
        """Evaluate at every integer from 0 to the end of the domain."""
        self._require_curve()
        end = int(self.domain().end + 1)
        lut = []
        span = 0
        for x in range(end):
            span = self.find_span(x, span)
            lut.append(self._eval_in_span(x, span))
        return lut

    def __imul__(self, d: float) -> Pwl:
        self.points = [Point(p.x, p.y * d) for p in self.points]
        return self

    def debug(self, file: TextIO | None = None) -> None:
        out = sys.stderr if file is None else file
        out.write("Pwl {\n")
        for p in self.points:
            out.write("\t(%g, %g)\n" % (p.x, p.y))
        out.write("}\n")