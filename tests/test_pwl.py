import io
import math

import pytest

from camstages.pwl import Interval, PerpType, Point, Pwl


def test_interval_contains_and_clip():
    iv = Interval(1.0, 3.0)
    assert iv.contains(1.0) and iv.contains(3.0)
    assert not iv.contains(3.5)
    assert iv.clip(0.0) == iv.start
    assert iv.clip(5.0) == iv.end
    assert iv.clip(2.5) == 2.5
    assert iv.length() == iv.end - iv.start


def test_point_operations():
    p, q = Point(3.0, 4.0), Point(1.0, -2.0)
    assert (p + q) - q == p
    assert (p * 2.0) / 2.0 == p
    assert p.dot(p) == p.len2()
    assert p.length() == pytest.approx(math.hypot(3.0, 4.0))


def test_from_flat_builds_points():
    pwl = Pwl.from_flat([0, 1, 2, 3])
    assert pwl.points == [Point(0, 1), Point(2, 3)]


@pytest.mark.parametrize("values", [[0, 1, 2], [0, 1, 0, 2], [5, 5], []])
def test_from_flat_rejects_bad_input(values):
    with pytest.raises(ValueError):
        Pwl.from_flat(values)


def test_eval_hits_knots_and_midpoints():
    pwl = Pwl([(0, 0), (4, 2), (10, 10)])
    for p in pwl:
        assert pwl.eval(p.x) == pytest.approx(p.y)
    for a, b in zip(pwl.points, pwl.points[1:]):
        assert pwl.eval((a.x + b.x) / 2) == pytest.approx((a.y + b.y) / 2)


def test_eval_extrapolates_last_segment():
    pwl = Pwl([(0, 0), (4, 2), (10, 10)])
    a, b = pwl.points[-2], pwl.points[-1]
    slope = (b.y - a.y) / (b.x - a.x)
    assert (pwl.eval(20) - b.y) / (20 - b.x) == pytest.approx(slope)


def test_eval_independent_of_span_guess():
    pwl = Pwl([(0, 0), (4, 2), (10, 10), (12, 3)])
    for x in (-1.0, 0.5, 4.0, 7.3, 11.0, 15.0):
        expected = pwl.eval(x)
        for guess in range(-1, 6):
            assert pwl.eval(x, guess) == pytest.approx(expected)


def test_find_span_brackets_x():
    pwl = Pwl([(0, 0), (4, 2), (10, 10), (12, 3)])
    for x in (0.0, 3.9, 4.0, 9.9, 11.5):
        for guess in (0, 1, 2, 5):
            s = pwl.find_span(x, guess)
            assert pwl.points[s].x <= x < pwl.points[s + 1].x


def test_eval_needs_two_points():
    with pytest.raises(ValueError):
        Pwl().eval(0.0)
    with pytest.raises(ValueError):
        Pwl([(1, 1)]).eval(1.0)


def test_append_and_prepend_respect_eps():
    pwl = Pwl([(0, 0), (10, 10)])
    pwl.append(10 + 1e-9, 5)
    pwl.prepend(-1e-9, 5)
    assert len(pwl) == 2
    pwl.append(11, 5)
    pwl.prepend(-1, 7)
    assert pwl.points[-1] == Point(11, 5)
    assert pwl.points[0] == Point(-1, 7)
    assert pwl.empty() is False
    assert Pwl().empty() is True


def test_domain_and_range():
    pwl = Pwl([(0, 3), (1, -2), (2, 7)])
    assert pwl.domain() == Interval(0, 2)
    assert pwl.range() == Interval(-2, 7)


def test_invert_perpendicular_start_end():
    pwl = Pwl([(0, 0), (10, 0)])
    res = pwl.invert(Point(5, 3))
    assert res.kind is PerpType.PERPENDICULAR
    assert res.perp == Point(5, 0)
    start = pwl.invert(Point(-5, 1))
    assert start.kind is PerpType.START and start.perp == Point(0, 0)
    end = pwl.invert(Point(15, 1))
    assert end.kind is PerpType.END and end.perp == Point(10, 0)


def test_invert_vertex_and_not_found():
    pwl = Pwl([(0, 0), (5, 5), (10, 0)])
    res = pwl.invert(Point(5, 10))
    assert res.kind is PerpType.VERTEX
    assert res.perp == Point(5, 5)
    none = pwl.invert(Point(5, 10), span=len(pwl) - 2)
    assert none.kind is PerpType.NOT_FOUND and none.perp is None


def test_invert_rejects_bad_span():
    with pytest.raises(ValueError):
        Pwl([(0, 0), (1, 1)]).invert(Point(0, 0), span=-2)


@pytest.mark.parametrize(
    "f_points",
    [[(0, 0), (10, 10)], [(0, 0), (4, 2), (10, 10)]],
)
def test_compose_matches_function_composition(f_points):
    f = Pwl(f_points)
    g = Pwl([(0, 0), (5, 10), (10, 10)])
    h = f.compose(g)
    for i in range(21):
        x = i * 0.5
        assert h.eval(x) == pytest.approx(g.eval(f.eval(x)))


def test_map_visits_every_point():
    pwl = Pwl([(0, 1), (2, 3), (4, 5)])
    assert pwl.map(lambda x, y: (x, y)) == [(0, 1), (2, 3), (4, 5)]


def test_map2_visits_union_of_knots():
    a = Pwl([(0, 0), (10, 10)])
    b = Pwl([(0, 5), (4, 1), (10, 5)])
    xs = Pwl.map2(a, b, lambda x, y0, y1: x)
    assert xs == [0, 4, 10, 10]


def test_combine_sums_functions():
    a = Pwl([(0, 0), (10, 10)])
    b = Pwl([(0, 5), (4, 1), (10, 5)])
    c = Pwl.combine(a, b, lambda x, y0, y1: y0 + y1)
    assert [p.x for p in c] == [0, 4, 10]
    for i in range(11):
        assert c.eval(i) == pytest.approx(a.eval(i) + b.eval(i))


def test_match_domain_clip():
    pwl = Pwl([(2, 2), (8, 8)])
    pwl.match_domain(Interval(0, 10))
    assert pwl.points == [Point(0, 2), Point(2, 2), Point(8, 8), Point(10, 8)]


def test_match_domain_extrapolate():
    pwl = Pwl([(2, 2), (8, 8)])
    pwl.match_domain(Interval(0, 10), clip=False)
    assert pwl.domain() == Interval(0, 10)
    assert pwl.eval(0) == pytest.approx(0)


def test_generate_lut_matches_eval():
    pwl = Pwl([(0, 0), (3, 6), (7, 1)])
    lut = pwl.generate_lut()
    assert len(lut) == int(pwl.domain().end) + 1
    for x, value in enumerate(lut):
        assert value == pytest.approx(pwl.eval(x))


def test_imul_scales_y():
    pwl = Pwl([(0, 1), (2, -3)])
    original = list(pwl.points)
    pwl *= 2.0
    assert [p.x for p in pwl] == [p.x for p in original]
    assert [p.y for p in pwl] == [p.y * 2.0 for p in original]


def test_debug_output():
    buf = io.StringIO()
    Pwl([(0, 0), (1, 2)]).debug(buf)
    assert buf.getvalue() == "Pwl {\n\t(0, 0)\n\t(1, 2)\n}\n"