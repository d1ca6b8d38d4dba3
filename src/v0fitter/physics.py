"""Physics/math helpers for V0 vertexing and selection."""

from __future__ import annotations
__author__ = "Renato Quagliani <rquaglia@cern.ch>"


import math

from .models import Matrix3x3, ReferencePoint, Track, Vector3

# Fiducial tracking volume for crossing points, cm.
MAX_CROSSING_RADIUS = 120.0
MAX_CROSSING_ABS_Z = 300.0


def two_body_mass(
    p_pos: Vector3, m_pos: float, p_neg: Vector3, m_neg: float
) -> float:
    """Invariant mass of two daughters with given momenta and masses."""
    e_tot = math.sqrt(dot3(p_pos, p_pos) + m_pos * m_pos) + math.sqrt(
        dot3(p_neg, p_neg) + m_neg * m_neg
    )
    p_tot = add3(p_pos, p_neg)
    m2 = e_tot * e_tot - dot3(p_tot, p_tot)
    return math.sqrt(m2) if m2 >= 0.0 else -math.sqrt(-m2)


def impact_parameter_significances(track: Track, reference: ReferencePoint) -> tuple[float, float]:
    """Return `(|dxy/sigma_dxy|, |dz/sigma_dz|)` of a track w.r.t. a reference.

    The transverse denominator is always the track's own `dxy_error`. A
    non-positive error yields NaN, which fails every threshold comparison.
    """
    dxy = track.dxy(reference.transverse_origin(track))
    dz = track.dz(reference.position)
    return abs(safe_ratio(dxy, track.dxy_error)), abs(safe_ratio(dz, track.dz_error))


def decay_significance(displacement: Vector3, cov: Matrix3x3) -> float:
    """Distance over its uncertainty projected on the displacement direction.

    `sig = |d| / (sqrt(d^T C d) / |d|)`. NaN when the distance or the
    projected variance vanishes.
    """
    mag = norm3(displacement)
    var = similarity3(cov, displacement)
    if mag <= 0.0 or var <= 0.0:
        return math.nan
    sigma = math.sqrt(var) / mag
    return mag / sigma


def pointing_cosine(displacement: Vector3, momentum: Vector3) -> float:
    """Cosine of the angle between flight direction and momentum."""
    den = norm3(displacement) * norm3(momentum)
    if den <= 0.0:
        return math.nan
    return dot3(displacement, momentum) / den


def transverse(v: Vector3) -> Vector3:
    """Project a vector on the transverse plane."""
    return v[0], v[1], 0.0


def inside_tracking_volume(point: Vector3) -> bool:
    """Check a point against the fiducial tracker cylinder."""
    return (
        math.hypot(point[0], point[1]) <= MAX_CROSSING_RADIUS
        and abs(point[2]) <= MAX_CROSSING_ABS_Z
    )


def line_closest_points(
    p1: Vector3, u: Vector3, p2: Vector3, v: Vector3
) -> tuple[Vector3, Vector3] | None:
    """Points of closest approach between two 3D lines. `None` if parallel."""
    w0 = sub3(p1, p2)
    a = dot3(u, u)
    b = dot3(u, v)
    c = dot3(v, v)
    d = dot3(u, w0)
    e = dot3(v, w0)
    den = a * c - b * b

    if abs(den) < 1e-12:
        return None

    s = (b * e - c * d) / den
    t = (a * e - b * d) / den
    return add3(p1, scale3(u, s)), add3(p2, scale3(v, t))


def safe_ratio(num: float, den: float) -> float:
    """Ratio that is NaN instead of raising for a non-positive denominator."""
    if not den > 0.0:
        return math.nan
    return num / den


def solve_3x3(a: list[list[float]], b: list[float]) -> tuple[float, float, float] | None:
    """Solve 3x3 linear system by Gaussian elimination with pivoting."""
    m = [row[:] + [rhs] for row, rhs in zip(a, b, strict=True)]
    n = 3
    for col in range(n):
        pivot = max(range(col, n), key=lambda r: abs(m[r][col]))
        if abs(m[pivot][col]) < 1e-14:
            return None
        if pivot != col:
            m[col], m[pivot] = m[pivot], m[col]
        p = m[col][col]
        for j in range(col, n + 1):
            m[col][j] /= p
        for r in range(n):
            if r == col:
                continue
            factor = m[r][col]
            for j in range(col, n + 1):
                m[r][j] -= factor * m[col][j]
    return m[0][3], m[1][3], m[2][3]


def invert_3x3(a: list[list[float]]) -> Matrix3x3 | None:
    """Invert 3x3 matrix by Gaussian elimination."""
    m = [row[:] + [1.0 if i == j else 0.0 for j in range(3)] for i, row in enumerate(a)]
    n = 3
    for col in range(n):
        pivot = max(range(col, n), key=lambda r: abs(m[r][col]))
        if abs(m[pivot][col]) < 1e-14:
            return None
        if pivot != col:
            m[col], m[pivot] = m[pivot], m[col]
        p = m[col][col]
        for j in range(col, 2 * n):
            m[col][j] /= p
        for r in range(n):
            if r == col:
                continue
            factor = m[r][col]
            for j in range(col, 2 * n):
                m[r][j] -= factor * m[col][j]
    return symmetrize3((
        (m[0][3], m[0][4], m[0][5]),
        (m[1][3], m[1][4], m[1][5]),
        (m[2][3], m[2][4], m[2][5]),
    ))


def symmetrize3(a: Matrix3x3) -> Matrix3x3:
    """Average a matrix with its transpose to remove round-off asymmetry."""
    return tuple(
        tuple(0.5 * (a[i][j] + a[j][i]) for j in range(3)) for i in range(3)
    )  # type: ignore[return-value]


def sum_cov3(a: Matrix3x3, b: Matrix3x3) -> Matrix3x3:
    """Return element-wise sum of two 3x3 covariance matrices."""
    return (
        (a[0][0] + b[0][0], a[0][1] + b[0][1], a[0][2] + b[0][2]),
        (a[1][0] + b[1][0], a[1][1] + b[1][1], a[1][2] + b[1][2]),
        (a[2][0] + b[2][0], a[2][1] + b[2][1], a[2][2] + b[2][2]),
    )


def similarity3(cov: Matrix3x3, v: Vector3) -> float:
    """Quadratic form `v^T C v`."""
    return sum(v[i] * cov[i][j] * v[j] for i in range(3) for j in range(3))


def dot3(a: Vector3, b: Vector3) -> float:
    """3D dot product."""
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def cross3(a: Vector3, b: Vector3) -> Vector3:
    """3D cross product."""
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def norm3(a: Vector3) -> float:
    """Euclidean norm of a 3D vector."""
    return math.sqrt(dot3(a, a))


def add3(a: Vector3, b: Vector3) -> Vector3:
    return a[0] + b[0], a[1] + b[1], a[2] + b[2]


def sub3(a: Vector3, b: Vector3) -> Vector3:
    return a[0] - b[0], a[1] - b[1], a[2] - b[2]


def scale3(a: Vector3, s: float) -> Vector3:
    return a[0] * s, a[1] * s, a[2] * s


def unit3(a: Vector3) -> Vector3 | None:
    """Unit vector along `a`, `None` for a null vector."""
    n = norm3(a)
    if n <= 1e-16:
        return None
    return scale3(a, 1.0 / n)
