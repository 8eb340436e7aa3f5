# ─────────────────────────────────────────────────────────────────────────────
# Path Parser: SVG path data → closed 2D outline
# ─────────────────────────────────────────────────────────────────────────────
# Supported commands: M L H V C S Q T Z, absolute and relative, with
# implicit repeated coordinate groups. Arcs (A) are rejected.
#
# Curves are flattened with a fixed number of parametric samples per
# segment. This is an approximation: tight curves get the same sample
# count as gentle ones.
#
# Only the first subpath is used. Parsing stops at the first Z or at the
# next moveto, whichever comes first.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import re
from dataclasses import dataclass

import numpy as np
import structlog

from sketchlift.exceptions import ReconstructionError

logger = structlog.get_logger(__name__)

_TOKEN_RE = re.compile(
    r"(?P<cmd>[A-Za-z])"
    r"|(?P<num>[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)"
    r"|(?P<sep>[\s,]+)"
    r"|(?P<bad>.)"
)

# Coordinates consumed per repetition of each command.
_ARITY = {"M": 2, "L": 2, "H": 1, "V": 1, "C": 6, "S": 4, "Q": 4, "T": 2, "Z": 0}


@dataclass
class Outline:
    """Closed 2D outline in SVG coordinates (Y down).

    ``points`` is ``(N, 2)`` float64 with ``points[0] == points[-1]``.
    ``explicit_close`` records whether the path itself carried a Z.
    """

    points: np.ndarray
    explicit_close: bool

    @property
    def vertices(self) -> np.ndarray:
        """Ring without the repeated closing point."""
        return self.points[:-1]

    @property
    def is_closed(self) -> bool:
        return bool(np.array_equal(self.points[0], self.points[-1]))


def _tokenize(d: str) -> list[tuple[str, str | float]]:
    tokens: list[tuple[str, str | float]] = []
    for match in _TOKEN_RE.finditer(d):
        kind = match.lastgroup
        text = match.group()
        if kind == "sep":
            continue
        if kind == "bad":
            raise ReconstructionError(f"Unexpected character {text!r} in path data")
        if kind == "cmd":
            if text.upper() not in _ARITY:
                raise ReconstructionError(f"Unsupported path command '{text}'")
            tokens.append(("cmd", text))
        else:
            tokens.append(("num", float(text)))
    return tokens


def _cubic(p0, p1, p2, p3, samples: int) -> list[tuple[float, float]]:
    t = np.linspace(0.0, 1.0, samples + 1)[1:, None]
    mt = 1.0 - t
    pts = (
        mt**3 * np.asarray(p0)
        + 3 * mt**2 * t * np.asarray(p1)
        + 3 * mt * t**2 * np.asarray(p2)
        + t**3 * np.asarray(p3)
    )
    return [tuple(p) for p in pts]


def _quadratic(p0, p1, p2, samples: int) -> list[tuple[float, float]]:
    t = np.linspace(0.0, 1.0, samples + 1)[1:, None]
    mt = 1.0 - t
    pts = mt**2 * np.asarray(p0) + 2 * mt * t * np.asarray(p1) + t**2 * np.asarray(p2)
    return [tuple(p) for p in pts]


def _reflect(control: tuple[float, float] | None, about: tuple[float, float]) -> tuple[float, float]:
    if control is None:
        return about
    return (2 * about[0] - control[0], 2 * about[1] - control[1])


def parse_outline(d: str, *, curve_samples: int = 12, auto_close: bool = True) -> Outline:
    """Parse SVG path data into a closed outline.

    Args:
        d: Path data string (the ``d`` attribute).
        curve_samples: Points emitted per curve segment.
        auto_close: When the path has no Z, append the first point.
            When False, an open path is rejected.

    Raises:
        ReconstructionError: unparsable data, unsupported commands, an
            open path with ``auto_close=False``, or fewer than three
            distinct points.
    """
    if curve_samples < 1:
        raise ReconstructionError("curve_samples must be at least 1")

    tokens = _tokenize(d)
    if not tokens:
        raise ReconstructionError("Path data is empty")
    if tokens[0][0] != "cmd" or str(tokens[0][1]).upper() != "M":
        raise ReconstructionError("Path data must start with a moveto command")

    points: list[tuple[float, float]] = []
    current = (0.0, 0.0)
    last_cubic_ctrl: tuple[float, float] | None = None
    last_quad_ctrl: tuple[float, float] | None = None
    explicit_close = False
    i = 0
    n = len(tokens)

    while i < n:
        kind, value = tokens[i]
        if kind != "cmd":
            raise ReconstructionError(f"Unexpected number {value} without a command")
        letter = str(value)
        cmd = letter.upper()
        relative = letter.islower()
        i += 1

        if cmd == "Z":
            explicit_close = True
            break
        if cmd == "M" and points:
            # Second subpath: ignored.
            logger.debug("outline_extra_subpath_ignored")
            break

        arity = _ARITY[cmd]
        groups = 0
        while i < n and tokens[i][0] == "num":
            args = [tokens[j][1] for j in range(i, min(i + arity, n)) if tokens[j][0] == "num"]
            if len(args) < arity:
                raise ReconstructionError(f"Command '{letter}' expects {arity} coordinates")
            i += arity
            groups += 1
            ox, oy = current if relative else (0.0, 0.0)

            if cmd == "M":
                # Repeated pairs after a moveto are implicit linetos.
                current = (ox + args[0], oy + args[1])
                points.append(current)
                last_cubic_ctrl = last_quad_ctrl = None
            elif cmd == "L":
                current = (ox + args[0], oy + args[1])
                points.append(current)
                last_cubic_ctrl = last_quad_ctrl = None
            elif cmd == "H":
                current = ((current[0] if relative else 0.0) + args[0], current[1])
                points.append(current)
                last_cubic_ctrl = last_quad_ctrl = None
            elif cmd == "V":
                current = (current[0], (current[1] if relative else 0.0) + args[0])
                points.append(current)
                last_cubic_ctrl = last_quad_ctrl = None
            elif cmd == "C":
                c1 = (ox + args[0], oy + args[1])
                c2 = (ox + args[2], oy + args[3])
                end = (ox + args[4], oy + args[5])
                points.extend(_cubic(current, c1, c2, end, curve_samples))
                current, last_cubic_ctrl, last_quad_ctrl = end, c2, None
            elif cmd == "S":
                c1 = _reflect(last_cubic_ctrl, current)
                c2 = (ox + args[0], oy + args[1])
                end = (ox + args[2], oy + args[3])
                points.extend(_cubic(current, c1, c2, end, curve_samples))
                current, last_cubic_ctrl, last_quad_ctrl = end, c2, None
            elif cmd == "Q":
                c1 = (ox + args[0], oy + args[1])
                end = (ox + args[2], oy + args[3])
                points.extend(_quadratic(current, c1, end, curve_samples))
                current, last_quad_ctrl, last_cubic_ctrl = end, c1, None
            elif cmd == "T":
                c1 = _reflect(last_quad_ctrl, current)
                end = (ox + args[0], oy + args[1])
                points.extend(_quadratic(current, c1, end, curve_samples))
                current, last_quad_ctrl, last_cubic_ctrl = end, c1, None

        if groups == 0:
            raise ReconstructionError(f"Command '{letter}' has no coordinates")

    ring = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    if not np.isfinite(ring).all():
        # Literals like 1e999 overflow to inf.
        raise ReconstructionError("Path data contains non-finite coordinates")
    if len(ring) > 1:
        # Drop consecutive duplicates (e.g. "L" back onto the current point).
        keep = np.ones(len(ring), dtype=bool)
        keep[1:] = np.any(ring[1:] != ring[:-1], axis=1)
        ring = ring[keep]

    distinct = len(np.unique(ring, axis=0)) if len(ring) else 0
    if distinct < 3:
        raise ReconstructionError(f"Outline needs at least 3 distinct points, got {distinct}")

    ends_at_start = np.array_equal(ring[0], ring[-1])
    if not ends_at_start:
        if not explicit_close and not auto_close:
            raise ReconstructionError("Outline is not closed")
        ring = np.vstack([ring, ring[:1]])

    return Outline(points=ring, explicit_close=explicit_close)
