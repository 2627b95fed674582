"""
Lightweight physical quantities for dimensional analysis.

Dimensions are stored as rational exponents over the seven SI base
dimensions so arithmetic stays cheap inside per-node evaluation; unit strings
such as ``"kg*m/s^2"`` are parsed once with ``sympy.physics.units`` and
reduced to a scale factor plus a ``Dimensions`` vector.
"""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from functools import lru_cache
from typing import Any, Iterable, Mapping, Sequence

import numpy as np
from sympy.parsing.sympy_parser import convert_xor, parse_expr, standard_transformations
from sympy.physics import units as sympy_units
from sympy.physics.units import (
    Dimension,
    ampere,
    candela,
    convert_to,
    kelvin,
    kilogram,
    meter,
    mole,
    second,
)
from sympy.physics.units.quantities import Quantity as SympyQuantity
from sympy.physics.units.systems.si import SI, dimsys_SI

from .errors import DimensionError

BASE_DIMENSIONS: tuple[str, ...] = (
    "length",
    "mass",
    "time",
    "current",
    "temperature",
    "amount_of_substance",
    "luminous_intensity",
)
BASE_SYMBOLS: tuple[str, ...] = ("m", "kg", "s", "A", "K", "mol", "cd")
BASE_UNITS = (meter, kilogram, second, ampere, kelvin, mole, candela)

# Exponents like x^2.37 are legal; keep them rational but bounded.
MAX_EXPONENT_DENOMINATOR = 10_000

_ZERO = Fraction(0)
_UNIT_NAMESPACE: dict[str, SympyQuantity] = {
    name: value for name, value in vars(sympy_units).items() if isinstance(value, SympyQuantity)
}
_TRANSFORMATIONS = standard_transformations + (convert_xor,)


def _as_fraction(value: Any) -> Fraction:
    if isinstance(value, Fraction):
        return value
    if isinstance(value, int):
        return Fraction(value)
    return Fraction(float(value)).limit_denominator(MAX_EXPONENT_DENOMINATOR)


@dataclass(frozen=True, slots=True)
class Dimensions:
    """Exponents over the SI base dimensions, in ``BASE_DIMENSIONS`` order."""

    exponents: tuple[Fraction, ...] = (_ZERO,) * len(BASE_DIMENSIONS)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "Dimensions":
        unknown = set(mapping) - set(BASE_DIMENSIONS)
        if unknown:
            raise ValueError(f"Unknown base dimension(s): {sorted(unknown)}")
        return cls(tuple(_as_fraction(mapping.get(name, 0)) for name in BASE_DIMENSIONS))

    @property
    def is_dimensionless(self) -> bool:
        return all(exponent == 0 for exponent in self.exponents)

    def __mul__(self, other: "Dimensions") -> "Dimensions":
        return Dimensions(tuple(a + b for a, b in zip(self.exponents, other.exponents)))

    def __truediv__(self, other: "Dimensions") -> "Dimensions":
        return Dimensions(tuple(a - b for a, b in zip(self.exponents, other.exponents)))

    def __pow__(self, power: Any) -> "Dimensions":
        exponent = _as_fraction(power)
        return Dimensions(tuple(a * exponent for a in self.exponents))

    def __str__(self) -> str:
        if self.is_dimensionless:
            return "1"
        parts = []
        for symbol, exponent in zip(BASE_SYMBOLS, self.exponents):
            if exponent == 0:
                continue
            parts.append(symbol if exponent == 1 else f"{symbol}^{exponent}")
        return " ".join(parts)


DIMENSIONLESS = Dimensions()


@dataclass(frozen=True, slots=True)
class Quantity:
    """A magnitude in SI base units together with its dimensions.

    Arithmetic only accepts other ``Quantity`` objects; any other operand
    yields ``NotImplemented`` so Python raises ``TypeError``. Adding or
    subtracting mismatched dimensions raises ``DimensionError``.
    """

    value: Any
    dimensions: Dimensions = DIMENSIONLESS

    def same_dimensions(self, other: "Quantity") -> bool:
        return self.dimensions == other.dimensions

    @property
    def is_dimensionless(self) -> bool:
        return self.dimensions.is_dimensionless

    def ustrip(self) -> Any:
        return self.value

    def unit(self) -> "Quantity":
        return Quantity(np.float64(1.0), self.dimensions)

    def isfinite(self) -> bool:
        return bool(np.isfinite(self.value))

    def __add__(self, other: object) -> "Quantity":
        if not isinstance(other, Quantity):
            return NotImplemented
        if not self.same_dimensions(other):
            raise DimensionError(self.dimensions, other.dimensions, "add")
        return Quantity(self.value + other.value, self.dimensions)

    def __sub__(self, other: object) -> "Quantity":
        if not isinstance(other, Quantity):
            return NotImplemented
        if not self.same_dimensions(other):
            raise DimensionError(self.dimensions, other.dimensions, "subtract")
        return Quantity(self.value - other.value, self.dimensions)

    def __mul__(self, other: object) -> "Quantity":
        if not isinstance(other, Quantity):
            return NotImplemented
        return Quantity(self.value * other.value, self.dimensions * other.dimensions)

    def __truediv__(self, other: object) -> "Quantity":
        if not isinstance(other, Quantity):
            return NotImplemented
        return Quantity(self.value / other.value, self.dimensions / other.dimensions)

    def __pow__(self, other: object) -> "Quantity":
        if not isinstance(other, Quantity):
            return NotImplemented
        if not other.is_dimensionless:
            raise DimensionError(self.dimensions, other.dimensions, "raise to the power of")
        return Quantity(self.value**other.value, self.dimensions ** other.value)

    def __neg__(self) -> "Quantity":
        return Quantity(-self.value, self.dimensions)

    def __str__(self) -> str:
        if self.is_dimensionless:
            return f"{self.value}"
        return f"{self.value} {self.dimensions}"


def _dimension_name(key: Any) -> str:
    return str(getattr(key, "name", key))


@lru_cache(maxsize=256)
def parse_units(text: str) -> Quantity:
    """Parse a unit expression into a ``Quantity`` holding its SI scale.

    >>> float(parse_units("km").value)
    1000.0
    >>> str(parse_units("m/s^2").dimensions)
    'm s^-2'
    """
    stripped = text.strip()
    if stripped in ("", "1"):
        return Quantity(np.float64(1.0), DIMENSIONLESS)
    try:
        expr = parse_expr(stripped, local_dict=dict(_UNIT_NAMESPACE), transformations=_TRANSFORMATIONS)
    except (SyntaxError, TypeError, ValueError) as exc:
        raise ValueError(f"Could not parse units {text!r}") from exc
    if expr.free_symbols:
        names = sorted(str(symbol) for symbol in expr.free_symbols)
        raise ValueError(f"Unknown unit(s) {names} in {text!r}")

    dimension = Dimension(SI.get_dimensional_expr(expr))
    dependencies = dimsys_SI.get_dimensional_dependencies(dimension)
    exponents = {_dimension_name(key): power for key, power in dependencies.items()}
    scale = convert_to(expr, list(BASE_UNITS)).subs({unit: 1 for unit in BASE_UNITS})
    return Quantity(np.float64(float(scale)), Dimensions.from_mapping(exponents))


def get_units(units: Iterable[str | Quantity | None] | None) -> tuple[Quantity, ...] | None:
    """Normalise a sequence of unit strings / quantities; ``None`` means dimensionless."""
    if units is None:
        return None
    parsed: list[Quantity] = []
    for unit in units:
        if unit is None:
            parsed.append(Quantity(np.float64(1.0), DIMENSIONLESS))
        elif isinstance(unit, Quantity):
            parsed.append(unit)
        else:
            parsed.append(parse_units(str(unit)))
    return tuple(parsed)


def get_output_units(units: str | Quantity | Sequence[str | Quantity | None] | None, nout: int) -> list[Quantity | None]:
    """Return one output unit (or ``None``) per output column."""
    if units is None:
        return [None] * nout
    if isinstance(units, (str, Quantity)):
        if nout != 1:
            raise ValueError(f"Expected {nout} output units, got a single unit {units!r}")
        return list(get_units([units]) or ())
    parsed = list(get_units(units) or ())
    if len(parsed) != nout:
        raise ValueError(f"Expected {nout} output units, got {len(parsed)}")
    return parsed
