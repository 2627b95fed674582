from fractions import Fraction

import numpy as np
import pytest

from turbo_sr.errors import DimensionError
from turbo_sr.units import DIMENSIONLESS, Dimensions, Quantity, get_output_units, get_units, parse_units


def test_parse_units_reduces_to_si_base_dimensions():
    speed = parse_units("m/s")
    assert speed.dimensions == Dimensions.from_mapping({"length": 1, "time": -1})
    assert float(speed.value) == pytest.approx(1.0)

    force = parse_units("kg*m/s^2")
    assert force.dimensions == Dimensions.from_mapping({"mass": 1, "length": 1, "time": -2})


def test_parse_units_scales_prefixed_units():
    km = parse_units("km")
    assert km.dimensions == parse_units("m").dimensions
    assert float(km.value) == pytest.approx(1000.0)


def test_parse_units_dimensionless_and_unknown():
    assert parse_units("").is_dimensionless
    assert parse_units("1").is_dimensionless
    with pytest.raises(ValueError):
        parse_units("not_a_unit")


def test_quantity_addition_requires_matching_dimensions():
    m = parse_units("m")
    s = parse_units("s")
    assert (m + m).dimensions == m.dimensions
    with pytest.raises(DimensionError):
        m + s
    # DimensionError is a TypeError so generic dispatch failures catch it
    assert issubclass(DimensionError, TypeError)


def test_quantity_power_uses_rational_exponents():
    m = parse_units("m")
    root = m ** Quantity(np.float64(0.5))
    assert root.dimensions == Dimensions.from_mapping({"length": Fraction(1, 2)})
    with pytest.raises(DimensionError):
        m ** parse_units("s")


def test_quantity_rejects_plain_numbers():
    with pytest.raises(TypeError):
        parse_units("m") * 2.0


def test_get_units_and_output_units():
    units = get_units(["m", None, parse_units("s")])
    assert units is not None
    assert units[1].dimensions == DIMENSIONLESS
    assert str(units[0].dimensions) == "m"

    assert get_output_units(None, 3) == [None, None, None]
    assert get_output_units("m", 1)[0].dimensions == parse_units("m").dimensions
    with pytest.raises(ValueError):
        get_output_units("m", 2)
    with pytest.raises(ValueError):
        get_output_units(["m"], 2)
