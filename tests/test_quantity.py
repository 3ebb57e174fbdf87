from decimal import Decimal

import pytest

from cluster_capacity.core.quantity import parse_quantity, resource_vector, to_amount


def test_cpu_is_stored_in_millicores():
    assert to_amount("cpu", "250m") == 250
    assert to_amount("cpu", "2") == 2000
    assert to_amount("cpu", 1.5) == 1500


def test_fractional_millicores_round_up():
    assert to_amount("cpu", "100500u") == 101


def test_binary_and_decimal_suffixes():
    assert parse_quantity("1Ki") == Decimal(1024)
    assert parse_quantity("2Gi") == Decimal(2 * 1024**3)
    assert parse_quantity("1k") == Decimal(1000)
    assert parse_quantity("3M") == Decimal(3_000_000)
    assert parse_quantity("1e3") == Decimal(1000)


def test_resource_vector_mixes_units():
    vec = resource_vector({"cpu": "500m", "memory": "128Mi", "nvidia.com/gpu": "1"})

    assert vec == {"cpu": 500, "memory": 128 * 1024**2, "nvidia.com/gpu": 1}


@pytest.mark.parametrize("raw", ["abc", "-1", "1Zi", "", True])
def test_invalid_quantities_raise(raw):
    with pytest.raises(ValueError):
        parse_quantity(raw)
