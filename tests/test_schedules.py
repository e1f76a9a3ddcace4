import pytest

from numnet.schedules import Exponential, Linear, take


@pytest.mark.unit
class TestExponential:
    def test_values(self):
        rates = take(Exponential(10), 5)

        assert rates[0] == 1.0
        assert rates[2] == pytest.approx(0.8187307531)
        assert all(a > b for a, b in zip(rates, rates[1:]))

    def test_never_restarts(self):
        rates = Exponential(2)
        first = take(rates, 3)
        second = take(rates, 3)

        assert second[0] < first[-1]

    @pytest.mark.parametrize("decay", [0, -1.0])
    def test_invalid_decay(self, decay):
        with pytest.raises(ValueError):
            Exponential(decay)


@pytest.mark.unit
class TestLinear:
    def test_values(self):
        assert take(Linear(0.9), 3) == pytest.approx([1.0, 0.9, 0.81])

    def test_unit_factor_is_constant(self):
        assert take(Linear(1.0), 4) == [1.0] * 4

    @pytest.mark.parametrize("factor", [0.0, 1.5])
    def test_invalid_factor(self, factor):
        with pytest.raises(ValueError):
            Linear(factor)
