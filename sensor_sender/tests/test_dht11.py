import pytest

from sensor_sender.lib.dht11_sim import Dht11Sim, Dht11SimConfig, Reading


def make_sensor(seed=0, **overrides) -> Dht11Sim:
    params = dict(min_humidity=5, max_humidity=98, min_temperature=10, max_temperature=50)
    params.update(overrides)
    return Dht11Sim.from_config(seed=seed, **params)


def test_baseline_within_configured_bounds():
    for seed in range(20):
        s = make_sensor(seed=seed)
        assert 5 <= s.base_humidity < 98
        assert 10 <= s.base_temperature < 50
        assert s.base_humidity == int(s.base_humidity)
        assert s.base_temperature == int(s.base_temperature)


def test_baseline_is_fixed_after_construction():
    s = make_sensor(seed=7)
    bh, bt = s.base_humidity, s.base_temperature
    for _ in range(100):
        s.sample()
    assert s.base_humidity == bh
    assert s.base_temperature == bt


def test_samples_stay_in_baseline_band():
    s = make_sensor(seed=3)
    for _ in range(2000):
        r = s.sample()
        assert s.base_humidity <= r.humidity < s.base_humidity + 2
        assert s.base_temperature <= r.temperature < s.base_temperature + 2


def test_narrow_bounds_give_expected_band():
    """
    With bounds [50, 51) and [25, 26) the baselines are exactly 50 and 25,
    so humidity stays in [50, 52) and temperature in [25, 27).
    """
    s = make_sensor(seed=11, min_humidity=50, max_humidity=51,
                    min_temperature=25, max_temperature=26)
    assert s.base_humidity == 50.0
    assert s.base_temperature == 25.0
    for _ in range(500):
        r = s.sample()
        assert 50.0 <= r.humidity < 52.0
        assert 25.0 <= r.temperature < 27.0


def test_custom_spread():
    s = make_sensor(seed=1, spread=0.5)
    for _ in range(500):
        r = s.sample()
        assert s.base_humidity <= r.humidity < s.base_humidity + 0.5


def test_same_seed_same_readings():
    a = make_sensor(seed=42)
    b = make_sensor(seed=42)
    assert [a.sample() for _ in range(10)] == [b.sample() for _ in range(10)]


def test_sample_returns_floats():
    r = make_sensor().sample()
    assert isinstance(r, Reading)
    assert isinstance(r.humidity, float)
    assert isinstance(r.temperature, float)


def test_error_rate_zero_never_injects():
    s = make_sensor(seed=5)
    for _ in range(1000):
        r = s.sample_with_error_rate(0.0)
        assert r.humidity > 0.0 and r.temperature > 0.0


def test_error_rate_one_always_injects():
    s = make_sensor(seed=5)
    for _ in range(100):
        assert s.sample_with_error_rate(1.0) == Reading(temperature=0.0, humidity=0.0)


def test_error_rate_converges():
    s = make_sensor(seed=2024)
    n = 20000
    zeros = 0
    for _ in range(n):
        r = s.sample_with_error_rate(0.03)
        zeros += (r.humidity == 0.0) + (r.temperature == 0.0)
    frac = zeros / (2 * n)
    assert abs(frac - 0.03) < 0.006


def test_read_uses_configured_error_rate():
    s = make_sensor(seed=9, error_rate=1.0)
    assert s.error_rate == 1.0
    assert s.read() == Reading(temperature=0.0, humidity=0.0)


@pytest.mark.parametrize("rate", [-0.1, 1.5])
def test_invalid_error_rate_raises_value_error(rate):
    s = make_sensor()
    with pytest.raises(ValueError):
        s.sample_with_error_rate(rate)


def test_non_numeric_error_rate_raises_type_error():
    s = make_sensor()
    with pytest.raises(TypeError):
        s.sample_with_error_rate("3%")


def test_inverted_humidity_bounds_raise():
    with pytest.raises(ValueError):
        Dht11Sim(Dht11SimConfig(min_humidity=60, max_humidity=60))


def test_inverted_temperature_bounds_raise():
    with pytest.raises(ValueError):
        make_sensor(min_temperature=40, max_temperature=20)


def test_non_positive_spread_raises():
    with pytest.raises(ValueError):
        make_sensor(spread=0.0)
