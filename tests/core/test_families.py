"""Tests for links, variance functions, deviances and working weights."""

import numpy as np
import pytest
from scipy.integrate import quad

sm = pytest.importorskip("statsmodels.api")

from glmstats.core.families import (
    BinomialFamily,
    GaussianFamily,
    GenericFamily,
    Link,
    MultinomialFamily,
    get_family,
    get_link,
)


@pytest.fixture
def mu():
    return np.array([0.05, 0.2, 0.5, 0.7, 0.95])


@pytest.mark.parametrize(
    "name,power,sm_link",
    [
        ("identity", 0.0, sm.families.links.Identity()),
        ("logit", 0.0, sm.families.links.Logit()),
        ("log", 0.0, sm.families.links.Log()),
        ("inverse", 0.0, sm.families.links.InversePower()),
        ("tweedie", 0.5, sm.families.links.Power(power=0.5)),
    ],
)
def test_link_matches_statsmodels(mu, name, power, sm_link):
    link = Link(name, power=power)
    eta = sm_link(mu)
    np.testing.assert_allclose(link.link(mu), eta, rtol=1e-12)
    np.testing.assert_allclose(link.link_inv(eta), mu, rtol=1e-12)
    np.testing.assert_allclose(link.link_deriv(mu), sm_link.deriv(mu), rtol=1e-12)


def test_tweedie_link_power_zero_is_log():
    assert Link("tweedie", power=0.0) == Link("log")
    assert get_link("tweedie").name == "log"


def test_unknown_link_raises():
    with pytest.raises(ValueError, match="Unknown link"):
        Link("probit")


def test_inverse_link_stays_finite_at_zero():
    out = Link("inverse").link_inv(np.array([0.0, -0.0, 1e-12]))
    assert np.isfinite(out).all()


@pytest.mark.parametrize(
    "name,sm_family",
    [
        ("binomial", sm.families.Binomial()),
        ("poisson", sm.families.Poisson()),
        ("gamma", sm.families.Gamma()),
        ("gaussian", sm.families.Gaussian()),
    ],
)
def test_variance_matches_statsmodels(mu, name, sm_family):
    family = GenericFamily(name, get_link("identity"))
    np.testing.assert_allclose(family.variance(mu), sm_family.variance(mu), rtol=1e-12)


def test_tweedie_variance(mu):
    family = GenericFamily("tweedie", Link("log"), variance_power=1.5)
    np.testing.assert_allclose(family.variance(mu), mu**1.5, rtol=1e-12)


@pytest.mark.parametrize(
    "name,sm_family,y",
    [
        ("binomial", sm.families.Binomial(), np.array([0.0, 1.0, 1.0, 0.0, 1.0])),
        ("poisson", sm.families.Poisson(), np.array([0.0, 1.0, 2.0, 0.0, 3.0])),
        ("gamma", sm.families.Gamma(), np.array([0.1, 0.4, 0.3, 1.2, 0.9])),
    ],
)
def test_deviance_matches_statsmodels(mu, name, sm_family, y):
    family = get_family(name)
    np.testing.assert_allclose(family.deviance(y, mu).sum(), sm_family.deviance(y, mu), rtol=1e-10)
    np.testing.assert_allclose(family.likelihood(y, mu), 0.5 * family.deviance(y, mu), rtol=1e-12)


@pytest.mark.parametrize("y,m", [(0.5, 1.3), (2.0, 0.7), (1.1, 1.1)])
def test_tweedie_deviance_is_integral_of_variance(y, m):
    p = 1.5
    family = GenericFamily("tweedie", Link("log"), variance_power=p)
    expected = 2.0 * quad(lambda t: (y - t) / t**p, m, y)[0]
    np.testing.assert_allclose(family.deviance(np.array([y]), np.array([m]))[0], expected, rtol=1e-8, atol=1e-12)


@pytest.mark.parametrize("power", [1.0, 2.0])
def test_tweedie_rejects_poisson_and_gamma_powers(power):
    with pytest.raises(ValueError, match="Tweedie variance power"):
        GenericFamily("tweedie", Link("log"), variance_power=power)


class TestGetFamily:
    def test_closed_forms(self):
        assert isinstance(get_family("gaussian"), GaussianFamily)
        assert isinstance(get_family("binomial"), BinomialFamily)
        assert isinstance(get_family("Binomial"), BinomialFamily)

    def test_noncanonical_links_use_generic(self):
        family = get_family("gaussian", link="log")
        assert isinstance(family, GenericFamily)
        assert family.link.name == "log"

    def test_default_links(self):
        assert get_family("poisson").link.name == "log"
        assert get_family("gamma").link.name == "inverse"
        assert get_family("tweedie", tweedie_link_power=1.0).link == Link("tweedie", power=1.0)

    def test_instance_passthrough(self):
        family = GenericFamily("poisson", Link("log"))
        assert get_family(family) is family

    def test_multinomial(self):
        family = get_family("multinomial", n_classes=3)
        assert isinstance(family, MultinomialFamily)
        assert family.n_classes == 3
        with pytest.raises(NotImplementedError):
            family.compute_weights(np.zeros(2), np.zeros(2), 0.0, 1.0)

    def test_unknown_family_raises(self):
        with pytest.raises(ValueError, match="Unknown family"):
            get_family("negbin")


@pytest.fixture
def weights_inputs(rng):
    n = 50
    return {
        "eta": rng.normal(0.0, 1.5, size=n),
        "offset": rng.normal(0.0, 0.2, size=n),
        "prior_weight": rng.uniform(0.5, 2.0, size=n),
        "y_bin": rng.integers(0, 2, size=n).astype(np.float64),
        "y_gauss": rng.normal(size=n),
    }


def test_binomial_closed_form_matches_generic(weights_inputs):
    args = (weights_inputs["y_bin"], weights_inputs["eta"], weights_inputs["offset"], weights_inputs["prior_weight"])
    closed = BinomialFamily().compute_weights(*args)
    generic = GenericFamily("binomial", Link("logit")).compute_weights(*args)
    for a, b in zip(closed, generic, strict=True):
        np.testing.assert_allclose(a, b, rtol=1e-9)


def test_gaussian_closed_form_matches_generic(weights_inputs):
    args = (weights_inputs["y_gauss"], weights_inputs["eta"], weights_inputs["offset"], weights_inputs["prior_weight"])
    closed = GaussianFamily().compute_weights(*args)
    generic = GenericFamily("gaussian", Link("identity")).compute_weights(*args)
    for a, b in zip(closed, generic, strict=True):
        np.testing.assert_allclose(a, b, rtol=1e-12)


def test_poisson_working_weights(weights_inputs):
    y = np.round(np.abs(weights_inputs["y_gauss"]) * 3)
    eta, offset, pw = weights_inputs["eta"], weights_inputs["offset"], weights_inputs["prior_weight"]
    gw = get_family("poisson").compute_weights(y, eta, offset, pw)
    mu = np.exp(eta + offset)
    np.testing.assert_allclose(gw.mu, mu, rtol=1e-12)
    np.testing.assert_allclose(gw.w, pw * mu, rtol=1e-12)
    np.testing.assert_allclose(gw.z, eta + (y - mu) / mu, rtol=1e-12)


def test_binomial_mean_is_clamped():
    gw = BinomialFamily().compute_weights(np.array([1.0, 0.0]), np.array([800.0, -800.0]), 0.0, 1.0)
    assert np.all(gw.mu > 0.0)
    assert np.all(gw.mu < 1.0)
    assert np.isfinite(gw.l).all()
