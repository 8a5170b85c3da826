import pytest

from geolayers.guess import GuessResolver, normalize_guess
from geolayers.models import Location


@pytest.fixture
def resolver(locations):
    return GuessResolver(locations)


@pytest.mark.parametrize("raw", ["BRA", "bra", " BrAzIl ", "brazil", "Brazil\n"])
def test_code_and_name_resolve_to_same_code(resolver, raw):
    assert resolver.resolve(raw) == "BRA"


def test_multi_word_names(resolver):
    assert resolver.resolve("united states of america") == "USA"


@pytest.mark.parametrize("raw", ["", "   ", None, "Atlantis", "BR"])
def test_unresolvable_input_returns_empty(resolver, raw):
    assert resolver.resolve(raw) == ""


def test_code_wins_over_name():
    resolver = GuessResolver([Location("AAA", "Bbb"), Location("BBB", "Ccc")])
    assert resolver.resolve("bbb") == "BBB"


def test_normalize_guess():
    assert normalize_guess("  FrAnCe ") == "france"
    assert normalize_guess(None) == ""
