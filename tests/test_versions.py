import pytest

from alpine_provisioner.versions import is_constraint, parse_constraint, parse_version, satisfies


def test_numeric_components_compare_as_numbers():
    assert parse_version("2.10.0") > parse_version("2.9.9")
    assert parse_version("1.2") < parse_version("1.2.1")


def test_release_and_suffix_ordering():
    assert parse_version("2.43.0-r1") > parse_version("2.43.0-r0")
    assert parse_version("1.0_rc1") < parse_version("1.0")
    assert parse_version("1.0_alpha") < parse_version("1.0_beta")
    assert parse_version("1.0_p1") > parse_version("1.0")
    assert parse_version("1.0a") > parse_version("1.0")


def test_equal_versions():
    assert parse_version("3.1-r0") == parse_version("3.1")


def test_bad_versions_raise():
    with pytest.raises(ValueError):
        parse_version("latest")
    with pytest.raises(ValueError):
        parse_version("1.0_bogus")


def test_constraints():
    assert parse_constraint(">=2.40")[0] == ">="
    assert is_constraint("=1.2.3-r0")
    assert not is_constraint("present")
    assert not is_constraint(">=")

    assert satisfies("2.43.0-r0", ">=2.40")
    assert not satisfies("2.39.1-r0", ">=2.40")
    assert satisfies("1.2.3-r0", "=1.2.3-r0")
    assert satisfies("1.0", "<2")
    assert not satisfies("2.0", "<2")
    assert satisfies("3.0", ">2.9")
    assert satisfies("2.0-r3", "<=2.0-r3")


def test_fuzzy_constraint_matches_prefix():
    assert satisfies("8.5.0-r0", "~8.5")
    assert satisfies("8.5", "~8.5")
    assert not satisfies("8.50.0", "~8.5")
    assert not satisfies("8.6.0", "~8.5")
