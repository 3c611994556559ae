import pytest

from symlog.vmodule import SiteFlag, VModuleRegistry, module_base_name, safe_fnmatch


@pytest.mark.parametrize("text", ["", "a", "abc", "logging", "vlog_is_on"])
def test_literal_pattern_matches_itself(text):
    assert safe_fnmatch(text, text) is True


@pytest.mark.parametrize("text", ["", "a", "abc", "some_module"])
def test_star_matches_everything(text):
    assert safe_fnmatch("*", text) is True


@pytest.mark.parametrize("text", ["a", "ab", "abcd"])
def test_question_marks_match_same_length(text):
    assert safe_fnmatch("?" * len(text), text) is True
    assert safe_fnmatch("?" * (len(text) + 1), text) is False


@pytest.mark.parametrize(
    "pattern,string,expected",
    [
        ("a*c", "abbbc", True),
        ("a*", "a", True),
        ("a*c", "abd", False),
        ("abc", "abd", False),
        ("a", "", False),
        ("", "a", False),
        ("a**", "a", False),
        ("*b*", "abc", True),
    ],
)
def test_fnmatch_cases(pattern, string, expected):
    assert safe_fnmatch(pattern, string) is expected


@pytest.mark.parametrize(
    "fname,expected",
    [
        ("/path/to/foo-inl.h", "foo"),
        ("foo.cc", "foo"),
        ("dir/bar", "bar"),
        ("a/b/c.tar.gz", "c"),
    ],
)
def test_module_base_name(fname, expected):
    assert module_base_name(fname) == expected


def test_vmodule_levels_apply():
    reg = VModuleRegistry("foo=2,bar=1", 0)
    assert reg.vlog_is_on(SiteFlag(), "src/foo.cc", 2) is True
    assert reg.vlog_is_on(SiteFlag(), "src/foo.cc", 3) is False
    assert reg.vlog_is_on(SiteFlag(), "src/bar.cc", 1) is True
    assert reg.vlog_is_on(SiteFlag(), "src/bar.cc", 2) is False


def test_default_level_for_unmatched_module():
    reg = VModuleRegistry("foo=5", 1)
    assert reg.vlog_is_on(SiteFlag(), "other.cc", 1) is True
    assert reg.vlog_is_on(SiteFlag(), "other.cc", 2) is False


def test_wildcard_in_spec():
    reg = VModuleRegistry("f*=3", 0)
    assert reg.vlog_is_on(SiteFlag(), "foo.cc", 3) is True
    assert reg.vlog_is_on(SiteFlag(), "goo.cc", 1) is False


def test_malformed_entry_skipped():
    reg = VModuleRegistry("foo=x,bar=2", 0)
    assert reg.vlog_is_on(SiteFlag(), "foo.cc", 1) is False
    assert reg.vlog_is_on(SiteFlag(), "bar.cc", 2) is True


def test_set_vlog_level_returns_previous_and_updates():
    reg = VModuleRegistry("foo=2", 0)
    site = SiteFlag()
    reg.init_vlog_site(SiteFlag(), "foo.cc", 0)
    assert reg.vlog_is_on(site, "foo.cc", 2) is True
    assert reg.set_vlog_level("foo", 5) == 2
    assert reg.vlog_is_on(site, "foo.cc", 5) is True
    assert site.level is not None and site.level.value == 5


def test_set_vlog_level_new_pattern_returns_default():
    reg = VModuleRegistry("", 3)
    assert reg.set_vlog_level("newmod", 7) == 3
    assert reg.set_vlog_level("newmod", 1) == 7


def test_first_call_does_not_cache_site():
    reg = VModuleRegistry("", 0)
    site = SiteFlag()
    reg.init_vlog_site(site, "baz.cc", 1)
    assert site.level is None
    reg.init_vlog_site(site, "baz.cc", 1)
    assert site.level is not None
    assert site.base_name == "baz"


def test_set_vlog_level_redirects_cached_default_site():
    reg = VModuleRegistry("", 0)
    site = SiteFlag()
    reg.init_vlog_site(site, "baz.cc", 1)
    reg.init_vlog_site(site, "baz.cc", 1)
    assert reg.vlog_is_on(site, "baz.cc", 3) is False
    reg.set_vlog_level("ba*", 3)
    assert reg.vlog_is_on(site, "baz.cc", 3) is True
    assert site.level.value == 3


def test_default_level_change_affects_cached_sites():
    reg = VModuleRegistry("", 0)
    site = SiteFlag()
    reg.init_vlog_site(site, "qux.cc", 1)
    reg.init_vlog_site(site, "qux.cc", 1)
    assert reg.vlog_is_on(site, "qux.cc", 2) is False
    reg.default_level = 2
    assert reg.default_level == 2
    assert reg.vlog_is_on(site, "qux.cc", 2) is True


def test_glob_match_in_set_vlog_level_reports_existing_level():
    reg = VModuleRegistry("fo*=4", 0)
    reg.init_vlog_site(SiteFlag(), "x.cc", 0)
    assert reg.set_vlog_level("foo", 1) == 4
    assert reg.vlog_is_on(SiteFlag(), "foo.cc", 4) is True