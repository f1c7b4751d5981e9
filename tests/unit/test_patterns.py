"""
Tests for host pattern resolution.
"""

import pytest

from troupe.engine.errors import PatternResolutionError
from troupe.engine.inventory import InventoryManager
from troupe.engine.patterns import filter_hosts, parse_pattern, resolve


@pytest.fixture
def inv() -> InventoryManager:
    return InventoryManager.from_dict({
        "hosts": {
            "web1": {"groups": ["webservers", "prod"]},
            "web2": {"groups": ["webservers", "staging"]},
            "db1": {"groups": ["dbservers", "prod"]},
            "web3": {"groups": ["webservers", "dbservers"]},
        },
    })


def names(hosts):
    return [h.name for h in hosts]


class TestParsePattern:
    """Test splitting patterns into terms."""

    def test_operators(self):
        terms = parse_pattern("webservers:&prod:!web3")
        assert [(t.op, t.expr) for t in terms] == [
            ("union", "webservers"),
            ("intersect", "prod"),
            ("exclude", "web3"),
        ]

    def test_comma_separator_and_and_not(self):
        terms = parse_pattern("web1,web2,&!db1")
        assert [t.op for t in terms] == ["union", "union", "exclude"]

    def test_separators_inside_regex_stay_in_the_term(self):
        terms = parse_pattern(r"~web\d{1,3}:~(db|cache):&~web[1,2]")
        assert [(t.op, t.expr) for t in terms] == [
            ("union", r"~web\d{1,3}"),
            ("union", "~(db|cache)"),
            ("intersect", "~web[1,2]"),
        ]

    @pytest.mark.parametrize("pattern", ["", "   ", "web1:&", "!"])
    def test_empty_terms_rejected(self, pattern):
        with pytest.raises(PatternResolutionError):
            parse_pattern(pattern)


class TestResolve:
    """Test resolving patterns against an inventory."""

    def test_all(self, inv):
        assert names(resolve("all", inv)) == ["web1", "web2", "db1", "web3"]
        assert names(resolve("*", inv)) == ["web1", "web2", "db1", "web3"]

    def test_group_and_host_union(self, inv):
        """Unions keep first-seen order and drop duplicates."""
        assert names(resolve("db1:webservers:web1", inv)) == ["db1", "web1", "web2", "web3"]

    def test_intersection(self, inv):
        assert names(resolve("webservers:&prod", inv)) == ["web1"]

    def test_exclusion(self, inv):
        assert names(resolve("webservers:!dbservers", inv)) == ["web1", "web2"]

    def test_intersect_not(self, inv):
        assert names(resolve("webservers:&!dbservers", inv)) == ["web1", "web2"]

    def test_exclusion_position_does_not_matter(self, inv):
        assert names(resolve("!web3:webservers", inv)) == ["web1", "web2"]

    def test_only_exclusion_starts_from_all(self, inv):
        assert names(resolve("!webservers", inv)) == ["db1"]

    def test_glob(self, inv):
        assert names(resolve("web*", inv)) == ["web1", "web2", "web3"]

    def test_glob_without_match_is_empty(self, inv):
        assert resolve("cache*", inv) == []

    def test_regex(self, inv):
        assert names(resolve("~web[12]", inv)) == ["web1", "web2"]

    def test_regex_with_counted_repeat(self, inv):
        assert names(resolve(r"~web\d{1,3},db1", inv)) == ["web1", "web2", "web3", "db1"]

    def test_invalid_regex(self, inv):
        with pytest.raises(PatternResolutionError):
            resolve("~web[", inv)

    def test_unknown_name_raises(self, inv):
        with pytest.raises(PatternResolutionError) as exc_info:
            resolve("webservers:cache1", inv)
        assert exc_info.value.term == "cache1"
        assert "cache1" in str(exc_info.value)

    def test_resolution_is_idempotent(self, inv):
        pattern = "webservers:dbservers:&prod:!web3"
        assert names(resolve(pattern, inv)) == names(resolve(pattern, inv))

    def test_filter_hosts_keeps_order(self, inv):
        hosts = resolve("all", inv)
        assert names(filter_hosts(hosts, "prod", inv)) == ["web1", "db1"]

    def test_get_hosts_delegates(self, inv):
        assert names(inv.get_hosts("staging")) == ["web2"]
