#!/usr/bin/env python3
"""Unit tests for block matching, reload and the blocking switch"""

import threading

from prometheus_client import CollectorRegistry
from twisted.internet import defer
from twisted.trial.unittest import SynchronousTestCase

from dns_sinkhole.blocklist import (
    BlockingToggle,
    BlockMatcher,
    build_block_set,
    is_blocked,
)
from dns_sinkhole.errors import SourceUnavailable
from dns_sinkhole.metrics import ProxyMetrics


class TestIsBlocked:
    """Test the suffix walk"""

    def test_exact_match(self):
        """Test a host present verbatim matches at depth 1"""
        block_set = frozenset({"ads.example.com."})
        assert is_blocked("ads.example.com.", block_set) == (True, 1)

    def test_parent_domain_match(self):
        """Test a subdomain of a blocked domain matches at depth 2"""
        block_set = frozenset({"example.com."})
        assert is_blocked("ads.example.com.", block_set) == (True, 2)

    def test_deep_subdomain(self):
        """Test depth counts every stripped label"""
        block_set = frozenset({"tracker.net."})
        assert is_blocked("a.b.c.tracker.net.", block_set) == (True, 4)

    def test_not_blocked(self):
        """Test unrelated hosts are not blocked"""
        block_set = frozenset({"example.com."})
        assert is_blocked("mail.google.com.", block_set) == (False, 0)

    def test_no_partial_label_match(self):
        """Test suffix matching works on whole labels only"""
        block_set = frozenset({"vil.com."})
        assert is_blocked("evil.com.", block_set) == (False, 0)

    def test_top_level_domain_never_matched_by_walk(self):
        """Test a blocked TLD does not block names under it"""
        block_set = frozenset({"com."})
        assert is_blocked("example.com.", block_set) == (False, 0)
        assert is_blocked("ads.example.com.", block_set) == (False, 0)

    def test_top_level_domain_exact_match(self):
        """Test a blocked TLD still matches when queried itself"""
        assert is_blocked("com.", frozenset({"com."})) == (True, 1)

    def test_root_name(self):
        """Test the root name is never blocked by an ordinary set"""
        assert is_blocked(".", frozenset({"example.com."})) == (False, 0)
        assert is_blocked(".", frozenset({"."})) == (True, 1)

    def test_empty_block_set(self):
        """Test nothing is blocked by an empty set"""
        assert is_blocked("ads.example.com.", frozenset()) == (False, 0)


class TestBuildBlockSet:
    """Test block list parsing"""

    def test_adds_trailing_dot(self):
        """Test every entry gets exactly one trailing dot"""
        block_set = build_block_set(["example.com", "tracker.net.", "  spaced.org  "])
        assert block_set == frozenset({"example.com.", "tracker.net.", "spaced.org."})

    def test_skips_blank_lines_and_comments(self):
        """Test blanks and comments are not entries"""
        block_set = build_block_set(["", "# comment", "example.com", "   "])
        assert block_set == frozenset({"example.com."})

    def test_result_is_immutable(self):
        """Test the block set cannot be changed in place"""
        assert isinstance(build_block_set(["example.com"]), frozenset)


class TestBlockMatcher(SynchronousTestCase):
    """Test the block set owner"""

    def setUp(self):
        self.metrics = ProxyMetrics(CollectorRegistry())

    def test_reload_from_file(self):
        """Test a file reload swaps in the new set and updates the rule count"""
        path = self.mktemp()
        with open(path, "w") as f:
            f.write("example.com\ntracker.net\n")

        matcher = BlockMatcher(path, self.metrics)
        block_set = self.successResultOf(matcher.reload())

        self.assertEqual(block_set, frozenset({"example.com.", "tracker.net."}))
        self.assertIs(matcher.current, block_set)
        self.assertEqual(matcher.is_blocked("ads.example.com."), (True, 2))
        self.assertEqual(self.metrics.snapshot()["statsRules"], 2)

    def test_reload_picks_up_changes(self):
        """Test every reload reads the file again"""
        path = self.mktemp()
        with open(path, "w") as f:
            f.write("example.com\n")
        matcher = BlockMatcher(path, self.metrics)
        self.successResultOf(matcher.reload())

        with open(path, "w") as f:
            f.write("other.org\n")
        self.successResultOf(matcher.reload())

        self.assertEqual(matcher.is_blocked("ads.example.com."), (False, 0))
        self.assertEqual(matcher.is_blocked("other.org."), (True, 1))

    def test_failed_reload_keeps_previous_set(self):
        """Test a missing file leaves the live set in place"""
        previous = frozenset({"example.com."})
        matcher = BlockMatcher(self.mktemp(), self.metrics, block_set=previous)

        failure = self.failureResultOf(matcher.reload(), SourceUnavailable)

        self.assertIn("unavailable", failure.getErrorMessage())
        self.assertIs(matcher.current, previous)

    def test_loader_errors_become_source_unavailable(self):
        """Test unexpected loader failures are reported as SourceUnavailable"""
        previous = frozenset({"example.com."})
        matcher = BlockMatcher(
            "somewhere",
            self.metrics,
            loader=lambda location: defer.fail(RuntimeError("boom")),
            block_set=previous,
        )

        failure = self.failureResultOf(matcher.reload(), SourceUnavailable)

        self.assertEqual(failure.value.location, "somewhere")
        self.assertIs(matcher.current, previous)

    def test_reload_without_location(self):
        """Test reloading with nothing configured fails cleanly"""
        matcher = BlockMatcher(None, self.metrics)
        self.failureResultOf(matcher.reload(), SourceUnavailable)

    def test_reload_explicit_location(self):
        """Test an explicit location overrides the configured one"""
        matcher = BlockMatcher(
            "configured",
            self.metrics,
            loader=lambda location: defer.succeed([location + ".test"]),
        )
        block_set = self.successResultOf(matcher.reload("explicit"))
        self.assertEqual(block_set, frozenset({"explicit.test."}))

    def test_swap_returns_previous(self):
        """Test swap hands back the set it replaced"""
        first = frozenset({"a.example."})
        second = frozenset({"b.example."})
        matcher = BlockMatcher(block_set=first)
        self.assertIs(matcher.swap(second), first)
        self.assertIs(matcher.current, second)
        self.assertEqual(len(matcher), 1)

    def test_reader_keeps_old_set_during_reload(self):
        """Test a reference taken before a swap stays a complete set"""
        matcher = BlockMatcher(block_set=frozenset({"example.com."}))
        held = matcher.current
        matcher.swap(frozenset({"other.org."}))
        self.assertEqual(held, frozenset({"example.com."}))


class TestBlockingToggle:
    """Test the blocking switch"""

    def test_default_enabled(self):
        """Test blocking starts enabled"""
        assert BlockingToggle().value() is True

    def test_toggle(self):
        """Test toggle flips and returns the new value"""
        toggle = BlockingToggle()
        assert toggle.toggle() is False
        assert toggle.value() is False
        assert str(toggle) == "false"
        assert toggle.toggle() is True
        assert str(toggle) == "true"

    def test_set(self):
        """Test set forces a value"""
        toggle = BlockingToggle()
        toggle.set(False)
        assert toggle.value() is False

    def test_metrics_follow_toggle(self, registry):
        """Test the blocking gauge mirrors the switch"""
        toggle = BlockingToggle(metrics=ProxyMetrics(registry))
        assert registry.get_sample_value("dns_sinkhole_blocking_enabled") == 1
        toggle.toggle()
        assert registry.get_sample_value("dns_sinkhole_blocking_enabled") == 0

    def test_concurrent_toggles(self):
        """Test an even number of concurrent toggles leaves the value unchanged"""
        toggle = BlockingToggle()

        def worker():
            for _ in range(1000):
                toggle.toggle()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert toggle.value() is True
