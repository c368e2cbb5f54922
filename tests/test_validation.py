"""
Tests for FeedValidator.

Each test breaks one convention of the sample feed and checks that exactly
that problem is reported.
"""
import json

import pytest

from depfeed.domain.models import RepositoryConfig
from depfeed.domain.validation import FeedValidator, is_absolute_url, validate_feed
from tests.helpers import chain_channel, chain_record, issue_codes


def validate(doc, **config):
    return FeedValidator(RepositoryConfig(**config)).validate(json.dumps(doc))


def test_sample_feed_is_clean(feed_bytes):
    report = validate_feed(feed_bytes)
    assert report.valid
    assert report.issues == []
    assert report.feed_name == "arch1t3cht's Aegisub Scripts"


# ═══════════════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════════════

class TestParse:
    @pytest.mark.parametrize(
        "raw",
        [
            b"{not json",
            b"[]",
            b'{"name": "a", "name": "b"}',
            b'{"macros": {"a.b": {"channels": {"release": {"version": 3}}}}}',
            b"\xff\xfe",
        ],
    )
    def test_parse_errors_are_reported_alone(self, raw):
        report = validate_feed(raw)
        assert not report.valid
        assert [i.code for i in report.issues] == ["parse"]

    def test_accepts_dict_input(self, feed_dict):
        assert validate_feed(feed_dict).valid


# ═══════════════════════════════════════════════════════════════════════
# Feed level
# ═══════════════════════════════════════════════════════════════════════

class TestFeedLevel:
    def test_missing_format_version(self, make_feed):
        doc = make_feed(lambda d: d.pop("dependencyControlFeedFormatVersion"))
        assert issue_codes(validate(doc), "error") == {"format-version"}

    def test_newer_format_version_is_a_warning(self, make_feed):
        doc = make_feed(lambda d: d.update(dependencyControlFeedFormatVersion="0.4.0"))
        report = validate(doc)
        assert report.valid
        assert issue_codes(report, "warning") == {"format-version"}

    def test_relative_known_feed(self, make_feed):
        doc = make_feed(lambda d: d["knownFeeds"].update(ILL="feeds/ILL.json"))
        assert issue_codes(validate(doc), "error") == {"known-feed"}

    def test_malformed_known_feed_url(self, make_feed):
        doc = make_feed(lambda d: d["knownFeeds"].update(broken="http://[::1"))
        report = validate(doc)
        assert issue_codes(report, "error") == {"known-feed"}
        assert report.errors[0].path == "/knownFeeds/broken"

    def test_dangling_placeholder(self, make_feed):
        def mutate(d):
            chain_channel(d)["files"][0]["url"] = "@{fileBaseUrl}@{filename}"

        report = validate(make_feed(mutate))
        assert issue_codes(report, "error") == {"placeholder"}
        assert report.errors[0].path == "/macros/arch.AegisubChain/channels/release/files/0/url"

    def test_undotted_namespace_is_a_warning(self, make_feed):
        def mutate(d):
            d["macros"]["AegisubChain"] = d["macros"].pop("arch.AegisubChain")

        report = validate(make_feed(mutate))
        assert report.valid
        assert "namespace" in issue_codes(report, "warning")


# ═══════════════════════════════════════════════════════════════════════
# Channels and changelog
# ═══════════════════════════════════════════════════════════════════════

class TestChannels:
    def test_two_default_channels(self, make_feed):
        def mutate(d):
            channels = chain_record(d)["channels"]
            channels["beta"] = dict(channels["release"], version="0.5.0")

        assert "default-channel" in issue_codes(validate(make_feed(mutate)), "error")

    def test_no_default_channel_is_a_warning(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d).update(default=False))
        report = validate(doc)
        assert report.valid
        assert issue_codes(report, "warning") == {"default-channel"}

    def test_invalid_channel_version(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d).update(version="0.4.0-rc1"))
        assert "channel-version" in issue_codes(validate(doc), "error")

    @pytest.mark.parametrize("released", ["2022-7-1", "2022-07-1", "22-07-17", "2022-02-30", "٢022-07-17"])
    def test_release_date_must_be_zero_padded_iso(self, make_feed, released):
        doc = make_feed(lambda d: chain_channel(d).update(released=released))
        assert issue_codes(validate(doc), "warning") == {"released"}

    def test_bad_release_date_is_a_warning(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d).update(released="17/07/2022"))
        report = validate(doc)
        assert report.valid
        assert issue_codes(report, "warning") == {"released"}

    def test_no_channels_is_a_warning(self, make_feed):
        doc = make_feed(lambda d: chain_record(d).update(channels={}))
        report = validate(doc)
        assert report.valid
        assert "channels" in issue_codes(report, "warning")


class TestChangelog:
    def test_invalid_changelog_version(self, make_feed):
        doc = make_feed(lambda d: chain_record(d)["changelog"].update({"next": ["Coming soon."]}))
        assert issue_codes(validate(doc), "error") == {"changelog-version"}

    def test_equivalent_versions_are_not_strictly_increasing(self, make_feed):
        doc = make_feed(lambda d: chain_record(d)["changelog"].update({"0.4": ["Duplicate."]}))
        report = validate(doc)
        assert "changelog-order" in issue_codes(report, "error")

    def test_descending_order_is_fine(self, make_feed):
        def mutate(d):
            record = chain_record(d)
            record["changelog"] = dict(reversed(list(record["changelog"].items())))

        assert validate(make_feed(mutate)).issues == []

    def test_shuffled_order_is_a_warning(self, make_feed):
        def mutate(d):
            record = chain_record(d)
            items = list(record["changelog"].items())
            record["changelog"] = dict([items[1], items[0]] + items[2:])

        report = validate(make_feed(mutate))
        assert report.valid
        assert issue_codes(report, "warning") == {"changelog-order"}

    def test_changelog_ahead_of_release(self, make_feed):
        doc = make_feed(lambda d: chain_record(d)["changelog"].update({"0.5.0": ["Unreleased."]}))
        report = validate(doc)
        assert report.valid
        assert issue_codes(report, "warning") == {"changelog-ahead"}

    def test_entries_must_be_lists_of_strings(self, make_feed):
        doc = make_feed(lambda d: chain_record(d)["changelog"].update({"0.4.0": [1, 2]}))
        assert issue_codes(validate(doc), "error") == {"changelog-entry"}


# ═══════════════════════════════════════════════════════════════════════
# Files
# ═══════════════════════════════════════════════════════════════════════

class TestFiles:
    def test_empty_file_name(self, make_feed):
        def mutate(d):
            entry = chain_channel(d)["files"][0]
            entry["name"] = ""
            entry["url"] = "@{fileBaseUrl}.moon"

        assert issue_codes(validate(make_feed(mutate)), "error") == {"file-name"}

    def test_missing_url(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d)["files"][0].pop("url"))
        assert issue_codes(validate(doc), "error") == {"file-url"}

    def test_relative_url(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d)["files"][0].update(url="macros/@{namespace}@{fileName}"))
        assert issue_codes(validate(doc), "error") == {"file-url"}

    def test_malformed_url(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d)["files"][0].update(url="http://[::1/@{fileName}"))
        assert issue_codes(validate(doc), "error") == {"file-url"}

    def test_literal_url_without_file_name_is_a_warning(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d)["files"][0].update(url="https://example.org/download"))
        report = validate(doc)
        assert report.valid
        assert issue_codes(report, "warning") == {"file-url"}

    @pytest.mark.parametrize("sha1", [None, "abc", "Z" * 40, "0" * 64])
    def test_bad_checksum(self, make_feed, sha1):
        def mutate(d):
            entry = chain_channel(d)["files"][0]
            if sha1 is None:
                entry.pop("sha1")
            else:
                entry["sha1"] = sha1

        assert issue_codes(validate(make_feed(mutate)), "error") == {"checksum"}

    def test_deleted_file_needs_no_checksum(self, make_feed):
        def mutate(d):
            chain_channel(d)["files"].append(
                {"name": ".lua", "url": "@{fileBaseUrl}@{fileName}", "delete": True}
            )

        assert validate(make_feed(mutate)).issues == []

    def test_same_checksum_for_two_urls(self, make_feed):
        def mutate(d):
            files = chain_channel(d)["files"]
            files.append(dict(files[0], name=".lua"))

        report = validate(make_feed(mutate))
        assert report.valid
        assert issue_codes(report, "warning") == {"duplicate-checksum"}


# ═══════════════════════════════════════════════════════════════════════
# Required modules
# ═══════════════════════════════════════════════════════════════════════

class TestRequiredModules:
    def test_missing_module_name(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d)["requiredModules"].append({"version": "1.0.0"}))
        assert issue_codes(validate(doc), "error") == {"required-module"}

    def test_unknown_module_without_feed(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d)["requiredModules"].append({"moduleName": "l0.Functional"}))
        report = validate(doc)
        assert issue_codes(report, "error") == {"required-module"}
        assert "l0.Functional" in report.errors[0].message

    def test_optional_unknown_module_is_a_warning(self, make_feed):
        doc = make_feed(
            lambda d: chain_channel(d)["requiredModules"].append({"moduleName": "l0.Functional", "optional": True})
        )
        report = validate(doc)
        assert report.valid
        assert issue_codes(report, "warning") == {"required-module"}

    def test_host_modules_come_from_config(self, make_feed, feed_dict):
        report = validate(feed_dict, host_modules=[])
        assert issue_codes(report, "error") == {"required-module"}

    def test_local_module_too_old(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d)["requiredModules"][1].update(version="0.2.0"))
        assert issue_codes(validate(doc), "error") == {"required-module"}

    def test_invalid_required_version(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d)["requiredModules"][2].update(version="newest"))
        assert issue_codes(validate(doc), "error") == {"required-module"}

    def test_relative_feed_url(self, make_feed):
        doc = make_feed(lambda d: chain_channel(d)["requiredModules"][2].update(feed="a-mo.json"))
        assert issue_codes(validate(doc), "error") == {"required-module"}


def test_report_payload(make_feed):
    doc = make_feed(lambda d: chain_channel(d).update(released="yesterday"))
    payload = validate(doc).to_payload()
    assert payload["valid"] is True
    assert payload["error_count"] == 0
    assert payload["warning_count"] == 1
    assert payload["issues"][0]["path"] == "/macros/arch.AegisubChain/channels/release/released"


def test_is_absolute_url():
    assert is_absolute_url("https://example.org/feed.json")
    assert not is_absolute_url("ftp://example.org/feed.json")
    assert not is_absolute_url("/feed.json")
    assert not is_absolute_url(None)
    assert not is_absolute_url("http://[::1")
