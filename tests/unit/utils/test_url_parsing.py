"""
Unit tests for git remote URL helpers.
"""

import pytest

from utils.url_parsing import (
    normalize_base_url,
    parse_remote_url,
    repository_path_segments,
    split_owner_and_name,
)


class TestParseRemoteUrl:

    def test_https(self):
        remote = parse_remote_url("https://Git.Example.com/org/repo.git")

        assert remote.scheme == "https"
        assert remote.host == "git.example.com"
        assert remote.port is None
        assert remote.path == "/org/repo.git"

    def test_explicit_port_kept_in_origin(self):
        assert parse_remote_url("http://localhost:3000/org/repo").origin == "http://localhost:3000"

    def test_default_port_dropped_from_origin(self):
        assert parse_remote_url("https://git.example.com:443/org/repo").origin == "https://git.example.com"

    def test_ssh_scheme(self):
        remote = parse_remote_url("ssh://git@git.example.com:2222/org/repo.git")

        assert remote.scheme == "ssh"
        assert remote.host == "git.example.com"
        assert remote.port == 2222
        assert not remote.is_http

    def test_scp_style(self):
        remote = parse_remote_url("git@git.example.com:org/repo.git")

        assert remote.scheme == "ssh"
        assert remote.host == "git.example.com"
        assert remote.path == "/org/repo.git"

    @pytest.mark.parametrize("url", ["", "   ", "not a url", "https:///nohost"])
    def test_rejects_unparseable(self, url):
        with pytest.raises(ValueError):
            parse_remote_url(url)


class TestNormalizeBaseUrl:

    @pytest.mark.parametrize("raw,expected", [
        ("HTTPS://Git.Example.com:443/", "https://git.example.com"),
        ("https://git.example.com", "https://git.example.com"),
        ("http://localhost:3000/", "http://localhost:3000"),
        ("http://localhost:3000/gitea/", "http://localhost:3000/gitea"),
    ])
    def test_normalizes(self, raw, expected):
        assert normalize_base_url(raw) == expected

    def test_rejects_ssh(self):
        with pytest.raises(ValueError):
            normalize_base_url("git@git.example.com:org/repo.git")


class TestOwnerAndName:

    def test_strips_git_suffix(self):
        assert split_owner_and_name("https://git.example.com/org/repo.git") == ("org", "repo")

    def test_relative_to_base_path(self):
        assert split_owner_and_name(
            "http://localhost:3000/gitea/org/repo.git", "http://localhost:3000/gitea"
        ) == ("org", "repo")

    def test_scp_style(self):
        assert split_owner_and_name("git@git.example.com:org/repo.git") == ("org", "repo")

    def test_single_segment_is_none(self):
        assert split_owner_and_name("https://git.example.com/repo") is None

    def test_segments(self):
        assert repository_path_segments("https://bb.example.com/scm/PROJ/repo.git") == ["scm", "PROJ", "repo.git"]
