"""
Tests for remote URL transport validation.
"""

from __future__ import annotations

import pytest


class TestAccepted:
    @pytest.mark.parametrize(
        "url",
        [
            "git@github.com:user/repo.git",
            "deploy@git.example.org:team/context.git",
            "https://github.com/user/repo.git",
            "ssh://git@github.com/user/repo.git",
            "/abs/path/repo.git",
            "file:///srv/git/repo.git",
            "  https://github.com/user/repo.git  ",
        ],
    )
    def test_secure_remotes_pass(self, url):
        from ctxsync.transport import validate_remote_url

        validate_remote_url(url)


class TestRejected:
    @pytest.mark.parametrize(
        "url, scheme",
        [
            ("http://github.com/user/repo.git", "http://"),
            ("git://github.com/user/repo.git", "git://"),
            ("ftp://example.com/repo.git", "ftp://"),
            ("svn://example.com/repo", "svn://"),
        ],
    )
    def test_insecure_scheme_named(self, url, scheme):
        from ctxsync.errors import TransportError
        from ctxsync.transport import validate_remote_url

        with pytest.raises(TransportError) as exc_info:
            validate_remote_url(url)
        assert f"({scheme})" in exc_info.value.message

    def test_http_suggests_https(self):
        from ctxsync.errors import TransportError
        from ctxsync.transport import validate_remote_url

        with pytest.raises(TransportError) as exc_info:
            validate_remote_url("http://example.com/repo.git")
        assert exc_info.value.suggestion == "Use: https://example.com/repo.git"

    @pytest.mark.parametrize("url", ["", "   ", "relative/path", "https://"])
    def test_empty_or_malformed(self, url):
        from ctxsync.errors import TransportError
        from ctxsync.transport import validate_remote_url

        with pytest.raises(TransportError):
            validate_remote_url(url)

    def test_error_messages_differ_per_scheme(self):
        from ctxsync.errors import TransportError
        from ctxsync.transport import validate_remote_url

        messages = set()
        for url in ("http://h/r", "git://h/r", "ftp://h/r", ""):
            with pytest.raises(TransportError) as exc_info:
                validate_remote_url(url)
            messages.add(exc_info.value.message.split(":")[0])
        assert len(messages) == 4

    @pytest.mark.parametrize(
        "url",
        [
            "-oProxyCommand=touch@host:repo",
            "git@-oProxyCommand=x:repo",
            "ssh://-oProxyCommand=x/repo.git",
            "ssh://git@-host/repo.git",
        ],
    )
    def test_leading_dash_host_or_user_rejected(self, url):
        from ctxsync.errors import TransportError
        from ctxsync.transport import validate_remote_url

        with pytest.raises(TransportError):
            validate_remote_url(url)

    @pytest.mark.parametrize("url", ["file://", "file:///"])
    def test_file_url_needs_path(self, url):
        from ctxsync.errors import TransportError
        from ctxsync.transport import validate_remote_url

        with pytest.raises(TransportError, match="no path"):
            validate_remote_url(url)
