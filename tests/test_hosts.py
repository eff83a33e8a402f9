"""Tests for SSH host discovery."""

import os

import pytest

from rtun.exceptions import ConfigError
from rtun.hosts import HostCatalog, parse_ssh_config

SSH_CONFIG = """\
# personal hosts
Host myhost
    HostName 10.0.0.5
    User deploy

Host db-primary db-replica
    HostName db.internal

host=bastion
Host *.corp !legacy web?
Host myhost
Match host foo
    ForwardAgent yes
"""


def bump_mtime(path, seconds=10):
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + seconds * 1_000_000_000))


class TestParseSshConfig:
    def test_concrete_hosts_in_order(self):
        assert parse_ssh_config(SSH_CONFIG) == ["myhost", "db-primary", "db-replica", "bastion"]

    def test_empty_config(self):
        assert parse_ssh_config("") == []
        assert parse_ssh_config("# only a comment\n\n") == []

    def test_quoted_pattern(self):
        assert parse_ssh_config('Host "quoted"\n') == ["quoted"]

    def test_host_without_pattern(self):
        with pytest.raises(ConfigError, match="config:2: 'Host' without a pattern"):
            parse_ssh_config("Host ok\nHost\n", source="config")


class TestHostCatalog:
    def test_load_reads_hosts(self, tmp_path):
        path = tmp_path / "config"
        path.write_text(SSH_CONFIG)

        catalog = HostCatalog(path, required=True)

        assert catalog.load() == ["myhost", "db-primary", "db-replica", "bastion"]

    def test_missing_optional_file_is_empty(self, tmp_path):
        catalog = HostCatalog(tmp_path / "missing")

        assert catalog.load() == []
        assert catalog.hosts() == []

    def test_missing_required_file(self, tmp_path):
        catalog = HostCatalog(tmp_path / "missing", required=True)

        with pytest.raises(ConfigError, match="SSH config not found"):
            catalog.load()

    def test_invalid_encoding(self, tmp_path):
        path = tmp_path / "config"
        path.write_bytes(b"Host \xff\xfe\n")

        with pytest.raises(ConfigError, match="Cannot read SSH config"):
            HostCatalog(path).load()

    def test_reread_only_when_modified(self, tmp_path):
        path = tmp_path / "config"
        path.write_text("Host one\n")
        catalog = HostCatalog(path)
        assert catalog.hosts() == ["one"]

        # Same mtime: cached list is returned
        stat = path.stat()
        path.write_text("Host two\n")
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns))
        assert catalog.hosts() == ["one"]

        bump_mtime(path)
        assert catalog.hosts() == ["two"]

    def test_hosts_keeps_last_good_list(self, tmp_path):
        path = tmp_path / "config"
        path.write_text("Host one\n")
        catalog = HostCatalog(path)
        assert catalog.hosts() == ["one"]

        path.write_text("Host\n")
        bump_mtime(path)

        assert catalog.hosts() == ["one"]
        with pytest.raises(ConfigError):
            catalog.load()

    def test_default_path(self):
        catalog = HostCatalog()

        assert str(catalog.path) == os.path.expanduser("~/.ssh/config")
        assert catalog.required is False
