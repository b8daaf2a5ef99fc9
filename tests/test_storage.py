"""Tests for the credential bag storage."""

import json
import stat
from unittest.mock import patch

import pytest

from credbag.errors import NotFoundError, StorageError
from credbag.storage import CORRUPT_TYPE, BagEntry, DirectoryBag, open_bag, validate_name
from credbag.storage.bag import MARKER_FILE


@pytest.mark.parametrize("name", ["prod-aws", "a", "user@host", "x.y_z+1", "-lead"])
def test_validate_name_accepts(name):
    """Test names usable as bag keys."""
    assert validate_name(name) == name


@pytest.mark.parametrize("name", ["", ".hidden", "a/b", "../up", "sp ace", "tab\t"])
def test_validate_name_rejects(name):
    """Test names that are refused."""
    with pytest.raises(ValueError):
        validate_name(name)


def test_entry_serializes_ciphertext_as_base64():
    """Test the persisted entry encoding."""
    entry = BagEntry(name="a", type="aws", ciphertext=b"\x00\xff")
    data = json.loads(entry.model_dump_json())
    assert data["ciphertext"] == "AP8="
    assert BagEntry.model_validate_json(entry.model_dump_json()).ciphertext == b"\x00\xff"


def test_open_bag(tmp_path):
    """Test that the default store is directory backed."""
    assert isinstance(open_bag(tmp_path / "bag"), DirectoryBag)


class TestDirectoryBag:
    """Tests for DirectoryBag."""

    def test_create(self, tmp_path):
        """Test that opening a missing path creates a private bag."""
        bag = DirectoryBag(tmp_path / "new")
        assert (bag.path / MARKER_FILE).exists()
        assert stat.S_IMODE(bag.path.stat().st_mode) == 0o700
        assert bag.list() == {}

    def test_reopen(self, bag):
        """Test that an existing bag opens with its entries."""
        bag.write("prod-aws", "aws", b"ct")
        assert DirectoryBag(bag.path).list() == {"prod-aws": "aws"}

    def test_write_and_read(self, bag):
        """Test storing and retrieving ciphertext."""
        bag.write("prod-aws", "aws", b"ciphertext")
        assert bag.read("prod-aws", "aws") == b"ciphertext"
        assert bag.exists("prod-aws")
        assert not bag.exists("other")

    def test_entry_file_mode(self, bag):
        """Test that entry files are only readable by the owner."""
        bag.write("prod-aws", "aws", b"ct")
        mode = stat.S_IMODE((bag.path / "prod-aws.entry").stat().st_mode)
        assert mode == 0o600

    def test_list_sorted(self, bag):
        """Test that listings are ordered by name."""
        for name in ("zeta", "alpha", "mid"):
            bag.write(name, "aws", b"ct")
        assert list(bag.list()) == ["alpha", "mid", "zeta"]

    def test_list_patterns(self, bag):
        """Test glob filtering of listings."""
        bag.write("prod-aws", "aws", b"ct")
        bag.write("prod-ssh", "ssh", b"ct")
        bag.write("dev-aws", "aws-session", b"ct")

        assert bag.list(["prod-*"]) == {"prod-aws": "aws", "prod-ssh": "ssh"}
        assert bag.list(["*-aws"]) == {"dev-aws": "aws-session", "prod-aws": "aws"}
        assert bag.list(["dev-aws", "prod-ssh"]) == {
            "dev-aws": "aws-session",
            "prod-ssh": "ssh",
        }
        assert bag.list(["PROD-*"]) == {}
        assert bag.list(["nothing*"]) == {}

    def test_read_missing(self, bag):
        """Test reading an entry that does not exist."""
        with pytest.raises(NotFoundError):
            bag.read("missing", "aws")

    def test_read_invalid_name(self, bag):
        """Test that invalid names read as missing."""
        with pytest.raises(NotFoundError):
            bag.read("../escape", "aws")

    def test_read_wrong_type(self, bag):
        """Test that the stored type must match."""
        bag.write("prod-aws", "aws", b"ct")
        with pytest.raises(NotFoundError, match="of type 'ssh'"):
            bag.read("prod-aws", "ssh")

    def test_write_invalid_name(self, bag):
        """Test that invalid names are refused on write."""
        with pytest.raises(ValueError):
            bag.write(".hidden", "aws", b"ct")
        assert bag.list() == {}

    def test_overwrite_keeps_created_at(self, bag):
        """Test that replacing an entry keeps its creation time."""
        bag.write("prod-aws", "aws", b"first")
        first = BagEntry.model_validate_json((bag.path / "prod-aws.entry").read_bytes())
        bag.write("prod-aws", "aws", b"second")
        second = BagEntry.model_validate_json((bag.path / "prod-aws.entry").read_bytes())

        assert bag.read("prod-aws", "aws") == b"second"
        assert second.created_at == first.created_at
        assert second.updated_at >= first.updated_at

    def test_failed_write_leaves_entry_intact(self, bag):
        """Test that a failed replace keeps the prior entry and no temp file."""
        bag.write("prod-aws", "aws", b"original")

        with patch("credbag.storage.bag.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError, match="disk full"):
                bag.write("prod-aws", "aws", b"replacement")

        assert bag.read("prod-aws", "aws") == b"original"
        assert list(bag.path.glob(".*.tmp")) == []

    def test_failed_fsync(self, bag):
        """Test that a failed flush to disk does not create the entry."""
        with patch("credbag.storage.bag.os.fsync", side_effect=OSError("io error")):
            with pytest.raises(StorageError):
                bag.write("prod-aws", "aws", b"ct")

        assert bag.list() == {}
        assert list(bag.path.glob(".*.tmp")) == []

    def test_corrupt_entry(self, bag):
        """Test that an unparseable entry file is a storage fault."""
        (bag.path / "broken.entry").write_text("{not json")
        with pytest.raises(StorageError, match="Corrupt"):
            bag.read("broken", "aws")

    def test_list_reports_corrupt_entry(self, bag):
        """Test that a damaged entry file is listed without hiding the others."""
        bag.write("prod-aws", "aws", b"ct")
        (bag.path / "broken.entry").write_text("{not json")

        assert bag.list() == {"broken": CORRUPT_TYPE, "prod-aws": "aws"}
        assert bag.exists("broken")
        assert bag.read("prod-aws", "aws") == b"ct"

    def test_list_uses_file_name(self, bag):
        """Test that entries are listed under the name of their file."""
        bag.write("prod-aws", "aws", b"ct")
        (bag.path / "prod-aws.entry").rename(bag.path / "renamed.entry")

        assert bag.list() == {"renamed": "aws"}
        with pytest.raises(StorageError, match="holds entry 'prod-aws'"):
            bag.read("renamed", "aws")

    def test_not_a_bag(self, tmp_path):
        """Test that a non-empty foreign directory is refused."""
        (tmp_path / "other.txt").write_text("data")
        with pytest.raises(StorageError, match="not a credential bag"):
            DirectoryBag(tmp_path)

    def test_path_is_file(self, tmp_path):
        """Test that a regular file is refused."""
        path = tmp_path / "file"
        path.write_text("data")
        with pytest.raises(StorageError, match="not a directory"):
            DirectoryBag(path)

    def test_unsupported_version(self, tmp_path):
        """Test that a bag of another format version is refused."""
        (tmp_path / MARKER_FILE).write_text(json.dumps({"format": "credbag-bag", "version": 99}))
        with pytest.raises(StorageError, match="Unsupported bag version"):
            DirectoryBag(tmp_path)

    @pytest.mark.parametrize("content", [b"garbage", b"[1, 2]", b"\xff\xfe\x00garbage"])
    def test_corrupt_marker(self, tmp_path, content):
        """Test that an unreadable marker is refused."""
        (tmp_path / MARKER_FILE).write_bytes(content)
        with pytest.raises(StorageError, match="Corrupt bag marker"):
            DirectoryBag(tmp_path)
