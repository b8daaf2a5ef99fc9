"""Tests for the CLI interface."""

from unittest.mock import patch

import click.testing
import pytest
import yaml

from credbag.cli import cli
from credbag.profiles import AwsProfile


@pytest.fixture
def cli_runner():
    """Create a CLI test runner."""
    return click.testing.CliRunner()


@pytest.fixture
def config_file(tmp_path, config):
    """Write the test configuration to disk."""
    path = tmp_path / "config.yml"
    path.write_text(config.to_yaml())
    return path


@pytest.fixture
def invoke(cli_runner, config_file):
    """Run the CLI against the test configuration."""

    def _invoke(*args, input=None):
        return cli_runner.invoke(cli, ["--config", str(config_file), *args], input=input)

    return _invoke


@pytest.fixture
def passphrase_input(passphrase):
    return passphrase.decode() + "\n"


def test_types(invoke):
    """Test listing the credential types."""
    result = invoke("types")
    assert result.exit_code == 0
    for type_name in ("aws", "aws-session", "ssh"):
        assert type_name in result.output


def test_config(invoke, config):
    """Test printing the effective configuration."""
    result = invoke("config")
    assert result.exit_code == 0
    assert yaml.safe_load(result.output)["bag_path"] == str(config.bag_path)


def test_config_from_env(cli_runner, config_file, config):
    """Test selecting the configuration file through the environment."""
    result = cli_runner.invoke(cli, ["config"], env={"CREDBAG_CONFIG": str(config_file)})
    assert result.exit_code == 0
    assert str(config.bag_path) in result.output


def test_invalid_config(cli_runner, tmp_path):
    """Test that an invalid configuration is reported."""
    path = tmp_path / "config.yml"
    path.write_text("mount_timeout: -1\n")
    result = cli_runner.invoke(cli, ["--config", str(path), "types"])
    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_list(invoke, put, prod_aws, dev_session):
    """Test listing entries."""
    put(prod_aws, dev_session)
    result = invoke("list")
    assert result.exit_code == 0
    assert "prod-aws" in result.output
    assert "dev-session" in result.output


def test_list_patterns(invoke, put, prod_aws, dev_session):
    """Test listing entries matching a glob."""
    put(prod_aws, dev_session)
    result = invoke("list", "prod-*")
    assert result.exit_code == 0
    assert "prod-aws" in result.output
    assert "dev-session" not in result.output


def test_list_no_matches(invoke):
    """Test listing an empty bag."""
    result = invoke("list")
    assert result.exit_code == 0
    assert "No matches found" in result.output


def test_show(invoke, put, prod_aws, passphrase_input):
    """Test decrypting an entry."""
    put(prod_aws)
    result = invoke("show", "prod-aws", input=passphrase_input)
    assert result.exit_code == 0
    assert "prod-aws:" in result.output
    assert "secret_access_key: prod-secret-value" in result.output


def test_show_wrong_passphrase(invoke, put, prod_aws):
    """Test that a wrong passphrase reveals nothing."""
    put(prod_aws)
    result = invoke("show", "prod-aws", input="wrong\n")
    assert result.exit_code == 1
    assert "wrong passphrase" in result.output
    assert "prod-secret-value" not in result.output
    assert "AKIAPRODEXAMPLE" not in result.output


def test_show_corrupt_entry(invoke, put, prod_aws, bag, passphrase_input):
    """Test that a damaged entry is reported once and the others still show."""
    put(prod_aws)
    (bag.path / "broken.entry").write_text("{not json")
    result = invoke("show", "*", input=passphrase_input)
    assert result.exit_code == 1
    assert "secret_access_key: prod-secret-value" in result.output
    assert result.output.count("cannot be read or parsed") == 1
    assert "WARNING" not in result.output
    assert "2 matched: 1 ok, 0 skipped, 1 failed" in result.output


def test_show_no_matches(invoke, put, prod_aws):
    """Test that no passphrase is asked for when nothing matches."""
    put(prod_aws)
    result = invoke("show", "staging-*")
    assert result.exit_code == 0
    assert "No matches found" in result.output
    assert "Passphrase" not in result.output


def test_show_requires_patterns(invoke):
    """Test that show needs at least one pattern."""
    result = invoke("show")
    assert result.exit_code == 2


def test_add(invoke, bag):
    """Test adding an entry interactively."""
    result = invoke("add", input="new-aws\nAKIANEW\nnew-secret\n\n")
    assert result.exit_code == 0
    assert "Added new-aws (type aws)" in result.output
    assert bag.list() == {"new-aws": "aws"}


def test_add_existing_declined(invoke, put, prod_aws, bag):
    """Test declining to overwrite an existing entry."""
    put(prod_aws)
    before = (bag.path / "prod-aws.entry").read_bytes()
    result = invoke("add", input="prod-aws\nAKIANEW\nnew-secret\n\nn\n")
    assert result.exit_code == 0
    assert "Not overwriting prod-aws" in result.output
    assert (bag.path / "prod-aws.entry").read_bytes() == before


def test_add_unknown_type(invoke):
    """Test that the type must be registered."""
    result = invoke("add", "--type", "gpg")
    assert result.exit_code == 2


def test_add_invalid_name(invoke, bag):
    """Test that invalid names are refused."""
    result = invoke("add", input="../bad\nAKIA\nsecret\n\n")
    assert result.exit_code == 1
    assert bag.list() == {}


def test_verify(invoke, put, prod_aws, passphrase_input):
    """Test verifying credentials."""
    put(prod_aws)
    with patch.object(AwsProfile, "verify_credentials", return_value=("authenticated", True)):
        result = invoke("verify", "prod-aws", input=passphrase_input)
    assert result.exit_code == 0
    assert "✔" in result.output
    assert "authenticated" in result.output


def test_verify_failure_exit_code(invoke, put, prod_aws, passphrase_input):
    """Test that a rejected credential fails the command."""
    put(prod_aws)
    with patch.object(AwsProfile, "verify_credentials", return_value=("rejected", False)):
        result = invoke("verify", "prod-aws", input=passphrase_input)
    assert result.exit_code == 1
    assert "✘" in result.output
    assert "1 matched: 0 ok, 0 skipped, 1 failed" in result.output


def test_rotate_requires_confirmation(invoke, put, prod_aws):
    """Test that declining the confirmation rotates nothing."""
    put(prod_aws)
    with patch.object(AwsProfile, "rotate_credentials") as mock_rotate:
        result = invoke("rotate", "prod-aws", input="n\n")
    assert result.exit_code == 1
    assert "prod-aws (type aws)" in result.output
    mock_rotate.assert_not_called()


def test_rotate(invoke, put, prod_aws, passphrase_input):
    """Test rotating with --yes."""
    put(prod_aws)
    new = prod_aws.model_copy(update={"access_key_id": "AKIANEW"}).serialize()
    with patch.object(AwsProfile, "rotate_credentials", return_value=new):
        result = invoke("rotate", "--yes", "prod-aws", input=passphrase_input)
    assert result.exit_code == 0
    assert "Rotated prod-aws" in result.output

    shown = invoke("show", "prod-aws", input=passphrase_input)
    assert "access_key_id: AKIANEW" in shown.output


def test_rotate_skips_unsupported(invoke, put, deploy_ssh):
    """Test that unsupported entries are skipped."""
    put(deploy_ssh)
    result = invoke("rotate", "--yes", "deploy-key")
    assert result.exit_code == 0
    assert "does not support rotate" in result.output
    assert "1 matched: 0 ok, 1 skipped, 0 failed" in result.output


def test_mount(invoke, put, dev_session, config, passphrase_input):
    """Test mounting entries until the timeout."""
    put(dev_session)
    with patch("credbag.operations.mount", return_value="timeout") as mock_mount:
        result = invoke("mount", "dev-*", "--timeout", "5", input=passphrase_input)

    assert result.exit_code == 0
    assert "Adding dev-session (type aws-session) as aws/credentials" in result.output
    assert f"Unmounted {config.mountpoint} (timeout)" in result.output
    mountpoint, files, timeout = mock_mount.call_args.args
    assert mountpoint == config.mountpoint
    assert b"[dev-session]" in files["aws/credentials"]
    assert timeout == 5


def test_mount_nothing_mountable(invoke, put, prod_aws):
    """Test that nothing is mounted when no entry supports it."""
    put(prod_aws)
    with patch("credbag.operations.mount") as mock_mount:
        result = invoke("mount", "prod-aws")
    assert result.exit_code == 0
    assert "Nothing to mount" in result.output
    mock_mount.assert_not_called()


def test_keygen(cli_runner, tmp_path):
    """Test generating a key pair."""
    path = tmp_path / "config.yml"
    path.write_text(
        yaml.safe_dump(
            {
                "public_key": str(tmp_path / "keys" / "id_rsa.pub"),
                "private_key": str(tmp_path / "keys" / "id_rsa"),
            }
        )
    )
    result = cli_runner.invoke(
        cli, ["--config", str(path), "keygen", "--key-size", "2048"], input="pw\npw\n"
    )
    assert result.exit_code == 0
    assert (tmp_path / "keys" / "id_rsa.pub").exists()
    assert (tmp_path / "keys" / "id_rsa").exists()


def test_keygen_refuses_overwrite(invoke, key_pair):
    """Test that existing keys are kept without --force."""
    public_key, _ = key_pair
    before = public_key.read_bytes()
    result = invoke("keygen")
    assert result.exit_code == 1
    assert "--force" in result.output
    assert public_key.read_bytes() == before
