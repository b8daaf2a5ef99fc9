"""Credential profile types and the registry that selects them."""

from . import aws, ssh  # noqa: F401  registers the built-in types
from .aws import AwsProfile, AwsSessionProfile
from .base import Capabilities, Profile, Prompter, PromptField
from .registry import Registry, registry
from .ssh import SshKeyProfile

__all__ = [
    "AwsProfile",
    "AwsSessionProfile",
    "Capabilities",
    "Profile",
    "PromptField",
    "Prompter",
    "Registry",
    "SshKeyProfile",
    "registry",
]
