"""
credbag: personal secret manager for credential profiles.

Credential profiles are stored encrypted at rest in a bag and can be
decrypted, displayed, verified against their issuing service, rotated, or
ephemerally mounted as files for other tools to consume.
"""

__version__ = "1.0.0"
__author__ = "Tyler Zervas"
__email__ = "tz-dev@vectorweight.com"
