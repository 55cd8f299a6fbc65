"""
SKConfig -- device configuration sync agent.

Checks in with the config server over mutual TLS, keeps an encrypted
copy of the device's config bundle on disk, and unpacks it into
individual secret files. Install once. Your secrets stay current.

A smilinTux Open Source Project.
"""

import os

__version__ = "0.1.0"
__author__ = "smilinTux"

DEFAULT_CONFIG_URL = "https://ota-lite.foundries.io:8443/config"
SOTA_DIR = os.environ.get("SOTA_DIR", "/var/sota")
SECRETS_DIR = os.environ.get("SECRETS_DIR", "/var/run/secrets")


class SKConfigError(Exception):
    """Base class for every error raised by skconfig."""
