"""
GSM Opener: local device, user and audit-log store for GSM gate relays.

Keeps the devices you control, the phone numbers authorized to use
them, and an audit trail of every command sent. Backs it all up to a
single portable JSON file and restores it even when that file has been
mangled along the way.
"""

import os

__version__ = "0.1.0"
__author__ = "gsmopener"

OPENER_HOME = os.environ.get("GSMOPENER_HOME", "~/.gsmopener")
