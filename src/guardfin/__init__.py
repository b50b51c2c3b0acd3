"""
Guardfin -- zero-knowledge personal finance vault.

Your ledger lives on your machine, encrypted under a key only your
passphrase can rebuild. The server stores ciphertext and nothing else.
"""

import os

__version__ = "0.1.0"
__author__ = "Guardfin"

GUARDFIN_HOME = os.environ.get("GUARDFIN_HOME", "~/.guardfin")
