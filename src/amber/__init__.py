"""
amber - encrypted secrets in version-control friendly files.

Secrets live in a plain YAML file (amber.yaml) next to your code. Anyone
with the repository can add or update a secret, only holders of the
private key can read them.

Features:
- init: Create a new keypair and secrets file
- encrypt: Add or update a secret (no-op when the value is unchanged)
- print: Show all decrypted secrets
- exec: Run commands with secrets injected, output masked

Requires: libsodium (via PyNaCl)
"""

__version__ = "0.1.0"
