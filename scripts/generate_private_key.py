#!/usr/bin/env python3
"""Generate the executor's private.key under a key directory.

Usage:
  python scripts/generate_private_key.py [KEY_PATH]
  KEY_PATH defaults to ./keys (the executor's KeyPath).
"""

import os
import secrets
import sys


def main():
    key_path = sys.argv[1] if len(sys.argv) > 1 else "./keys"
    target = os.path.join(key_path, "private.key")
    if os.path.exists(target):
        print(f"{target} already exists, not overwriting", file=sys.stderr)
        return 1

    os.makedirs(key_path, exist_ok=True)
    private_key = secrets.token_hex(32)
    with open(target, "w") as f:
        f.write(private_key + "\n")
    os.chmod(target, 0o600)

    print(f"Private key written to {target}")
    print("Leave PrivateKey empty in config.toml to use it.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
