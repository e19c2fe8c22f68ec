#!/usr/bin/env python3
"""Generate the ENCRYPTION_KEY used to encrypt artifacts before they reach XuperDB.

Usage:
  python scripts/generate_encryption_key.py [ENV_FILE]
  With ENV_FILE the key is appended to it, unless it already sets ENCRYPTION_KEY.
"""

import base64
import os
import sys


def main():
    key_b64 = base64.b64encode(os.urandom(32)).decode("utf-8")

    if len(sys.argv) < 2:
        print(f"ENCRYPTION_KEY={key_b64}")
        print()
        print("Every executor reading the same XuperDB namespace needs this key.")
        return 0

    env_file = sys.argv[1]
    if os.path.exists(env_file):
        with open(env_file) as f:
            if any(line.startswith("ENCRYPTION_KEY=") for line in f):
                print(f"{env_file} already sets ENCRYPTION_KEY, not overwriting", file=sys.stderr)
                return 1

    with open(env_file, "a") as f:
        f.write(f"ENCRYPTION_KEY={key_b64}\n")
    print(f"ENCRYPTION_KEY appended to {env_file}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
