#!/usr/bin/env python3
"""Generate a shared secret for the CHORUS reset gate.

Usage:
    python scripts/gen_reset_secret.py
"""

import secrets


def main() -> None:
    print(f"CHORUS_RESET_SECRET={secrets.token_urlsafe(24)}")


if __name__ == "__main__":
    main()
