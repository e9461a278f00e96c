"""Command line entry point.

Usage:
    python -m booking_engine                      Serve the HTTP API
    python -m booking_engine hash-key <passphrase>
"""
import os
import sys

from booking_engine.auth import AccessGate


def hash_key(argv):
    """Print the bcrypt hash to put in BOOKING_ACCESS_KEY_HASH."""
    if len(argv) < 1:
        print("Usage: python -m booking_engine hash-key <passphrase>")
        print("\nExample:")
        print("  python -m booking_engine hash-key 'staff passphrase'")
        sys.exit(1)

    key_hash = AccessGate.hash_passphrase(argv[0])
    print(f"\nBOOKING_ACCESS_KEY_HASH={key_hash}")
    print("\nAdd this line to your .env file. The passphrase itself is not stored.\n")


def serve():
    import uvicorn

    uvicorn.run(
        "booking_engine.api.server:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level="info"
    )


def main():
    args = sys.argv[1:]
    if args and args[0] == "hash-key":
        hash_key(args[1:])
    else:
        serve()


if __name__ == "__main__":
    main()
