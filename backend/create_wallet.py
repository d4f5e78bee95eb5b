"""Provision a billing wallet for an existing user.

Usage: python -m backend.create_wallet <user-id> [network]
"""
import sys

from backend.app.services.custody import get_wallet_custody_service
from backend.app.wallets.repository import ensure_schema as ensure_wallet_schema


def main(argv=None):
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("Usage: python -m backend.create_wallet <user-id> [network]", file=sys.stderr)
        return 1

    user_id = args[0]
    network = args[1] if len(args) > 1 else None

    service = get_wallet_custody_service()
    ensure_wallet_schema()
    result = service.provision_user_wallet(user_id, network)

    if result.created:
        print("Wallet created.")
    else:
        print("Wallet already exists.")
    print(f"   Address: {result.address}")
    print(f"   Network: {result.network}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
