#!/usr/bin/env python3
"""Check a Plaid client id and secret, then offer to keep them in the keychain.

The check creates a throwaway hosted Link token; nothing is linked.

Usage:
    python -m scripts.setup_plaid
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from integrations.exceptions import ProviderError
from integrations.plaid_client import PlaidClient
from services.credential_manager import missing_credentials, set_credential

ENVIRONMENTS = {"1": "sandbox", "2": "production"}


def validate_credentials(client_id: str, secret: str, environment: str) -> str:
    """Create a link token with the given credentials and return it.

    Raises:
        ProviderError: Plaid rejected the credentials or was unreachable.
    """
    client = PlaidClient(client_id=client_id, secret=secret, environment=environment)
    return client.create_link_token(client_user_id="setup-check").link_token


def store_in_keychain(credentials: dict[str, str]) -> None:
    answer = input("\nStore these credentials in the system keychain? [Y/n] ").strip().lower()
    if answer not in ("", "y", "yes"):
        print("  Skipped keychain storage.")
        return
    for key, value in credentials.items():
        print(f"  {'Stored' if set_credential(key, value) else 'Failed to store'} {key}")


def main():
    print("Plaid API Setup")
    print("=" * 50)
    print("Keys are on the Plaid dashboard under Developers > Keys.")
    missing = missing_credentials()
    if missing:
        print(f"Not in keychain yet: {', '.join(missing)}")
    else:
        print("Keychain already holds both credentials; new values replace them.")
    print()

    client_id = input("Plaid client_id: ").strip()
    secret = input("Plaid secret: ").strip()
    if not client_id or not secret:
        print("Error: both client_id and secret are required")
        sys.exit(1)

    choice = input("Environment: 1) sandbox  2) production [1]: ").strip() or "1"
    environment = ENVIRONMENTS.get(choice, "sandbox")

    print(f"\nValidating credentials against {environment}...")
    try:
        validate_credentials(client_id, secret, environment)
    except ProviderError as e:
        print(f"Error: {e}")
        print("Check that the secret belongs to the chosen environment.")
        sys.exit(1)

    print("\nCredentials accepted. Non-secret settings for .env:")
    print(f"PLAID_ENVIRONMENT={environment}")
    print("PLAID_WEBHOOK_URL=<public URL of /api/plaid/webhook>")

    store_in_keychain({"PLAID_CLIENT_ID": client_id, "PLAID_SECRET": secret})


if __name__ == "__main__":
    main()
