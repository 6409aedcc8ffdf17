#!/usr/bin/env python3
"""Plaid API setup script.

Validates Plaid API credentials by creating a link token for the
transactions product. Banks are linked afterwards through Plaid Link in
the browser, not through this script.

Usage:
    1. Sign up at https://dashboard.plaid.com/
    2. Get your client_id and secret from the Keys page
    3. Run this script and follow the prompts
    4. Store the credentials in the keychain or add them to .env
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from integrations.exceptions import ProviderError
from integrations.plaid_client import PlaidClient
from services.credential_manager import (
    CREDENTIAL_KEYS,
    delete_credential,
    list_credentials,
    set_credential,
)

ENVIRONMENT_CHOICES = {"1": "sandbox", "2": "production"}


def validate_credentials(client_id: str, secret: str, env: str) -> None:
    """Validate Plaid credentials by creating a test link token.

    Raises:
        ProviderError: If Plaid rejects the request.
    """
    client = PlaidClient(client_id=client_id, secret=secret, environment=env)
    link_token = client.create_link_token("setup-test")
    if not link_token:
        raise ProviderError("No link_token in response", provider_name="Plaid")


def offer_keychain_store(credentials: dict[str, str]) -> None:
    """Prompt the user to store credentials in the system keychain."""
    answer = input("\nStore these credentials in the system keychain? [Y/n] ").strip().lower()
    if answer not in ("", "y", "yes"):
        print("  Skipped keychain storage.")
        return
    for key, value in credentials.items():
        if set_credential(key, value):
            print(f"  Stored {key} in keychain")
        else:
            print(f"  Failed to store {key}")


def clear_stored_credentials() -> None:
    for key in sorted(CREDENTIAL_KEYS):
        if delete_credential(key):
            print(f"  Removed {key} from keychain")


def main():
    """Prompt for credentials and validate them."""
    parser = argparse.ArgumentParser(description="Validate and store Plaid API credentials")
    parser.add_argument(
        "--clear", action="store_true", help="Remove stored Plaid credentials and exit"
    )
    args = parser.parse_args()

    if args.clear:
        clear_stored_credentials()
        return

    print("Plaid API Setup")
    print("=" * 50)
    print()

    stored = list_credentials()
    if stored:
        print(f"Already in keychain: {', '.join(stored)} (re-entering will overwrite)")
        print()
    print("To get Plaid API credentials:")
    print("  1. Sign up at https://dashboard.plaid.com/")
    print("  2. Go to Developers > Keys")
    print("  3. Copy your client_id and secret")
    print()

    client_id = input("Enter your Plaid client_id: ").strip()
    if not client_id:
        print("Error: No client_id provided")
        sys.exit(1)

    secret = input("Enter your Plaid secret: ").strip()
    if not secret:
        print("Error: No secret provided")
        sys.exit(1)

    print()
    print("Choose environment:")
    print("  1. sandbox (for testing with fake data)")
    print("  2. production (for live use)")
    env_choice = input("Enter choice (1 or 2) [1]: ").strip() or "1"
    env = ENVIRONMENT_CHOICES.get(env_choice, "sandbox")

    print()
    print(f"Validating credentials against {env} environment...")

    try:
        validate_credentials(client_id, secret, env)
    except ProviderError as e:
        print(f"Error: {e}")
        print()
        print("Common issues:")
        print("  - Incorrect client_id or secret")
        print("  - Secret belongs to a different environment")
        sys.exit(1)

    print()
    print("Success! Add the following to your .env file:")
    print()
    print(f"PLAID_CLIENT_ID={client_id}")
    print(f"PLAID_SECRET={secret}")
    print(f"PLAID_ENVIRONMENT={env}")

    offer_keychain_store({
        "PLAID_CLIENT_ID": client_id,
        "PLAID_SECRET": secret,
    })

    print()
    print("Next: start the backend and link a bank through Plaid Link.")


if __name__ == "__main__":
    main()
