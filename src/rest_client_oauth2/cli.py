#!/usr/bin/env python3
"""
Command line front end for workspace OAuth2 tokens.

This tool makes it easy to:
- Obtain an access token through the browser consent flow
- Refresh an access token with the stored refresh token
- View stored tokens (safely redacted)
- List configured providers
- Obtain tokens through an external helper program

Usage:
    rest-client-oauth2 get-access-token <provider>
    rest-client-oauth2 refresh-token <provider>
    rest-client-oauth2 show <provider>
    rest-client-oauth2 list
    rest-client-oauth2 helper <provider> <helper_path>
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from rest_client_oauth2.errors import OAuth2Error, TokensNotFoundError
from rest_client_oauth2.helper_process import SubprocessHelper
from rest_client_oauth2.orchestrator import OAuth2Orchestrator
from rest_client_oauth2.provider_config import TokenSet
from rest_client_oauth2.settings import OAuth2Settings
from rest_client_oauth2.token_store import WorkspaceTokenStore


def safe_display_token(token: str, prefix_len: int = 20, suffix_len: int = 6) -> str:
    """Safely display a token with most characters redacted."""
    if len(token) <= prefix_len + suffix_len:
        return f"{token[:10]}..."

    prefix = token[:prefix_len]
    suffix = token[-suffix_len:]
    redacted_len = len(token) - prefix_len - suffix_len

    return f"{prefix}...{'*' * min(redacted_len, 20)}...{suffix}"


def print_header(text: str):
    """Print a formatted header."""
    print("\n" + "=" * 60)
    print(text)
    print("=" * 60)


def print_tokens(tokens: TokenSet):
    """Print a token set with secrets redacted."""
    print(f"Access Token: {safe_display_token(tokens.access_token)}")
    if tokens.refresh_token:
        print(f"Refresh Token: {safe_display_token(tokens.refresh_token)}")
    for key, value in (tokens.model_extra or {}).items():
        print(f"{key}: {value}")


async def cmd_get_access_token(settings: OAuth2Settings, provider_name: str):
    """Obtain and store a new token set for a provider."""
    print_header(f"Obtaining Access Token for {provider_name}")

    orchestrator = OAuth2Orchestrator(settings=settings)

    try:
        print("\n🔐 Starting OAuth2 authorization...")
        print("This will open a browser window for authorization.\n")

        tokens = await orchestrator.get_access_token(provider_name)

        print("\n✅ Access token obtained!")
        print_tokens(tokens)
        print("\n💾 Tokens saved to workspace")
        return 0

    except OAuth2Error as e:
        print(f"\n❌ Authorization failed: {e}")
        return 1


async def cmd_refresh_token(settings: OAuth2Settings, provider_name: str):
    """Refresh the stored access token of a provider."""
    print_header(f"Refreshing Access Token for {provider_name}")

    orchestrator = OAuth2Orchestrator(settings=settings)

    try:
        tokens = await orchestrator.refresh_token(provider_name)

        print("\n✅ Access token refreshed!")
        print_tokens(tokens)
        return 0

    except OAuth2Error as e:
        print(f"\n❌ Refresh failed: {e}")
        return 1


def cmd_show(settings: OAuth2Settings, provider_name: str):
    """Show the stored tokens of a provider."""
    print_header(f"Token Information for {provider_name}")

    store = WorkspaceTokenStore(settings)

    try:
        tokens = store.read_tokens(provider_name)
    except TokensNotFoundError:
        print(f"❌ No tokens found for '{provider_name}'")
        print("\nTip: Obtain tokens first with:")
        print(f"  rest-client-oauth2 get-access-token {provider_name}")
        return 1
    except OAuth2Error as e:
        print(f"❌ Failed to load tokens for '{provider_name}': {e}")
        return 1

    print(f"✅ Found tokens for '{provider_name}'\n")
    print_tokens(tokens)
    return 0


def cmd_list(settings: OAuth2Settings):
    """List configured providers and whether tokens are stored."""
    print_header("Configured OAuth2 Providers")

    store = WorkspaceTokenStore(settings)

    try:
        providers = store.list_providers()

        if not providers:
            print("No providers configured.")
            print(f"\nTip: Add a provider file under {store.oauth2_dir / 'providers'}")
            return 0

        print(f"Found {len(providers)} provider(s):\n")
        for provider_name in providers:
            status = "✅ TOKENS STORED" if store.has_tokens(provider_name) else "— no tokens"
            print(f"  • {provider_name}")
            print(f"    Status: {status}")
        return 0

    except OAuth2Error as e:
        print(f"❌ Error listing providers: {e}")
        return 1


async def cmd_helper(settings: OAuth2Settings, provider_name: str, helper_path: str):
    """Obtain tokens through an external OAuth2 helper program."""
    print_header(f"Running OAuth2 Helper for {provider_name}")
    print(f"Helper: {helper_path}")

    orchestrator = OAuth2Orchestrator(settings=settings)

    try:
        tokens = await orchestrator.get_access_token_with_helper(
            provider_name, SubprocessHelper([helper_path])
        )

        print("\n✅ Access token obtained!")
        print_tokens(tokens)
        return 0

    except OAuth2Error as e:
        print(f"\n❌ Helper failed: {e}")
        return 1


def build_settings(workspace: Optional[str]) -> OAuth2Settings:
    return OAuth2Settings.from_env(workspace=workspace)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="REST Client OAuth2 Token CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rest-client-oauth2 --workspace ~/api-project get-access-token google
  rest-client-oauth2 refresh-token google
  rest-client-oauth2 show google
  rest-client-oauth2 list
  rest-client-oauth2 helper google /opt/oauth2/oauth2.AppImage

Provider files live in <workspace>/.rest-client/oauth2/providers/<name>.json
and tokens are written to <workspace>/.rest-client/oauth2/tokens/<name>.json.
        """,
    )
    parser.add_argument(
        "--workspace",
        help="Workspace folder (default: $REST_CLIENT_WORKSPACE)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable informational logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    get_parser = subparsers.add_parser(
        "get-access-token", help="Obtain tokens through browser authorization"
    )
    get_parser.add_argument("provider_name", help="Provider name (e.g., google)")

    refresh_parser = subparsers.add_parser(
        "refresh-token", help="Refresh the access token with the stored refresh token"
    )
    refresh_parser.add_argument("provider_name", help="Provider name")

    show_parser = subparsers.add_parser("show", help="Show stored tokens for a provider")
    show_parser.add_argument("provider_name", help="Provider name")

    subparsers.add_parser("list", help="List configured providers")

    helper_parser = subparsers.add_parser(
        "helper", help="Obtain tokens through an external helper program"
    )
    helper_parser.add_argument("provider_name", help="Provider name")
    helper_parser.add_argument("helper_path", help="Path to the helper executable")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Execute command
    try:
        settings = build_settings(args.workspace)

        if args.command == "get-access-token":
            return asyncio.run(cmd_get_access_token(settings, args.provider_name))
        elif args.command == "refresh-token":
            return asyncio.run(cmd_refresh_token(settings, args.provider_name))
        elif args.command == "show":
            return cmd_show(settings, args.provider_name)
        elif args.command == "list":
            return cmd_list(settings)
        elif args.command == "helper":
            return asyncio.run(
                cmd_helper(settings, args.provider_name, args.helper_path)
            )
        else:  # pragma: no cover
            # This should never be reached due to argparse validation
            parser.print_help()
            return 1

    except KeyboardInterrupt:
        print("\n\n❌ Interrupted by user")
        return 130
    except Exception as e:
        print(f"\n❌ Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
