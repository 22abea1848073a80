#!/usr/bin/env python3
"""
Setup Helper for Google Calendar MCP Server

This script helps you configure the Google Calendar MCP Server by:
1. Checking for required Python packages
2. Validating the service account key file
3. Showing which calendar will be read
4. Testing the connection to Google Calendar
5. Generating an MCP client configuration
"""

import os
import sys
import json
import asyncio
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file (if it exists)
load_dotenv()


def print_header(text):
    """Print a formatted header."""
    print("\n" + "=" * 70)
    print(f"  {text}")
    print("=" * 70 + "\n")


def print_step(number, text):
    """Print a formatted step."""
    print(f"\n{'─' * 70}")
    print(f"  Step {number}: {text}")
    print('─' * 70 + "\n")


def check_dependencies():
    """Check if required Python packages are installed."""
    print_step(1, "Checking Dependencies")

    required_packages = [
        "googleapiclient",
        "google.auth",
        "google_auth_httplib2",
        "httplib2",
        "pydantic",
        "mcp",
        "dotenv",
    ]
    missing = []

    for package in required_packages:
        try:
            __import__(package)
            print(f"✓ {package:<20} installed")
        except ImportError:
            print(f"✗ {package:<20} MISSING")
            missing.append(package)

    if missing:
        print(f"\nWarning: Missing packages: {', '.join(missing)}")
        print("\nInstall them with:")
        print("  pip install -e .")
        return False

    print("\nAll dependencies installed!")
    return True


def check_credentials(settings):
    """Check that the service account key file exists and parses."""
    print_step(2, "Checking Service Account Credentials")

    from google_calendar_mcp import CalendarAccessError, load_service_account

    print(f"Key file: {settings.credentials_file}")

    try:
        key = load_service_account(settings.credentials_file)
    except CalendarAccessError as e:
        print(f"✗ {e}")
        print("\nTo set it up:")
        print("  1. Open https://console.cloud.google.com/iam-admin/serviceaccounts")
        print("  2. Create a service account and add a JSON key")
        print("  3. Save the key file and point to it:")
        print('     export GOOGLE_SERVICE_ACCOUNT_FILE="/path/to/service-account.json"')
        return None

    print(f"✓ client_email: {key.client_email}")
    print(f"✓ private_key: {'*' * 16} (hidden)")
    print("\nCredentials configured!")
    return key


def check_calendar(settings, key):
    """Show which calendar the server will read."""
    print_step(3, "Checking Calendar ID")

    if os.environ.get("GOOGLE_CALENDAR_ID"):
        print(f"✓ GOOGLE_CALENDAR_ID: {settings.calendar_id}")
    else:
        print(f"GOOGLE_CALENDAR_ID not set, using '{settings.calendar_id}'")
        print("\nNote: a service account's 'primary' calendar is its own, usually empty one.")
        print("Set GOOGLE_CALENDAR_ID to the calendar you shared with:")
        print(f"  {key.client_email}")


def test_connection(settings):
    """Authenticate and fetch the configured calendar."""
    print_step(4, "Testing Connection to Google Calendar")

    from google_calendar_mcp import CalendarAccessError, CalendarGateway

    gateway = CalendarGateway.from_settings(settings)
    print(f"Calendar ID: {gateway.calendar_id}")
    print("Testing authentication...")

    try:
        summary = asyncio.run(gateway.check_connection())
    except CalendarAccessError as e:
        print(f"\nConnection failed: {e}")
        print("\nPossible issues:")
        print("  1. The Google Calendar API is not enabled for the key's project")
        print("  2. The calendar is not shared with the service account")
        print("  3. Network connectivity issues")
        return None

    print(f"\nConnection successful! Calendar: {summary}")
    return summary


def create_mcp_config(settings):
    """Generate MCP client configuration."""
    print_step(5, "MCP Client Configuration")

    config = {
        "mcpServers": {
            "google-calendar": {
                "command": "python",
                "args": [str(Path(__file__).resolve().parent / "google_calendar_mcp.py")],
                "env": {
                    "GOOGLE_SERVICE_ACCOUNT_FILE": str(settings.credentials_file),
                    "GOOGLE_CALENDAR_ID": settings.calendar_id,
                },
            }
        }
    }

    config_text = json.dumps(config, indent=2)

    print("Add this to your MCP client configuration:\n")
    print("Examples:")
    print("  Claude Desktop (macOS): ~/Library/Application Support/Claude/claude_desktop_config.json")
    print("  Claude Desktop (Windows): %APPDATA%\\Claude\\claude_desktop_config.json")
    print("  Generic MCP client: Check your client's documentation\n")
    print(config_text)

    config_file = Path.cwd() / "mcp_config.json"
    with open(config_file, "w") as f:
        f.write(config_text)

    print(f"\nConfiguration saved to: {config_file}")
    print("Copy this into your MCP client config file.")


def main():
    """Main setup flow."""
    print_header("Google Calendar MCP Server - Setup")

    print("This script will help you set up the Google Calendar MCP Server.")
    print("Press Ctrl+C at any time to exit.\n")

    # Step 1: Check dependencies
    if not check_dependencies():
        print("\nSetup aborted. Please install dependencies and try again.")
        return 1

    from google_calendar_mcp import load_settings

    settings = load_settings()

    # Step 2: Check credentials
    key = check_credentials(settings)
    if key is None:
        print("\nSetup aborted. Please configure credentials and try again.")
        return 1

    # Step 3: Calendar ID
    check_calendar(settings, key)

    # Step 4: Test connection
    if test_connection(settings) is None:
        print("\nSetup aborted. Please fix connection issues and try again.")
        return 1

    # Step 5: Generate MCP config
    create_mcp_config(settings)

    print_header("Setup Complete!")
    print("Next steps:")
    print("  1. Add the configuration to your MCP client config file")
    print("  2. Restart your MCP client")
    print("  3. Test: Ask your LLM to read resource://today-calendar")
    print("\nTo run the server manually for testing:")
    print("  python3 google_calendar_mcp.py")
    print("\n" + "=" * 70 + "\n")

    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nSetup cancelled by user.")
        sys.exit(1)
