#!/usr/bin/env python3
"""
Microfinance Lending Core Entry Point

Starts the FastAPI server with the host and port from MICROFINANCE_API_HOST /
MICROFINANCE_API_PORT (defaults 0.0.0.0:8000).
"""

import sys

from microfinance.api import run_server
from microfinance.config import get_config


if __name__ == "__main__":
    print("Starting Microfinance Lending Core...")
    if get_config().enable_audit_logging:
        print("Audit trail active")
    else:
        print("Audit trail disabled (MICROFINANCE_ENABLE_AUDIT_LOGGING=false)")
    print("All monetary calculations use Decimal precision")
    print("Documentation at /docs")
    print()

    try:
        run_server(debug="--debug" in sys.argv)
    except KeyboardInterrupt:
        print("\nShutting down Microfinance Lending Core...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
