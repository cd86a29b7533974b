#!/usr/bin/env python3
"""
Loan Servicing Entry Point

Starts the FastAPI server with the loan servicing API.
"""

import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from loan_servicing.api import run_server
from loan_servicing.config import get_config


if __name__ == "__main__":
    config = get_config()
    print("Starting Loan Servicing API...")
    print(f"Default currency: {config.default_currency}")
    print(f"Default penalty rate: {config.default_penalty_rate_percent}%")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        run_server()
    except KeyboardInterrupt:
        print("\nShutting down Loan Servicing API...")
