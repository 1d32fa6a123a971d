#!/usr/bin/env python3
"""
Classroom Economy Entry Point

Starts the FastAPI server with the classroom economy engine.
"""

import sys

import uvicorn

from classroom_economy.api import create_app
from classroom_economy.config import get_config
from classroom_economy.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("🏫 Starting Classroom Economy...")
    print(f"🗄️  Storage: {config.database_url}")
    print(f"🔒 Audit trail {'active' if config.enable_audit_logging else 'disabled'}")
    print("💰 All amounts use Decimal precision")
    print(f"🌐 API available at: http://localhost:{config.api_port}")
    print(f"📚 Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        uvicorn.run(create_app(), host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\n👋 Shutting down Classroom Economy...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)
