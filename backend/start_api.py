#!/usr/bin/env python3
"""
Funnelboard API Startup Script

This script starts the Funnelboard FastAPI server for local development.
"""

import sys
from pathlib import Path

import uvicorn


def main():
    """Start the Funnelboard API server."""
    print("🚀 Starting Funnelboard API Server...")
    print("📊 Features:")
    print("   ✅ GoHighLevel webhook receiver")
    print("   ✅ Facebook ad spend sync and import")
    print("   ✅ Ad transcripts")
    print("   ✅ Dashboard metrics")
    print("")
    print("📖 Documentation will be available at:")
    print("   🌐 Swagger UI:  http://localhost:8000/docs")
    print("   📚 ReDoc:       http://localhost:8000/redoc")
    print("")

    # Check for environment file
    env_file = Path(".env")
    if not env_file.exists():
        print("⚠️  WARNING: No .env file found!")
        print("   Create a .env file with these variables:")
        print("   DATABASE_URL=postgresql://...")
        print("   FACEBOOK_ACCESS_TOKEN=...  FACEBOOK_AD_ACCOUNT_ID=...")
        print("   GHL_API_KEY=...  GHL_LOCATION_ID=...")
        print("   DEEPGRAM_API_KEY=...")
        print("")

    try:
        uvicorn.run(
            "funnelboard.main:app",
            host="0.0.0.0",
            port=8000,
            reload=True,
            reload_dirs=["funnelboard"],
            log_level="info"
        )
    except KeyboardInterrupt:
        print("\n👋 Shutting down Funnelboard API server...")
    except Exception as e:
        print(f"❌ Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
