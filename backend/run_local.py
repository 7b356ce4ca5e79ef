#!/usr/bin/env python3
"""
Run the reference resolver API locally - No Docker Required!

Usage:
    python run_local.py

Serves the bundled JSON snapshots in data/reference unless
REFERENCE_BACKEND is already set in the environment.
- API Docs: http://localhost:8000/docs
- Health Check: http://localhost:8000/health
"""

import os
import sys
from pathlib import Path

backend_root = Path(__file__).parent
project_root = backend_root.parent
sys.path.insert(0, str(backend_root))
os.chdir(project_root)

os.environ.setdefault("REFERENCE_BACKEND", "memory")
os.environ.setdefault("DEBUG", "true")


def main():
    print("=" * 60)
    print("  Medicare Reference Price Resolver - Local Development Server")
    print("=" * 60)
    print()
    print(f"  Reference backend: {os.environ['REFERENCE_BACKEND']}")
    print("  API URL:      http://localhost:8000")
    print("  API Docs:     http://localhost:8000/docs")
    print("  Health Check: http://localhost:8000/health")
    print()
    print("  Press Ctrl+C to stop")
    print("=" * 60)
    print()

    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info",
    )


if __name__ == "__main__":
    main()
