#!/usr/bin/env python3
"""
Simple run script for AgentFlow.

Usage:
    python run.py

Or with custom settings:
    HOST=127.0.0.1 PORT=8080 GEMINI_API_KEY=... python run.py
"""

import uvicorn
import os

from agentflow.config import settings


def main():
    """Run the FastAPI application."""
    host = settings.HOST
    port = settings.PORT
    reload = os.getenv("RELOAD", "true").lower() == "true"

    print(f"""
╔═══════════════════════════════════════════════════════════════╗
║                      AgentFlow                                ║
║                                                               ║
║  Run text through a graph of language-model agents            ║
╠═══════════════════════════════════════════════════════════════╣
║  Server:    http://{host}:{port}                                 ║
║  API Docs:  http://{host}:{port}/docs                            ║
║  Model:     {settings.GEMINI_MODEL:<50}║
╚═══════════════════════════════════════════════════════════════╝
    """)

    uvicorn.run(
        "agentflow.main:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
