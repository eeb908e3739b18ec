"""Allow running as: python -m vault"""
import asyncio
from vault.orchestrator import main

if __name__ == "__main__":
    asyncio.run(main())
