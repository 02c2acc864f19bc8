# scripts/create_admin.py
# 手動跑一次 admin bootstrap（不啟動 API）：python -m scripts.create_admin
import asyncio

from filerunner.core.logging import setup_logging
from filerunner.services.bootstrap import run_bootstrap

async def main():
    setup_logging()
    await run_bootstrap()

if __name__ == "__main__":
    asyncio.run(main())
