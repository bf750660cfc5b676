#!/usr/bin/env python3
"""
Run the campaign targets example.

Adds a campaign with day/time, location and radius targets, updates one
day/time bid and deletes everything again, printing progress and result
records along the way. Uses the in-process sandbox unless
``ADBULK_API__ENVIRONMENT=http``.
"""

import asyncio
from typing import List, Optional

from adbulk.config import Settings, settings as default_settings
from adbulk.auth.credentials import StaticTokenProvider
from adbulk.bulk.api import BulkApi, HttpBulkApi
from adbulk.bulk.operations import BulkServiceManager
from adbulk.bulk.reporter import StatusReporter
from adbulk.bulk.sandbox import SandboxBulkApi
from adbulk.bulk.services import BulkPhaseRunner, PhaseResult, TargetsBulkWorkflow

SANDBOX_TOKEN = "sandbox-token"

def create_api(settings: Settings) -> BulkApi:
    """Build the bulk service client for the configured environment."""
    if settings.api.environment == "http":
        return HttpBulkApi(
            base_url=settings.api.base_url,
            developer_token=settings.api.developer_token,
            customer_id=settings.api.customer_id,
            timeout=settings.network.timeout,
            max_retries=settings.network.retry_count,
            backoff_factor=settings.network.retry_delay,
            pool_size=settings.network.pool_size
        )
    if settings.api.environment == "sandbox":
        return SandboxBulkApi(storage_directory=settings.bulk.file_directory)
    raise ValueError(f"Unknown api environment: {settings.api.environment}")

async def run(settings: Optional[Settings] = None) -> List[PhaseResult]:
    settings = settings or default_settings
    api = create_api(settings)
    token = settings.api.access_token
    if token is None and settings.api.environment == "sandbox":
        token = SANDBOX_TOKEN

    manager = BulkServiceManager(
        api,
        StaticTokenProvider(token),
        account_id=settings.api.account_id,
        poll_interval=settings.bulk.poll_interval,
        timeout=settings.bulk.timeout
    )
    runner = BulkPhaseRunner(manager, StatusReporter(), settings.bulk)
    try:
        return await TargetsBulkWorkflow(runner).run()
    finally:
        await manager.close()

def main() -> int:
    """Run the example; exit code 1 if any phase failed."""
    results = asyncio.run(run())
    return 0 if results and all(result.succeeded for result in results) else 1

if __name__ == "__main__":
    raise SystemExit(main())
