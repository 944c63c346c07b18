"""
Example: Basic GeoPulse usage with geopulse_sdk
===============================================

This example shows plain API calls and an import upload with progress.
"""

import asyncio

from geopulse_sdk import ClientConfig, ConnectionContext, GeoPulseClient
from geopulse_sdk.upload import CallbackObserver


async def example_basic_calls():
    """Sign in and read data with an explicit config."""

    cfg = ClientConfig(
        base_url="https://geopulse.example.com/api",
        session_file="~/.geopulse/session.json",
    )

    async with GeoPulseClient(cfg) as api:
        result = await api.login("me@example.com", "PASSWORD")
        print(f"Signed in as {result.email} ({result.transport_mode.value} mode)")

        # Expired sessions are refreshed transparently
        tags = await api.get("/period-tags")
        print("Period tags:", tags)

        export = await api.download("/export/jobs/123/download", ".")
        print("Saved", export.path)


async def example_import_upload():
    """Upload a large Google Timeline export (ConnectionContext style)."""

    # Reads from environment variables: GEOPULSE_BASE_URL, GEOPULSE_EMAIL, GEOPULSE_PASSWORD
    async with ConnectionContext() as conn:
        observer = CallbackObserver(
            on_progress=lambda p: print(f"{p:6.2f}%"),
            on_chunk_complete=lambda i, n: print(f"chunk {i + 1}/{n} done"),
        )
        job = await conn.uploader.upload(
            "Records.json",
            "google-timeline",
            {"clearDataBeforeImport": False},
            observer=observer,
        )
        print("Import job:", job)


if __name__ == "__main__":
    asyncio.run(example_basic_calls())
    asyncio.run(example_import_upload())
