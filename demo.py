#!/usr/bin/env python3
"""
Datastore SDK Demo - Shows saves, lookups and paginated queries.

Run against a local emulator:

    gcloud beta emulators datastore start --project=demo-project
    DATASTORE_EMULATOR_HOST=localhost:8081 DATASTORE_PROJECT_ID=demo-project python demo.py
"""

import asyncio
import logging

from sdk.datastore_sdk import Datastore, Settings


async def main():
    print("=" * 60)
    print("Datastore SDK Demo - Saves, Lookups and Queries")
    print("=" * 60)
    print()

    settings = Settings()
    if not settings.project_id:
        settings = Settings(project_id="demo-project")
    print(f"[Setup] Project {settings.project_id} at {settings.base_url}")

    async with Datastore(settings) as ds:
        # 1. Save with generated ids
        print("\n[Step 1] Saving tasks...")
        keys = [ds.key(["Task"]) for _ in range(5)]
        await ds.save(
            [
                {"key": key, "data": {"title": f"Task {i}", "priority": i, "done": i % 2 == 0}}
                for i, key in enumerate(keys)
            ]
        )
        for key in keys:
            print(f"  Saved {key.kind} with id {key.id}")

        # 2. Lookup
        print("\n[Step 2] Looking up the first task...")
        task = await ds.get(keys[0])
        print(f"  {task.key.path}: {dict(task)}")

        # 3. Paginated query, small batches force continuation
        print("\n[Step 3] Querying open tasks two at a time...")
        query = ds.create_query("Task").filter("done", "=", False).limit(2)
        entities, info = await ds.run_query(query)
        print(f"  Got {len(entities)} tasks, moreResults={info.more_results}")

        # 4. Streaming with early termination
        print("\n[Step 4] Streaming until the first match...")
        query = ds.create_query("Task").order("priority", descending=True)
        async with ds.run_query_stream(query) as stream:
            async for entity in stream:
                print(f"  First by priority: {entity['title']}")
                break

        # 5. Cleanup
        print("\n[Step 5] Deleting tasks...")
        await ds.delete(keys)
        print(f"  Deleted {len(keys)} tasks")

    print("\nDone.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
