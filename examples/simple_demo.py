#!/usr/bin/env python3
import asyncio

from async_dropx import AsyncDrop, AsyncDropx, join_pending
from async_dropx.log import enable_default_logger


class MyResource(AsyncDrop):
    def __init__(self, name: str):
        self.name = name

    async def async_drop(self) -> None:
        print(f"Cleaning up resource: {self.name}")
        await asyncio.sleep(0.5)
        print(f"Cleanup done for: {self.name}")


async def main():
    print("Creating resource...")
    with AsyncDropx(MyResource("Resource 1")) as res:
        print(f"{res.name} created. Exiting scope now...")

    #   The cleanup runs in the background. Wait for it before the loop goes away,
    #   otherwise `asyncio.run()` would cancel it.
    await join_pending()
    print("Main finished.")


if __name__ == "__main__":
    enable_default_logger()
    asyncio.run(main())
