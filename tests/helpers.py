import asyncio


async def wait_for(predicate, timeout: float = 5.0) -> None:
    """Poll predicate until it is true or fail after timeout"""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
