import asyncio

import pytest

from app_maker.bridge import AgentTaskBridge
from app_maker.contracts import AgentTaskStatusEvent
from app_maker.queue import TaskQueue

pytestmark = pytest.mark.service


async def test_published_events_reach_the_queue(redis_client):
    queue = TaskQueue(redis_client, prefix="test")
    bridge = AgentTaskBridge(redis_client, queue, channel="agent:task", poll_timeout=0.05)
    runner = asyncio.create_task(bridge.run())

    event = AgentTaskStatusEvent(
        task_id="A1", project_guid="g1", dev_stage="generate_prd", status="done", message="ok"
    )
    stream = queue.stream_key("critical")
    for _ in range(100):
        if await redis_client.xlen(stream):
            break
        await redis_client.publish("agent:task", event.model_dump_json())
        await asyncio.sleep(0.05)

    bridge.stop()
    await asyncio.wait_for(runner, timeout=2)

    entries = await redis_client.xrange(stream)
    assert entries
    assert '"task_id":"A1"' in entries[0][1]["data"]
