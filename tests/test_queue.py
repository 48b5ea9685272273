import asyncio

import pytest

from turnstile import ClassifiedError, RequestDescriptor, RequestQueue


@pytest.mark.asyncio
async def test_drain_is_sequential_and_fifo():
    queue = RequestQueue()
    futures = [queue.enqueue(RequestDescriptor("GET", f"/{n}")) for n in "abc"]
    running, order = [], []

    async def replay(d):
        running.append(d.url)
        assert len(running) == 1
        await asyncio.sleep(0)
        order.append(d.url)
        running.remove(d.url)
        return d.url

    await queue.drain(replay)

    assert order == ["/a", "/b", "/c"]
    assert [f.result() for f in futures] == ["/a", "/b", "/c"]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_drain_marks_replays_as_retries():
    queue = RequestQueue()
    queue.enqueue(RequestDescriptor("GET", "/a"))
    seen = []

    async def replay(d):
        seen.append(d.is_retry)

    await queue.drain(replay)
    assert seen == [True]


@pytest.mark.asyncio
async def test_failure_settles_only_its_entry():
    queue = RequestQueue()
    ok, bad, ok2 = (queue.enqueue(RequestDescriptor("GET", u)) for u in ("/ok", "/bad", "/ok2"))

    async def replay(d):
        if d.url == "/bad":
            raise ClassifiedError.unauthorized()
        return d.url

    await queue.drain(replay)

    assert ok.result() == "/ok"
    assert isinstance(bad.exception(), ClassifiedError)
    assert ok2.result() == "/ok2"


@pytest.mark.asyncio
async def test_entries_added_during_drain_are_replayed():
    queue = RequestQueue()
    queue.enqueue(RequestDescriptor("GET", "/first"))
    late = {}
    order = []

    async def replay(d):
        order.append(d.url)
        if d.url == "/first":
            late["f"] = queue.enqueue(RequestDescriptor("GET", "/late"))
        return d.url

    await queue.drain(replay)
    assert order == ["/first", "/late"]
    assert late["f"].result() == "/late"


@pytest.mark.asyncio
async def test_reject_all():
    queue = RequestQueue()
    futures = [queue.enqueue(RequestDescriptor("GET", "/x")) for _ in range(3)]
    error = ClassifiedError.unauthorized()

    queue.reject_all(error)

    assert all(f.exception() is error for f in futures)
    assert not queue


@pytest.mark.asyncio
async def test_cancelled_waiters_are_skipped():
    queue = RequestQueue()
    gone = queue.enqueue(RequestDescriptor("GET", "/gone"))
    kept = queue.enqueue(RequestDescriptor("GET", "/kept"))
    gone.cancel()
    replayed = []

    async def replay(d):
        replayed.append(d.url)
        return d.url

    await queue.drain(replay)
    assert replayed == ["/kept"]
    assert kept.result() == "/kept"


@pytest.mark.asyncio
async def test_replay_gets_a_copy_of_the_dispatched_descriptor():
    queue = RequestQueue()
    sent = RequestDescriptor("GET", "/me", headers={"x-access-token": "old"}, params={"a": 1})
    queue.enqueue(sent)
    replayed = []

    async def replay(d):
        d.headers["x-access-token"] = "new"
        d.params["b"] = 2
        replayed.append(d)

    await queue.drain(replay)

    assert replayed[0] is not sent
    assert replayed[0].is_retry is True
    assert sent.is_retry is False
    assert sent.headers == {"x-access-token": "old"}
    assert sent.params == {"a": 1}


@pytest.mark.asyncio
async def test_replays_are_logged_with_enqueue_index(caplog):
    queue = RequestQueue()
    for url in ("/a", "/b"):
        queue.enqueue(RequestDescriptor("GET", url))

    async def replay(d):
        return d.url

    with caplog.at_level("DEBUG", logger="turnstile"):
        await queue.drain(replay)

    assert "replaying #0 GET /a" in caplog.text
    assert "replaying #1 GET /b" in caplog.text
