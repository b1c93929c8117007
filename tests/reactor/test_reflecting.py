import asyncio
import contextlib

import pytest

from kinformer._cogs.clients.errors import APIUnavailableError
from kinformer._cogs.structs.bodies import ObjectKey
from kinformer._cogs.structs.references import PODS
from kinformer._core.reactor import reflecting
from kinformer._core.reactor.queueing import EventType
from kinformer._core.reactor.reflecting import apply_event, get_backoff, reflect, relist


def make_pod(name, namespace='default', **kwargs):
    return {'metadata': {'name': name, 'namespace': namespace}, **kwargs}


@pytest.fixture()
async def start_reflector(fake_client, store, queue, settings, logger):
    """
    Run the reflector in the background for the duration of the test.

    The reflector is started explicitly, when the cluster is already prepared.
    The result is the flag of the initial listing being over.
    """
    tasks = []

    def start(namespace=None, since=None, _iterations=None):
        synced = asyncio.Event()
        tasks.append(asyncio.create_task(reflect(
            client=fake_client,
            resource=PODS,
            namespace=namespace,
            store=store,
            queue=queue,
            settings=settings,
            logger=logger,
            synced=synced,
            since=since,
            _iterations=_iterations,
        )))
        return synced

    try:
        yield start
    finally:
        for task in tasks:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


#
# The full cycles of listing & watching & re-listing.
#

async def test_initial_listing_is_reported_as_additions(
        fake_client, store, start_reflector, next_events):
    fake_client.seed(PODS, make_pod('a'), make_pod('b'))
    synced = start_reflector()

    events = await next_events(2)
    assert [event.type for event in events] == [EventType.ADDED, EventType.ADDED]
    assert [event.key.name for event in events] == ['a', 'b']
    assert [event.old for event in events] == [None, None]
    assert len(store) == 2

    await asyncio.wait_for(synced.wait(), timeout=1.0)


async def test_watched_changes_are_reported_in_order(
        fake_client, store, start_reflector, next_events):
    synced = start_reflector()
    await asyncio.wait_for(synced.wait(), timeout=1.0)

    await fake_client.create(PODS, 'default', make_pod('a'))
    await fake_client.modify(PODS, make_pod('a', spec={'x': 1}))
    await fake_client.delete(PODS, 'default', 'a')

    events = await next_events(3)
    assert [event.type for event in events] == [
        EventType.ADDED, EventType.MODIFIED, EventType.DELETED,
    ]
    assert events[1].old['metadata']['resourceVersion'] == events[0].resource_version
    assert events[1].object['spec'] == {'x': 1}
    assert events[2].old == events[1].object
    assert len(store) == 0


async def test_only_the_watched_namespace_is_reflected(
        fake_client, store, start_reflector, next_events):
    fake_client.seed(PODS, make_pod('a', namespace='default'), make_pod('b', namespace='kube-system'))
    start_reflector(namespace='kube-system')

    events = await next_events(1)
    await fake_client.create(PODS, 'default', make_pod('c'))
    await fake_client.create(PODS, 'kube-system', make_pod('d', namespace='kube-system'))
    events += await next_events(1)

    assert [event.key for event in events] == [
        ObjectKey('kube-system', 'b'),
        ObjectKey('kube-system', 'd'),
    ]
    assert set(store.keys()) == {ObjectKey('kube-system', 'b'), ObjectKey('kube-system', 'd')}


async def test_expiration_resyncs_with_only_the_differences(
        fake_client, store, start_reflector, next_events):
    fake_client.seed(PODS, make_pod('a'), make_pod('b'), make_pod('c'))
    start_reflector()
    await next_events(3)

    # The outage: the changes are not seen by the watch-stream, only by the re-listing.
    fake_client.seed(PODS, make_pod('d'))
    await fake_client.modify(PODS, make_pod('b', spec={'x': 1}))
    await fake_client.delete(PODS, 'default', 'c')
    await fake_client.expire(PODS)

    events = await next_events(3)
    assert [(event.type, event.key.name) for event in events] == [
        (EventType.MODIFIED, 'b'),
        (EventType.ADDED, 'd'),
        (EventType.DELETED, 'c'),
    ]
    assert events[2].old == events[2].object
    assert {key.name for key in store.keys()} == {'a', 'b', 'd'}


async def test_resyncing_without_changes_reports_nothing(
        fake_client, queue, start_reflector, next_events):
    fake_client.seed(PODS, make_pod('a'), make_pod('b'))
    start_reflector()
    await next_events(2)

    await fake_client.close_watches()
    await asyncio.sleep(0.1)  # let it re-list & re-watch
    await fake_client.expire(PODS)
    await asyncio.sleep(0.1)  # let it re-list & re-watch
    await fake_client.create(PODS, 'default', make_pod('c'))

    events = await next_events(1)
    assert [(event.type, event.key.name) for event in events] == [(EventType.ADDED, 'c')]
    assert len(queue) == 0


async def test_resuming_from_a_known_version_skips_the_listing(
        mocker, assert_logs, fake_client, store, start_reflector, next_events):
    fake_client.seed(PODS, make_pod('a'), make_pod('b'))
    list_spy = mocker.spy(fake_client, 'list')
    synced = start_reflector(since=fake_client.resource_version)

    await asyncio.wait_for(synced.wait(), timeout=1.0)
    await fake_client.create(PODS, 'default', make_pod('c'))
    events = await next_events(1)

    assert [(event.type, event.key.name) for event in events] == [(EventType.ADDED, 'c')]
    assert set(store.keys()) == {ObjectKey('default', 'c')}
    assert list_spy.call_count == 0
    assert_logs([r"Resuming the watch of pods.v1 cluster-wide from version '4'."])


async def test_resuming_from_an_expired_version_resyncs(
        assert_logs, fake_client, store, start_reflector, next_events):
    fake_client.seed(PODS, make_pod('a'))
    since = fake_client.resource_version
    fake_client.seed(PODS, make_pod('b'))
    await fake_client.expire(PODS)
    start_reflector(since=since)

    events = await next_events(2)

    assert [(event.type, event.key.name) for event in events] == [
        (EventType.ADDED, 'a'),
        (EventType.ADDED, 'b'),
    ]
    assert {key.name for key in store.keys()} == {'a', 'b'}
    assert_logs([
        r"Resuming the watch of pods.v1 cluster-wide from version '3'.",
        r"The resource version of pods.v1 cluster-wide has expired; re-listing.",
    ])


async def test_resuming_falls_back_to_listing_when_the_stream_ends(
        fake_client, store, start_reflector, next_events):
    fake_client.seed(PODS, make_pod('a'))
    start_reflector(since=fake_client.resource_version)
    await asyncio.sleep(0.05)

    await fake_client.close_watches()
    events = await next_events(1)

    assert [(event.type, event.key.name) for event in events] == [(EventType.ADDED, 'a')]
    assert {key.name for key in store.keys()} == {'a'}


async def test_errors_are_retried_with_growing_backoffs(
        mocker, assert_logs, fake_client, start_reflector, next_events):
    spy = mocker.spy(reflecting, 'get_backoff')
    fake_client.seed(PODS, make_pod('a'))
    fake_client.fail('list', APIUnavailableError("boo"), times=2)
    start_reflector()

    events = await next_events(1)
    await fake_client.create(PODS, 'default', make_pod('b'))
    events += await next_events(1)
    await fake_client.close_watches()
    await asyncio.sleep(0.05)

    assert [event.key.name for event in events] == ['a', 'b']
    failures = [call.kwargs['failures'] for call in spy.call_args_list]
    assert failures[:3] == [1, 2, 0]
    assert_logs([
        r"has failed \(1 time\(s\) in a row\); re-listing: .*boo",
        r"has failed \(2 time\(s\) in a row\); re-listing: .*boo",
    ])


async def test_errors_in_watching_are_retried(
        assert_logs, fake_client, start_reflector, next_events):
    fake_client.seed(PODS, make_pod('a'))
    fake_client.fail('watch', RuntimeError("boo"))
    start_reflector()

    events = await next_events(1)
    await asyncio.sleep(0.05)  # let it fail & re-list & re-watch
    await fake_client.create(PODS, 'default', make_pod('b'))
    events += await next_events(1)

    assert [event.key.name for event in events] == ['a', 'b']
    assert_logs([r"has failed \(1 time\(s\) in a row\); re-listing: .*boo"])


async def test_closed_queue_stops_the_reflector(
        assert_logs, fake_client, store, queue, settings, logger):
    fake_client.seed(PODS, make_pod('a'))
    queue.close()
    await asyncio.wait_for(reflect(
        client=fake_client, resource=PODS, namespace=None,
        store=store, queue=queue, settings=settings, logger=logger,
    ), timeout=1.0)
    assert_logs([r"The delta queue for pods.v1 cluster-wide is closed; stopping."])


async def test_limited_iterations(fake_client, store, queue, settings, logger):
    task = asyncio.create_task(reflect(
        client=fake_client, resource=PODS, namespace=None,
        store=store, queue=queue, settings=settings, logger=logger, _iterations=1,
    ))
    await asyncio.sleep(0.01)
    await fake_client.close_watches()
    await asyncio.wait_for(task, timeout=1.0)


#
# The individual steps.
#

async def test_relisting_reports_the_differences(fake_client, store, queue, next_events):
    store.upsert({'metadata': {'name': 'a', 'namespace': 'default', 'resourceVersion': '0'}})
    store.upsert({'metadata': {'name': 'gone', 'namespace': 'default', 'resourceVersion': '0'}})
    fake_client.seed(PODS, make_pod('a'), make_pod('b'))

    version = await relist(client=fake_client, resource=PODS, namespace=None,
                           store=store, queue=queue)

    assert version == fake_client.resource_version
    events = await next_events(3)
    assert [(event.type, event.key.name) for event in events] == [
        (EventType.MODIFIED, 'a'),
        (EventType.ADDED, 'b'),
        (EventType.DELETED, 'gone'),
    ]


async def test_additions_of_unknown_objects(store, queue, next_events):
    body = {'metadata': {'name': 'a', 'resourceVersion': '1'}}
    await apply_event(raw_event={'type': 'ADDED', 'object': body}, store=store, queue=queue)
    events = await next_events(1)
    assert events[0].type == EventType.ADDED
    assert events[0].object == body
    assert events[0].old is None
    assert events[0].resource_version == '1'
    assert store.get(ObjectKey(None, 'a')) == body


async def test_modifications_of_unknown_objects_are_additions(store, queue, next_events):
    body = {'metadata': {'name': 'a', 'resourceVersion': '1'}}
    await apply_event(raw_event={'type': 'MODIFIED', 'object': body}, store=store, queue=queue)
    events = await next_events(1)
    assert events[0].type == EventType.ADDED


async def test_additions_of_known_objects_are_modifications(store, queue, next_events):
    old = {'metadata': {'name': 'a', 'resourceVersion': '1'}}
    new = {'metadata': {'name': 'a', 'resourceVersion': '2'}}
    store.upsert(old)
    await apply_event(raw_event={'type': 'ADDED', 'object': new}, store=store, queue=queue)
    events = await next_events(1)
    assert events[0].type == EventType.MODIFIED
    assert events[0].old == old
    assert events[0].object == new


@pytest.mark.parametrize('type', ['ADDED', 'MODIFIED'])
async def test_repeated_events_are_ignored(store, queue, type):
    body = {'metadata': {'name': 'a', 'resourceVersion': '1'}}
    store.upsert(body)
    await apply_event(raw_event={'type': type, 'object': body}, store=store, queue=queue)
    assert len(queue) == 0
    assert len(store) == 1


async def test_deletions_of_known_objects(store, queue, next_events):
    old = {'metadata': {'name': 'a', 'resourceVersion': '1'}}
    new = {'metadata': {'name': 'a', 'resourceVersion': '2'}}
    store.upsert(old)
    await apply_event(raw_event={'type': 'DELETED', 'object': new}, store=store, queue=queue)
    events = await next_events(1)
    assert events[0].type == EventType.DELETED
    assert events[0].old == old
    assert events[0].object == new
    assert len(store) == 0


async def test_deletions_of_unknown_objects(store, queue, next_events):
    body = {'metadata': {'name': 'a', 'resourceVersion': '2'}}
    await apply_event(raw_event={'type': 'DELETED', 'object': body}, store=store, queue=queue)
    events = await next_events(1)
    assert events[0].type == EventType.DELETED
    assert events[0].old is None


async def test_unsupported_events_are_ignored(assert_logs, store, queue):
    body = {'metadata': {'name': 'a', 'resourceVersion': '2'}}
    await apply_event(raw_event={'type': 'BOOKMARK', 'object': body}, store=store, queue=queue)
    assert len(queue) == 0
    assert len(store) == 0
    assert_logs([r"Ignoring an unsupported event type: 'BOOKMARK'"])


#
# The backoffs.
#

@pytest.mark.parametrize('failures, expected', [
    (0, 0.01),
    (1, 0.02),
    (2, 0.04),
    (3, 0.08),
    (4, 0.1),
    (1000, 0.1),
])
def test_backoffs_without_jitter(settings, failures, expected):
    settings.watching.backoff_jitter = 0.0
    assert get_backoff(settings=settings, failures=failures) == pytest.approx(expected)


@pytest.mark.parametrize('random, expected', [
    (0.0, 0.08),
    (0.5, 0.06),
    (1.0, 0.04),
])
def test_backoffs_with_jitter(mocker, settings, random, expected):
    mocker.patch('random.random', return_value=random)
    settings.watching.backoff_jitter = 0.5
    assert get_backoff(settings=settings, failures=3) == pytest.approx(expected)
