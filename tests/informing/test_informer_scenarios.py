import asyncio

import pytest

from kinformer._cogs.clients.errors import DecodeFault, StaleResourceVersionFault, TransportFault
from kinformer._cogs.structs.events import Added, Deleted, Error, Modified
from kinformer._core.reactor.informing import ConnectionStatus, Informer, InformerState


async def test_listed_object_then_watched_deletion(
        client, descriptor, settings, make_body, make_record, drain):
    client.add_listing([make_body('moby-dick', '100')], resource_version='100')
    client.add_stream([make_record('DELETED', 'moby-dick', '101')])

    async with Informer(client=client, descriptor=descriptor, settings=settings) as informer:
        await client.wait_idle()
        events = drain(informer)
        state = informer.state

    assert len(events) == 2
    assert isinstance(events[0], Added)
    assert events[0].synthetic
    assert events[0].resource.name == 'moby-dick'
    assert isinstance(events[1], Deleted)
    assert events[1].resource.name == 'moby-dick'
    assert state == InformerState(last_resource_version='101', status=ConnectionStatus.WATCHING)


async def test_all_listed_objects_come_before_watched_ones(
        client, descriptor, settings, make_body, make_record, drain):
    client.add_listing([make_body(name, '100') for name in ['a', 'b', 'c']], resource_version='100')
    client.add_stream([make_record('MODIFIED', 'b', '101'), make_record('ADDED', 'd', '102')])

    async with Informer(client=client, descriptor=descriptor, settings=settings) as informer:
        await client.wait_idle()
        events = drain(informer)

    assert [type(event) for event in events] == [Added, Added, Added, Modified, Added]
    assert [event.resource.name for event in events] == ['a', 'b', 'c', 'b', 'd']
    assert [event.synthetic for event in events[:3]] == [True, True, True]
    assert not events[4].synthetic


async def test_watching_starts_from_the_listed_version(
        client, descriptor, settings, make_body):
    client.add_listing([make_body('moby-dick', '99')], resource_version='100')

    async with Informer(client=client, descriptor=descriptor, settings=settings):
        await client.wait_idle()

    assert [call.verb for call in client.calls] == ['list', 'watch']
    assert client.watches[0].since == '100'
    assert client.watches[0].descriptor is descriptor


async def test_events_of_one_object_keep_the_server_order(
        client, descriptor, settings, make_record, drain):
    client.add_listing([], resource_version='100')
    client.add_stream([
        make_record('ADDED', 'a', '101'),
        make_record('ADDED', 'b', '102'),
        make_record('MODIFIED', 'a', '103'),
        make_record('MODIFIED', 'b', '104'),
        make_record('DELETED', 'a', '105'),
    ])

    async with Informer(client=client, descriptor=descriptor, settings=settings) as informer:
        await client.wait_idle()
        events = drain(informer)

    a_events = [event for event in events if event.resource.name == 'a']
    assert [type(event) for event in a_events] == [Added, Modified, Deleted]
    assert [event.resource.resource_version for event in a_events] == ['101', '103', '105']


async def test_stale_version_causes_one_relisting(
        client, descriptor, settings, make_body, drain):
    client.add_listing([make_body('a', '99'), make_body('b', '99')], resource_version='100')
    client.add_stream(fault=StaleResourceVersionFault(None, status=410))
    client.add_listing([make_body('a', '150'), make_body('c', '180')], resource_version='200')

    async with Informer(client=client, descriptor=descriptor, settings=settings) as informer:
        await client.wait_idle()
        events = drain(informer)
        state = informer.state

    # Re-listing is a reset: all objects are re-emitted, the vanished ones are not deleted.
    assert [type(event) for event in events] == [Added, Added, Added, Added]
    assert [event.resource.name for event in events] == ['a', 'b', 'a', 'c']
    assert all(event.synthetic for event in events)
    assert len(client.lists) == 2
    assert [call.since for call in client.watches] == ['100', '200']
    assert state.last_resource_version == '200'


async def test_stale_version_in_an_error_record_causes_relisting(
        client, descriptor, settings, make_body, make_record, drain):
    client.add_listing([make_body('a', '99')], resource_version='100')
    client.add_stream([
        make_record('MODIFIED', 'a', '101'),
        {'type': 'ERROR', 'object': {'kind': 'Status', 'code': 410, 'message': 'too old'}},
        make_record('MODIFIED', 'a', '999'),  # never reached
    ])
    client.add_listing([make_body('a', '201')], resource_version='202')

    async with Informer(client=client, descriptor=descriptor, settings=settings) as informer:
        await client.wait_idle()
        events = drain(informer)

    assert [type(event) for event in events] == [Added, Modified, Added]
    assert [event.resource.resource_version for event in events] == ['99', '101', '201']
    assert len(client.lists) == 2
    assert [call.since for call in client.watches] == ['100', '202']


async def test_transport_fault_resumes_watching_without_relisting(
        client, descriptor, settings, make_body, make_record, drain):
    client.add_listing([make_body('a', '99')], resource_version='100')
    client.add_stream([make_record('MODIFIED', 'a', '101')],
                      fault=TransportFault(None, status=0, message="connection reset"))
    client.add_stream([make_record('DELETED', 'a', '102')])

    async with Informer(client=client, descriptor=descriptor, settings=settings) as informer:
        await client.wait_idle()
        events = drain(informer)
        transitions = dict(informer.transitions)

    assert [type(event) for event in events] == [Added, Modified, Deleted]
    assert len(client.lists) == 1
    assert [call.since for call in client.watches] == ['100', '101', '102']
    assert transitions[ConnectionStatus.FAULTED] >= 1


async def test_normal_stream_end_resumes_from_the_last_version(
        client, descriptor, settings, make_body, make_record, assert_logs):
    client.add_listing([], resource_version='100')
    client.add_stream([make_record('ADDED', 'a', '101')])
    client.add_stream([])
    client.add_stream([make_record('MODIFIED', 'a', '102')])

    async with Informer(client=client, descriptor=descriptor, settings=settings):
        await client.wait_idle()

    assert len(client.lists) == 1
    assert [call.since for call in client.watches] == ['100', '101', '101', '102']
    assert_logs([r"watch-stream of .* has ended; resuming from '101'"])


async def test_malformed_record_produces_one_error_and_does_not_stop_the_stream(
        client, descriptor, settings, make_record, drain):
    client.add_listing([], resource_version='100')
    client.add_stream([
        make_record('ADDED', 'a', '101'),
        b'{"type": "MODIF',
        {'type': 'MODIFIED', 'object': {'metadata': {'resourceVersion': '103'}}},
        make_record('DELETED', 'a', '104'),
    ])

    async with Informer(client=client, descriptor=descriptor, settings=settings) as informer:
        await client.wait_idle()
        events = drain(informer)
        state = informer.state

    assert [type(event) for event in events] == [Added, Error, Error, Deleted]
    assert isinstance(events[1].fault, DecodeFault)
    assert isinstance(events[2].fault, DecodeFault)
    assert events[1].raw == {'line': '{"type": "MODIF'}
    assert state.last_resource_version == '104'
    assert informer.fault is None


async def test_malformed_listed_objects_are_errors(
        client, descriptor, settings, make_body, drain):
    client.add_listing([make_body('a', '99'), {'metadata': {}}, make_body('b', '99')],
                       resource_version='100')

    async with Informer(client=client, descriptor=descriptor, settings=settings) as informer:
        await client.wait_idle()
        events = drain(informer)

    assert [type(event) for event in events] == [Added, Error, Added]


async def test_bookmarks_advance_the_version_silently(
        client, descriptor, settings, make_record, drain):
    client.add_listing([], resource_version='100')
    client.add_stream([
        make_record('ADDED', 'a', '101'),
        {'type': 'BOOKMARK', 'object': {'kind': 'Book', 'metadata': {'resourceVersion': '150'}}},
    ])

    async with Informer(client=client, descriptor=descriptor, settings=settings) as informer:
        await client.wait_idle()
        events = drain(informer)

    assert [type(event) for event in events] == [Added]
    assert [call.since for call in client.watches] == ['100', '150']


async def test_custom_spec_parser(client, descriptor, settings, make_body, drain):
    client.add_listing([make_body('a', '99', spec={'title': 'Moby-Dick'})], resource_version='100')

    async with Informer(client=client, descriptor=descriptor, settings=settings,
                        spec_parser=lambda spec: spec['title']) as informer:
        await client.wait_idle()
        events = drain(informer)

    assert events[0].resource.spec == 'Moby-Dick'


async def test_custom_spec_parser_failures_do_not_stop_the_stream(
        client, descriptor, settings, make_record, drain):
    client.add_listing([], resource_version='100')
    client.add_stream([
        make_record('MODIFIED', 'a', '101', spec={'title': 123}),
        make_record('MODIFIED', 'a', '102', spec={'title': 'ok'}),
    ])

    async with Informer(client=client, descriptor=descriptor, settings=settings,
                        spec_parser=lambda spec: spec['title'].upper()) as informer:
        await client.wait_idle()
        events = drain(informer)
        state = informer.state

    assert [type(event) for event in events] == [Error, Modified]
    assert isinstance(events[0].fault, DecodeFault)
    assert isinstance(events[0].fault.__cause__, AttributeError)
    assert events[1].resource.spec == 'OK'
    assert state.last_resource_version == '102'
    assert informer.fault is None


def test_decoder_and_spec_parser_are_mutually_exclusive(client, descriptor):
    from kinformer._core.reactor.decoding import Decoder
    with pytest.raises(TypeError):
        Informer(client=client, descriptor=descriptor, decoder=Decoder(), spec_parser=dict)


async def test_waiting_for_events(client, descriptor, settings, make_body):
    client.add_listing([make_body('a', '99')], resource_version='100')

    async with Informer(client=client, descriptor=descriptor, settings=settings) as informer:
        assert await asyncio.wait_for(informer.wait(timeout=1.0), timeout=2.0)
        assert isinstance(informer.pop(), Added)
