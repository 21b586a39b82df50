import threading

from kinformer._cogs.clients.errors import NotFoundFault
from kinformer.cli import CLIControls
from kinformer.testing import ScriptedClient

RESOURCE = 'books.v1.kinformer.dev'


def test_watching_prints_the_events(invoke, settings, make_body, make_record):
    client = ScriptedClient()
    client.add_listing([make_body('moby-dick', '100', namespace='ns1')], resource_version='100')
    client.add_stream([make_record('DELETED', 'moby-dick', '101', namespace='ns1')])
    stop_flag = threading.Event()
    timer = threading.Timer(0.5, stop_flag.set)
    timer.start()
    try:
        result = invoke(['watch', RESOURCE, '-n', 'ns1'],
                        obj=CLIControls(client=client, stop_flag=stop_flag, settings=settings))
    finally:
        timer.cancel()

    assert result.exit_code == 0, result.output
    assert 'ADDED ns1/moby-dick @100' in result.output
    assert 'DELETED ns1/moby-dick @101' in result.output
    assert 'Handled 2 events, 0 failed.' in result.output
    assert client.watches[0].descriptor.namespace == 'ns1'


def test_watching_fails_on_fatal_faults(invoke, settings):
    client = ScriptedClient()
    client.add_list_fault(NotFoundFault(None, status=404, message="the resource is not served"))

    result = invoke(['watch', RESOURCE, '-A'],
                    obj=CLIControls(client=client, settings=settings))

    assert result.exit_code == 1
    assert 'ERROR NotFoundFault' in result.output
    assert 'Cannot watch' in result.output
