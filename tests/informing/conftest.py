import pytest

from kinformer.testing import ScriptedClient


@pytest.fixture()
def client():
    return ScriptedClient()


@pytest.fixture()
def drain():
    def drain_fn(informer):
        events = []
        event = informer.pop()
        while event is not None:
            events.append(event)
            event = informer.pop()
        return events
    return drain_fn
