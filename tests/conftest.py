"""Shared fixtures for Datastore SDK tests."""

import pytest

from sdk.datastore_sdk.entity import Key
from sdk.datastore_sdk.request import DatastoreRequest
from sdk.datastore_sdk.testing import FakeTransport

PROJECT_ID = "project-id"


@pytest.fixture
def transport():
    """Scripted transport with no responses."""
    return FakeTransport()


@pytest.fixture
def request_layer(transport):
    """Request layer bound to the scripted transport."""
    return DatastoreRequest(PROJECT_ID, transport)


@pytest.fixture
def key():
    """A complete key in a namespace."""
    return Key(["Company", 123], namespace="namespace")


def entity_result(key_proto, **properties):
    """Build a found/query entity result from raw property protos."""
    return {"entity": {"key": key_proto, "properties": properties}}
