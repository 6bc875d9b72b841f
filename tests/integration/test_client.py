"""
Integration tests for the Datastore client.

These tests run the client end to end against an in-memory backend
served through FakeTransport handlers, covering:
- Save then get with generated ids
- Query pagination across batches
- Transaction queueing through the client
- Default namespace and transport ownership
"""

import pytest

from sdk.datastore_sdk import Datastore, Settings
from sdk.datastore_sdk.entity import key_from_key_proto, key_to_key_proto
from sdk.datastore_sdk.testing import FakeTransport


class InMemoryBackend:
    """Minimal Datastore backend keyed by encoded key path."""

    def __init__(self, batch_size=2):
        self.entities = {}
        self.next_id = 1000
        self.batch_size = batch_size

    @staticmethod
    def _path_id(key_proto):
        return tuple(
            (element["kind"], element.get("id") or element.get("name"))
            for element in key_proto["path"]
        )

    def commit(self, req_opts):
        results = []
        for mutation in req_opts["mutations"]:
            [(method, body)] = mutation.items()
            if method == "delete":
                self.entities.pop(self._path_id(body), None)
                results.append({})
                continue

            key_proto = body["key"]
            generated = None
            if "id" not in key_proto["path"][-1] and "name" not in key_proto["path"][-1]:
                self.next_id += 1
                key_proto["path"][-1]["id"] = str(self.next_id)
                generated = key_proto
            self.entities[self._path_id(key_proto)] = body
            results.append({"key": generated} if generated else {})
        return {"mutationResults": results}

    def lookup(self, req_opts):
        found, missing = [], []
        for key_proto in req_opts["keys"]:
            entity = self.entities.get(self._path_id(key_proto))
            if entity is None:
                missing.append({"entity": {"key": key_proto}})
            else:
                found.append({"entity": entity})
        return {"found": found, "missing": missing}

    def run_query(self, req_opts):
        kind = req_opts["query"]["kind"][0]["name"]
        matching = [e for e in self.entities.values() if e["key"]["path"][-1]["kind"] == kind]
        start = int(req_opts["query"].get("startCursor") or 0)
        page = matching[start:start + self.batch_size]
        end = start + len(page)
        return {
            "batch": {
                "entityResults": [{"entity": e} for e in page],
                "endCursor": str(end),
                "moreResults": "NOT_FINISHED" if end < len(matching) else "NO_MORE_RESULTS",
            }
        }


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def ds(backend):
    transport = FakeTransport()
    transport.on("commit", backend.commit)
    transport.on("lookup", backend.lookup)
    transport.on("runQuery", backend.run_query)
    return Datastore(Settings(project_id="project-id", namespace="tenant"), transport=transport)


class TestDatastoreClient:
    """End-to-end flows through Datastore."""

    @pytest.mark.asyncio
    async def test_save_then_get(self, ds):
        key = ds.key(["Task"])

        await ds.save({"key": key, "data": {"title": "Ship it", "done": False}})

        assert key.id == 1001
        entity = await ds.get(key)
        assert entity == {"title": "Ship it", "done": False}
        assert entity.key == key

    @pytest.mark.asyncio
    async def test_get_missing(self, ds):
        assert await ds.get(ds.key(["Task", "nope"])) is None

    @pytest.mark.asyncio
    async def test_delete(self, ds):
        key = ds.key(["Task", "a"])
        await ds.insert({"key": key, "data": {"title": "a"}})

        await ds.delete(key)

        assert await ds.get(key) is None

    @pytest.mark.asyncio
    async def test_query_across_batches(self, ds):
        await ds.save([{"key": ds.key(["Task", name]), "data": {"n": i}} for i, name in enumerate("abcde")])

        entities, info = await ds.run_query(ds.create_query("Task"))

        assert [e["n"] for e in entities] == [0, 1, 2, 3, 4]
        assert info.more_results == "NO_MORE_RESULTS"
        assert len(ds.transport.calls_for("runQuery")) == 3

    @pytest.mark.asyncio
    async def test_query_stream_end(self, ds):
        await ds.save([{"key": ds.key(["Task", name]), "data": {}} for name in "abcde"])
        stream = ds.run_query_stream(ds.create_query("Task"))

        async for _ in stream:
            stream.end()

        await stream.aclose()
        assert len(ds.transport.calls_for("runQuery")) == 1

    @pytest.mark.asyncio
    async def test_queued_mutations_commit_together(self, ds, backend):
        """A coordinator commits queued bodies and fires their callbacks."""
        key = ds.key(["Task"])
        outcomes = []
        ds.id = "transaction-id"
        ds.requests = []

        await ds.save({"key": key, "data": {"title": "queued"}}, lambda err, resp: outcomes.append(err))
        assert ds.transport.calls_for("commit") == []

        mutations = [m for body in ds.requests for m in body["mutations"]]
        response = await ds._request("commit", {"mutations": mutations})
        for callback in ds.request_callbacks:
            callback(None, response)

        [commit] = ds.transport.calls_for("commit")
        assert commit.req_opts["mode"] == "TRANSACTIONAL"
        assert commit.req_opts["transaction"] == "transaction-id"
        assert outcomes == [None]
        assert key.id == 1001


class TestDatastoreDefaults:
    """Tests for client construction."""

    def test_default_namespace(self):
        ds = Datastore(Settings(project_id="p", namespace="tenant"), transport=FakeTransport())

        assert ds.project_id == "p"
        assert ds.key(["Task", 1]).namespace == "tenant"
        assert ds.key(["Task", 1], namespace="other").namespace == "other"
        assert ds.create_query("Task").namespace == "tenant"
        assert ds.create_query("Task").kinds == ["Task"]

    def test_key_round_trip_through_codec(self):
        ds = Datastore(Settings(project_id="p", namespace="tenant"), transport=FakeTransport())
        key = ds.key(["Org", "acme", "Employee", 7])

        assert key_from_key_proto(key_to_key_proto(key)) == key

    @pytest.mark.asyncio
    async def test_injected_transport_left_open(self):
        transport = FakeTransport()

        async with Datastore(Settings(project_id="p"), transport=transport) as ds:
            await ds.save({"key": ds.key(["Task", "a"]), "data": {}})

        assert transport.call_count == 1
