from unittest.mock import MagicMock, patch

import pytest
from pymongo.errors import OperationFailure

from batch_cursor import CursorStateError
from command_translator import NO_DATABASE, CommandTranslator
from proxies import CollectionProxy, CursorProxy, DatabaseProxy, ReplicaSetProxy


@pytest.fixture
def db(translator):
    return DatabaseProxy(translator)


def test_unknown_member_is_a_memoized_collection(db):
    orders = db.get_member("orders")
    assert isinstance(orders, CollectionProxy)
    assert orders.name == "orders"
    assert db.get_member("orders") is orders
    assert db.orders is orders


def test_known_members_are_not_collections(db):
    assert db.get_member("getName")() == "test"
    assert callable(db.get_member("getCollectionNames"))


def test_member_resolution_has_no_side_effects(db, mongo_client):
    db.get_member("ghost")
    assert mongo_client.list_database_names() == []


def test_get_collection_handles_dotted_names(db, mongo_client):
    coll = db.get_collection("a.b")
    coll.insert_one({"x": 1})
    assert mongo_client["test"]["a.b"].count_documents({}) == 1


def test_required_arguments_are_values(db):
    assert db.get_collection() == "Collection name required"
    assert db.run_command() == "Command required"
    assert db.orders.insert_one() == "Document required"
    assert db.orders.insert_many() == "Documents array required"


def test_count_without_filter_uses_estimate(translator, db):
    with patch.object(translator, "estimated_document_count", wraps=translator.estimated_document_count) as estimate, \
            patch.object(translator, "count_documents", wraps=translator.count_documents) as exact:
        assert db.orders.count() == 0
        assert db.orders.count_documents() == 0
    estimate.assert_called_once_with("orders")
    exact.assert_called_once_with("orders", None)


def test_count_with_filter_is_exact(translator, db):
    db.orders.insert_many([{"a": 1}, {"a": 2}])
    with patch.object(translator, "count_documents", wraps=translator.count_documents) as exact:
        assert db.orders.count({"a": 1}) == 1
    exact.assert_called_once()


def test_update_accepts_upsert_flag_or_options(db, mongo_client):
    db.orders.update_one({"k": 1}, {"v": 1}, True)
    db.orders.update_one({"k": 2}, {"v": 2}, {"upsert": True})
    db.orders.update_one({"k": 3}, {"v": 3})
    keys = sorted(d["k"] for d in mongo_client["test"]["orders"].find())
    assert keys == [1, 2]


def test_remove_deletes_one(db):
    db.orders.insert_many([{"a": 1}, {"a": 1}])
    assert db.orders.delete_one({"a": 1})["deletedCount"] == 1
    assert db.orders.get_member("remove")({"a": 1})["deletedCount"] == 1


def test_aggregate_accepts_array_or_stages(db):
    db.sales.insert_many([{"v": 1}, {"v": 2}])
    as_array = db.sales.aggregate([{"$match": {"v": 2}}, {"$project": {"_id": 0}}])
    as_args = db.sales.aggregate({"$match": {"v": 2}}, {"$project": {"_id": 0}})
    assert as_array == as_args == [{"v": 2}]


def test_find_returns_unexecuted_cursor(db, translator):
    with patch.object(translator, "open_stream", wraps=translator.open_stream) as open_stream:
        cursor = db.orders.find({"a": 1})
        assert isinstance(cursor, CursorProxy)
        assert cursor.executed is False
    open_stream.assert_not_called()


def test_find_without_database(mongo_client):
    db = DatabaseProxy(CommandTranslator(mongo_client, None))
    assert db.orders.find() == NO_DATABASE


def test_cursor_builders_chain(db):
    db.items.insert_many([{"n": i} for i in range(10)])
    cursor = db.items.find({}, {"_id": 0})
    assert cursor.sort({"n": -1}).skip(2).limit(3) is cursor
    assert cursor.to_array() == [{"n": 7}, {"n": 6}, {"n": 5}]


def test_cursor_count_ignores_limit_and_skip(db):
    db.items.insert_many([{"n": i} for i in range(10)])
    cursor = db.items.find({"n": {"$lt": 8}}).limit(2).skip(1)
    assert cursor.count() == 8


def test_builders_rejected_after_execution(db):
    db.items.insert_many([{"n": i} for i in range(3)])
    cursor = db.items.find()
    cursor.next_batch()
    with pytest.raises(CursorStateError):
        cursor.sort({"n": 1})
    with pytest.raises(CursorStateError):
        cursor.limit(1)


def test_render_pulls_one_batch_with_hint(translator):
    db = DatabaseProxy(translator, batch_size=2)
    db.items.insert_many([{"n": i} for i in range(3)])
    cursor = db.items.find({}, {"_id": 0})
    first = cursor.render()
    assert first.endswith('Type "it" for more')
    assert first.count('"n"') == 2
    second = cursor.render()
    assert 'Type "it"' not in second
    assert second.count('"n"') == 1


def test_render_empty_cursor(db):
    assert db.items.find().render() == "no results"


def test_cursor_next_and_itcount(db):
    db.items.insert_many([{"n": i} for i in range(5)])
    cursor = db.items.find({}, {"_id": 0}).sort({"n": 1})
    assert cursor.has_next() is True
    assert cursor.next() == {"n": 0}
    assert cursor.itcount() == 4


def test_cursor_registers_with_session(translator):
    session = MagicMock()
    db = DatabaseProxy(translator, session=session)
    cursor = db.items.find()
    session.track.assert_called_once_with(cursor.batch)


def test_replica_set_failures_are_values():
    client = MagicMock()
    client.admin.command.side_effect = OperationFailure("not running with --replSet")
    rs = ReplicaSetProxy(client)
    status = rs.status()
    assert status["ok"] == 0
    assert "not running with --replSet" in status["errmsg"]
    assert rs.step_down()["ok"] == 0
    client.admin.command.assert_called_with("replSetStepDown", 60)


def test_replica_set_commands():
    client = MagicMock()
    client.admin.command.return_value = {"ok": 1, "config": {"_id": "rs0"}}
    rs = ReplicaSetProxy(client)
    assert rs.conf() == {"_id": "rs0"}
    rs.get_member("isMaster")()
    client.admin.command.assert_called_with("isMaster", 1)
    rs.initiate({"_id": "rs0"})
    client.admin.command.assert_called_with("replSetInitiate", {"_id": "rs0"})
