import mongomock
import pytest

from command_translator import CommandTranslator
from mongo_shell import MongoShell


class FakeStream:
    """Stands in for a pymongo cursor: iterable, closable, counts closes."""

    def __init__(self, docs, fail_after=None):
        self.docs = list(docs)
        self.fail_after = fail_after
        self.pulled = 0
        self.close_calls = 0

    def __iter__(self):
        return self

    def __next__(self):
        if self.fail_after is not None and self.pulled >= self.fail_after:
            raise RuntimeError("connection reset")
        if self.pulled >= len(self.docs):
            raise StopIteration
        doc = self.docs[self.pulled]
        self.pulled += 1
        return doc

    def close(self):
        self.close_calls += 1


@pytest.fixture
def make_stream():
    return FakeStream


@pytest.fixture
def mongo_client():
    return mongomock.MongoClient()


@pytest.fixture
def translator(mongo_client):
    return CommandTranslator(mongo_client, "test")


@pytest.fixture
def printed():
    return []


@pytest.fixture
def shell(mongo_client, printed):
    mongo_shell = MongoShell(client=mongo_client, database_name="test", output=printed.append)
    yield mongo_shell
    mongo_shell.close()
