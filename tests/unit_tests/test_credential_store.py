"""Tests for the flat-file credential store."""

import hashlib
import threading

import pytest

from chatline.storage import credentials
from chatline.storage.credentials import (
    Account,
    CredentialStore,
    DuplicateIdError,
    InvalidFieldError,
    PersistenceError,
)


def test_missing_file_starts_empty(tmp_path):
    store = CredentialStore(tmp_path / "absent.db")
    assert store.load() == 0
    assert len(store) == 0
    assert store.is_available("anyone")


def test_register_then_authenticate(store):
    account = store.register("alice", "s3cret", "Alice", "alice@example.com")

    assert account.user_id == "alice"
    assert len(account.salt) == 16
    assert account.password_hash == hashlib.sha256(account.salt + b"s3cret").hexdigest()

    assert store.authenticate("alice", "s3cret") == account
    assert store.authenticate("alice", "wrong") is None
    assert store.authenticate("nobody", "s3cret") is None
    assert not store.is_available("alice")
    assert "alice" in store


def test_register_duplicate_id_fails_regardless_of_fields(store):
    store.register("alice", "pw1", "Alice", "a@example.com")
    with pytest.raises(DuplicateIdError) as excinfo:
        store.register("alice", "other", "Someone Else", "b@example.com")

    assert str(excinfo.value) == "This ID is already in use."
    assert store.authenticate("alice", "pw1") is not None
    assert store.authenticate("alice", "other") is None


def test_register_writes_tab_separated_record(store, db_path):
    account = store.register("bob", "pw", "Bob", "bob at example dot com")

    lines = db_path.read_text(encoding="utf-8").splitlines()
    assert lines == [
        f"bob\tBob\tbob at example dot com\t{account.salt.hex()}\t{account.password_hash}"
    ]
    fields = lines[0].split("\t")
    assert len(fields[3]) == 32
    assert len(fields[4]) == 64
    assert fields[3] == fields[3].lower()


def test_reload_reproduces_accounts_byte_exact(store, db_path):
    originals = [
        store.register("alice", "pw-a", "Alice", "alice@example.com"),
        store.register("bob", "pw-b", "Bob", "bob@example.com"),
        store.register("carol", "pw c", "Carol", "carol@example.com"),
    ]
    before = db_path.read_bytes()

    reloaded = CredentialStore(db_path)
    assert reloaded.load() == 3
    assert reloaded.accounts() == originals
    assert reloaded.authenticate("carol", "pw c") is not None

    reloaded.save()
    assert db_path.read_bytes() == before


def test_load_skips_malformed_records(db_path):
    salt = bytes(range(16))
    good_hash = hashlib.sha256(salt + b"pw").hexdigest()
    db_path.write_text(
        "\n".join([
            f"alice\tAlice\ta@example.com\t{salt.hex()}\t{good_hash}",
            "too\tfew\tfields",
            f"bob\tBob\tb@example.com\tnothex\t{good_hash}",
            f"carol\tCarol\tc@example.com\t{salt.hex()}\tabc",
            "",
            f"dave\tDave\td@example.com\t{salt.hex()}\t{good_hash}\textra",
        ]) + "\n",
        encoding="utf-8",
    )

    store = CredentialStore(db_path)
    assert store.load() == 1
    assert store.authenticate("alice", "pw") is not None
    for user_id in ("too", "bob", "carol", "dave"):
        assert store.is_available(user_id)


def test_load_accepts_records_written_elsewhere(db_path):
    salt = bytes.fromhex("00112233445566778899aabbccddeeff")
    stored = hashlib.sha256(salt + "비밀".encode("utf-8")).hexdigest()
    db_path.write_text(f"kim\tKim\tkim@example.com\t{salt.hex()}\t{stored}\n", encoding="utf-8")

    store = CredentialStore(db_path)
    store.load()
    account = store.authenticate("kim", "비밀")
    assert account is not None
    assert account.salt == salt


@pytest.mark.parametrize(
    "user_id, password, name, email",
    [
        ("", "pw", "Name", "e@example.com"),
        ("bad,id", "pw", "Name", "e@example.com"),
        ("tab\tid", "pw", "Name", "e@example.com"),
        ("ok", "pw", "Na\tme", "e@example.com"),
        ("ok", "pw", "Name", "line\nbreak"),
        ("ok", "", "Name", "e@example.com"),
    ],
)
def test_register_rejects_fields_that_corrupt_storage(store, user_id, password, name, email):
    with pytest.raises(InvalidFieldError):
        store.register(user_id, password, name, email)
    assert len(store) == 0


def test_persistence_failure_rolls_back(store, db_path, monkeypatch):
    store.register("alice", "pw", "Alice", "a@example.com")
    before = db_path.read_bytes()

    def failing_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(credentials.os, "replace", failing_replace)

    with pytest.raises(PersistenceError):
        store.register("bob", "pw", "Bob", "b@example.com")

    assert store.is_available("bob")
    assert db_path.read_bytes() == before
    assert [p.name for p in db_path.parent.iterdir()] == [db_path.name]

    monkeypatch.undo()
    store.register("bob", "pw", "Bob", "b@example.com")
    assert not store.is_available("bob")


def test_concurrent_registration_of_same_id_has_one_winner(store):
    outcomes = []
    outcomes_lock = threading.Lock()
    barrier = threading.Barrier(8)

    def attempt(index):
        barrier.wait()
        try:
            store.register("racer", f"pw{index}", "Racer", "r@example.com")
            result = "ok"
        except DuplicateIdError:
            result = "dup"
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=attempt, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("ok") == 1
    assert outcomes.count("dup") == 7
    assert len(store) == 1


def test_account_repr_hides_secrets(store):
    account = store.register("alice", "pw", "Alice", "a@example.com")
    assert account.password_hash not in repr(account)
    assert Account.from_record("garbage") is None
