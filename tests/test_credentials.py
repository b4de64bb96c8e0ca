import base64
import json
import os

import pytest

from conftest import CREDS
from luxsession.core.errors import NotFound
from luxsession.services.credentials import (
    CodeStore,
    CredentialStore,
    InvalidToken,
    MultiFileAuthState,
    NotYetAvailable,
)


def test_auth_state_writes_one_file_per_item(tmp_path):
    auth = MultiFileAuthState(str(tmp_path))
    auth.merge_creds(CREDS)
    auth.save_creds()
    auth.write_keys({
        "session": {"918888888888.0": {"record": "x"}},
        "app-state-sync-key": {"AAA/BB:1": {"keyData": "y"}},
    })

    assert sorted(os.listdir(tmp_path)) == [
        "app-state-sync-key-AAA__BB-1.json",
        "creds.json",
        "session-918888888888.0.json",
    ]
    assert auth.read_keys("session", ["918888888888.0", "missing"]) == {
        "918888888888.0": {"record": "x"},
        "missing": None,
    }

    auth.write_keys({"session": {"918888888888.0": None}})
    assert "session-918888888888.0.json" not in os.listdir(tmp_path)


def test_auth_state_reloads_saved_creds(tmp_path):
    first = MultiFileAuthState(str(tmp_path))
    first.merge_creds(CREDS)
    first.save_creds()

    assert MultiFileAuthState(str(tmp_path)).creds == CREDS


def test_serialize_requires_creds_file(tmp_path):
    (tmp_path / "pre-key-1.json").write_text("{}")
    with pytest.raises(NotYetAvailable):
        CredentialStore().serialize(str(tmp_path))


def test_serialize_encodes_every_file(tmp_path):
    (tmp_path / "creds.json").write_text(json.dumps(CREDS))
    (tmp_path / "pre-key-1.json").write_text(json.dumps({"public": "abc"}))

    token = CredentialStore().serialize(str(tmp_path))

    assert token.startswith("LUX~")
    decoded = json.loads(base64.b64decode(token[len("LUX~"):]))
    assert decoded == {"creds.json": CREDS, "pre-key-1.json": {"public": "abc"}}


def test_serialize_is_deterministic(tmp_path):
    (tmp_path / "creds.json").write_text(json.dumps({"b": 1, "a": [1, 2]}))
    (tmp_path / "sender-key-x.json").write_text(json.dumps({"z": None, "y": "q"}))
    store = CredentialStore()

    assert store.serialize(str(tmp_path)) == store.serialize(str(tmp_path))


def test_serialize_reflects_later_updates(tmp_path):
    store = CredentialStore()
    (tmp_path / "creds.json").write_text(json.dumps({"registered": False}))
    before = store.serialize(str(tmp_path))

    (tmp_path / "creds.json").write_text(json.dumps({"registered": True}))
    after = store.serialize(str(tmp_path))

    assert before != after
    assert store.decode(after) == {"creds.json": {"registered": True}}


def test_urlsafe_tokens(tmp_path):
    (tmp_path / "creds.json").write_text(json.dumps({"k": "??>>??>>"}))
    store = CredentialStore(prefix="SESSION_", urlsafe=True)

    token = store.serialize(str(tmp_path))

    assert token.startswith("SESSION_")
    assert "+" not in token and "/" not in token
    assert store.decode(token) == {"creds.json": {"k": "??>>??>>"}}


@pytest.mark.parametrize("token", ["OTHER~e30=", "LUX~not base64!", "LUX~" + base64.b64encode(b"nope").decode()])
def test_decode_rejects_foreign_or_malformed_tokens(token):
    with pytest.raises(InvalidToken):
        CredentialStore().decode(token)


@pytest.mark.parametrize("suffix", ["!!!", "*", " ", "=="])
def test_urlsafe_decode_rejects_malformed_payload(tmp_path, suffix):
    (tmp_path / "creds.json").write_text(json.dumps({"a": 1}))
    store = CredentialStore(urlsafe=True)
    token = store.serialize(str(tmp_path))

    with pytest.raises(InvalidToken):
        store.decode(token + suffix)


def test_code_store_round_trip(tmp_path):
    store = CodeStore(str(tmp_path))
    bundle = {"creds.json": CREDS}

    code = store.issue(bundle)

    assert code.startswith("LUX~") and len(code) == len("LUX~") + 8
    assert (tmp_path / f"{code}.json").exists()
    assert store.load(code) == bundle
    assert store.issue(bundle) != code


@pytest.mark.parametrize("code", ["LUX~abcdEFGH", "../codes/LUX~abcdEFGH", "LUX~abc/../x", "", "LUX~abcdEFGH1"])
def test_code_store_unknown_or_malformed_code(tmp_path, code):
    with pytest.raises(NotFound):
        CodeStore(str(tmp_path)).load(code)
