# Flat-file credential handling: the link client's multi-file auth state,
# serialization of a finished bundle into one session token, and the
# short-code store that files bundles for later lookup.

import base64
import binascii
import json
import logging
import os
import re
import secrets
import string

from luxsession.core.errors import NotFound

logger = logging.getLogger(__name__)

CREDS_FILE = "creds.json"


class NotYetAvailable(Exception):
    """The primary credential file has not been written yet."""


class InvalidToken(ValueError):
    pass


def _fix_file_name(name: str) -> str:
    return name.replace("/", "__").replace(":", "-")


class MultiFileAuthState:
    """
    Credential state kept as one JSON file per item inside a session directory.
    ``creds.json`` holds the account credentials, every signal key gets its
    own ``<type>-<id>.json`` file.
    """

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)
        self.creds = self._read(CREDS_FILE) or {}

    def _path(self, file_name: str) -> str:
        return os.path.join(self.directory, _fix_file_name(file_name))

    def _read(self, file_name: str):
        path = self._path(file_name)
        if not os.path.isfile(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, file_name: str, data) -> None:
        # write then rename so a reader never sees a half-written file
        path = self._path(file_name)
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp, path)

    def merge_creds(self, update: dict) -> None:
        self.creds.update(update)

    def save_creds(self) -> None:
        self._write(CREDS_FILE, self.creds)

    def read_keys(self, key_type: str, ids: list[str]) -> dict:
        return {key_id: self._read(f"{key_type}-{key_id}.json") for key_id in ids}

    def write_keys(self, data: dict) -> None:
        """``data`` maps key type -> {key id -> value}; a ``None`` value deletes."""
        for key_type, entries in data.items():
            for key_id, value in entries.items():
                file_name = f"{key_type}-{key_id}.json"
                if value is None:
                    self.remove_key(file_name)
                else:
                    self._write(file_name, value)

    def remove_key(self, file_name: str) -> None:
        path = self._path(file_name)
        if os.path.exists(path):
            os.remove(path)


class CredentialStore:
    def __init__(self, prefix: str = "LUX~", urlsafe: bool = False):
        self.prefix = prefix
        self.urlsafe = urlsafe

    @staticmethod
    def read_bundle(directory: str) -> dict:
        """
        Reads every file of a session directory into ``{file name: parsed JSON}``.
        Raises NotYetAvailable until ``creds.json`` exists.
        """
        if not os.path.isfile(os.path.join(directory, CREDS_FILE)):
            raise NotYetAvailable(f"{CREDS_FILE} not found in {directory}")

        bundle = {}
        for name in sorted(os.listdir(directory)):
            path = os.path.join(directory, name)
            if not os.path.isfile(path) or name.endswith(".tmp"):
                continue
            with open(path, "r", encoding="utf-8") as f:
                bundle[name] = json.load(f)
        return bundle

    def encode(self, bundle: dict) -> str:
        # sorted keys + compact separators keep the token deterministic
        raw = json.dumps(bundle, sort_keys=True, separators=(",", ":")).encode("utf-8")
        if self.urlsafe:
            b64 = base64.urlsafe_b64encode(raw)
        else:
            b64 = base64.b64encode(raw)
        return self.prefix + b64.decode("ascii")

    def serialize(self, directory: str) -> str:
        return self.encode(self.read_bundle(directory))

    def decode(self, token: str) -> dict:
        if not token.startswith(self.prefix):
            raise InvalidToken("Token does not carry the expected prefix")

        payload = token[len(self.prefix):]
        try:
            if self.urlsafe:
                raw = base64.b64decode(payload, altchars=b"-_", validate=True)
            else:
                raw = base64.b64decode(payload, validate=True)
            return json.loads(raw)
        except (binascii.Error, ValueError) as e:
            raise InvalidToken(f"Malformed token: {e}") from e


class CodeStore:
    """Files serialized bundles under short codes such as ``LUX~aB3Xd91K``."""

    CODE_LENGTH = 8
    ALPHABET = string.ascii_letters + string.digits

    def __init__(self, directory: str, prefix: str = "LUX~"):
        self.directory = directory
        self.prefix = prefix
        self._pattern = re.compile(
            re.escape(prefix) + f"[A-Za-z0-9]{{{self.CODE_LENGTH}}}"
        )
        os.makedirs(directory, exist_ok=True)

    def _path(self, code: str) -> str:
        return os.path.join(self.directory, f"{code}.json")

    def _new_code(self) -> str:
        while True:
            code = self.prefix + "".join(
                secrets.choice(self.ALPHABET) for _ in range(self.CODE_LENGTH)
            )
            if not os.path.exists(self._path(code)):
                return code

    def issue(self, bundle: dict) -> str:
        code = self._new_code()
        self.save(code, bundle)
        logger.info(f"Stored bundle under short code: code={code}")
        return code

    def save(self, code: str, bundle: dict) -> None:
        with open(self._path(code), "w", encoding="utf-8") as f:
            json.dump(bundle, f)

    def load(self, code: str) -> dict:
        # only well-formed codes ever reach the file system
        if not self._pattern.fullmatch(code):
            raise NotFound("No creds found for this code")

        path = self._path(code)
        if not os.path.isfile(path):
            raise NotFound("No creds found for this code")
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
