"""Persistence for per-account usage state.

Every read/mutate cycle loads the records of one account (or the full
document), changes them and writes them back. Three backings share the
same contract: a durable JSON file and a volatile in-memory copy, both
holding the whole document, and DynamoDB, holding one item per account
and one per payment request.

Loading never fails the caller: a missing, unreadable or corrupt document
comes back as an empty one (usage silently resets). Writing does fail, with
StorageError, so the request that triggered it can report the problem.
"""

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import boto3
import pydantic
from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import StorageError
from .models import Account, Document, Payment

if TYPE_CHECKING:
    from .config import Config

logger = Logger(child=True)


class AccountStore(ABC):
    """Base class for document stores.

    Subclasses implement raw load/save; the document lock and account
    creation live here.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @abstractmethod
    def load(self, account_id: str | None = None) -> Document:
        """Load the document, or an empty one if it cannot be read.

        Args:
            account_id: If given, backends may load only this account and
                its payment requests
        """

    @abstractmethod
    def save(self, document: Document) -> None:
        """Persist the document's records.

        Raises:
            StorageError: If the document could not be written
        """

    @contextmanager
    def transaction(self, account_id: str | None = None) -> Iterator[Document]:
        """Load, yield for mutation, then save under the document lock.

        Nothing is written if the block raises.

        Args:
            account_id: Account the block works on, passed on to load

        Raises:
            StorageError: If the document could not be written
        """
        with self._lock:
            document = self.load(account_id)
            yield document
            self.save(document)

    def get_or_create_account(self, document: Document, account_id: str) -> Account:
        """Return the account record, inserting a default one if absent.

        A newly created record is persisted straight away.

        Args:
            document: Loaded document to look up and mutate
            account_id: Stable caller identity

        Returns:
            The account record held by the document

        Raises:
            StorageError: If a new record could not be persisted
        """
        account = document.accounts.get(account_id)
        if account is not None:
            return account

        account = Account()
        document.accounts[account_id] = account
        self.save(document)
        logger.info("Account created", extra={"account_id": account_id})
        return account


def parse_document(raw: str | bytes, source: str) -> Document:
    """Parse a stored document, degrading to empty on corruption.

    Args:
        raw: Serialized JSON document
        source: Where the document came from, for logging

    Returns:
        The parsed document, or an empty one
    """
    try:
        return Document.model_validate(json.loads(raw))
    except (ValueError, pydantic.ValidationError) as e:
        logger.warning(
            "Corrupt account document, starting empty",
            extra={"source": source, "error": str(e)},
        )
        return Document()


class JsonFileStore(AccountStore):
    """Durable JSON document on the local filesystem."""

    def __init__(self, path: str | Path) -> None:
        """Initialize with document path.

        Args:
            path: Location of the canonical JSON document
        """
        super().__init__()
        self.path = Path(path)

    def load(self, account_id: str | None = None) -> Document:
        if not self.path.exists():
            logger.debug("No account document yet", extra={"path": str(self.path)})
            return Document()

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(
                "Failed to read account document, starting empty",
                extra={"path": str(self.path), "error": str(e)},
            )
            return Document()

        return parse_document(raw, str(self.path))

    def save(self, document: Document) -> None:
        """Write to a temp file beside the document, then rename over it.

        Readers only ever see the old or the new document in full.
        """
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document.to_storage(), fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path is not None:
                with suppress(OSError):
                    os.unlink(tmp_path)
            logger.error(
                "Failed to write account document",
                extra={"path": str(self.path), "error": str(e)},
            )
            raise StorageError(f"Failed to write {self.path}: {e}") from e


class MemoryStore(AccountStore):
    """Volatile in-process document. Usage is lost on restart."""

    def __init__(self, document: Document | None = None) -> None:
        super().__init__()
        self._data = document.to_storage() if document else None

    def load(self, account_id: str | None = None) -> Document:
        if self._data is None:
            return Document()
        return Document.model_validate(self._data)

    def save(self, document: Document) -> None:
        self._data = document.to_storage()


ACCOUNT_PREFIX = "ACCOUNT#"
PROFILE_SK = "PROFILE"
PAYMENT_PREFIX = "PAYMENT#"


def serialize_record(record: Account | Payment) -> str:
    """Canonical JSON for one record, comparable across loads."""
    return json.dumps(record.model_dump(mode="json", by_alias=True), sort_keys=True)


class DynamoDBAccountStore(AccountStore):
    """Accounts and payment requests as separate DynamoDB items.

    Each account owns one partition, PK=ACCOUNT#<id>: its usage record at
    SK=PROFILE and one item per payment request at SK=PAYMENT#<id>. No item
    grows with the number of accounts or payments.

    Saves write only the records that changed since they were loaded. The
    usage record carries a version that must still match on write, so an
    update racing in from another process fails with StorageError instead
    of being overwritten.
    """

    def __init__(self, table_name: str) -> None:
        """Initialize with table name.

        Args:
            table_name: Name of the DynamoDB table
        """
        super().__init__()
        self.table_name = table_name
        self.dynamodb = boto3.resource("dynamodb")
        self.table = self.dynamodb.Table(table_name)

    def load(self, account_id: str | None = None) -> Document:
        """Load one account's partition, or scan every account if None."""
        try:
            if account_id is None:
                items = self._paginate(
                    self.table.scan,
                    {
                        "FilterExpression": "begins_with(PK, :prefix)",
                        "ExpressionAttributeValues": {":prefix": ACCOUNT_PREFIX},
                    },
                )
            else:
                items = self._paginate(
                    self.table.query,
                    {
                        "KeyConditionExpression": "PK = :pk",
                        "ExpressionAttributeValues": {":pk": f"{ACCOUNT_PREFIX}{account_id}"},
                    },
                )
        except (ClientError, BotoCoreError) as e:
            logger.warning(
                "Failed to read account records, starting empty",
                extra={"table": self.table_name, "account_id": account_id, "error": str(e)},
            )
            return Document()

        return self._to_document(items)

    @staticmethod
    def _paginate(operation, params: dict[str, Any]) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        while True:
            response = operation(**params)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            params = {**params, "ExclusiveStartKey": last_key}

    def _to_document(self, items: list[dict[str, Any]]) -> Document:
        document = Document()
        for item in items:
            pk, sk = item["PK"], item["SK"]
            account_id = pk.removeprefix(ACCOUNT_PREFIX)
            data = item.get("data")

            # Version is kept even for a corrupt record so it can be overwritten
            if sk == PROFILE_SK:
                document._versions[account_id] = int(item.get("version", 0))

            try:
                if sk == PROFILE_SK:
                    document.accounts[account_id] = Account.model_validate_json(data)
                elif sk.startswith(PAYMENT_PREFIX):
                    payment = Payment.model_validate_json(data)
                    document.payments[payment.payment_id] = payment
                else:
                    continue
            except (TypeError, ValueError) as e:
                logger.warning(
                    "Corrupt account record, skipping",
                    extra={"table": self.table_name, "pk": pk, "sk": sk, "error": str(e)},
                )
                continue

            document._stored[(pk, sk)] = data
        return document

    def save(self, document: Document) -> None:
        """Write every record that differs from what was loaded.

        Usage records are written before payment requests, so a failed
        version check leaves the account's payments untouched.

        Raises:
            StorageError: If a write failed or the account changed underneath
        """
        for account_id, account in document.accounts.items():
            key = (f"{ACCOUNT_PREFIX}{account_id}", PROFILE_SK)
            data = serialize_record(account)
            if document._stored.get(key) == data:
                continue

            expected = document._versions.get(account_id)
            version = (expected or 0) + 1
            if expected is None:
                condition = {"ConditionExpression": "attribute_not_exists(PK)"}
            else:
                condition = {
                    "ConditionExpression": "#version = :expected",
                    "ExpressionAttributeNames": {"#version": "version"},
                    "ExpressionAttributeValues": {":expected": expected},
                }

            self._put(key, data, account_id, version=version, **condition)
            document._versions[account_id] = version
            document._stored[key] = data

        for payment in document.payments.values():
            key = (
                f"{ACCOUNT_PREFIX}{payment.account_id}",
                f"{PAYMENT_PREFIX}{payment.payment_id}",
            )
            data = serialize_record(payment)
            if document._stored.get(key) == data:
                continue

            self._put(key, data, payment.account_id)
            document._stored[key] = data

    def _put(
        self,
        key: tuple[str, str],
        data: str,
        account_id: str,
        version: int | None = None,
        **condition: Any,
    ) -> None:
        item: dict[str, Any] = {
            "PK": key[0],
            "SK": key[1],
            "data": data,
            "updated_at": datetime.now(UTC).isoformat(),
        }
        if version is not None:
            item["version"] = version

        try:
            self.table.put_item(Item=item, **condition)
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                logger.warning(
                    "Account record changed concurrently",
                    extra={"table": self.table_name, "account_id": account_id},
                )
                raise StorageError(
                    f"Account '{account_id}' was updated concurrently, try again"
                ) from e
            logger.error(
                "Failed to write account record",
                extra={"table": self.table_name, "pk": key[0], "sk": key[1], "error": str(e)},
            )
            raise StorageError(f"Failed to write account record: {e}") from e
        except BotoCoreError as e:
            logger.error(
                "Failed to write account record",
                extra={"table": self.table_name, "pk": key[0], "sk": key[1], "error": str(e)},
            )
            raise StorageError(f"Failed to write account record: {e}") from e


def create_store(config: "Config") -> AccountStore:
    """Build the store selected by configuration.

    Args:
        config: Application configuration

    Returns:
        AccountStore for the configured backend
    """
    if config.store_backend == "memory":
        return MemoryStore()
    if config.store_backend == "dynamodb":
        return DynamoDBAccountStore(config.table_name or "")
    return JsonFileStore(config.store_path)


_store: AccountStore | None = None


def get_store() -> AccountStore:
    """Get the process-wide store, created from configuration on first use.

    Handlers share one instance so they share its document lock.
    """
    global _store
    if _store is None:
        from .config import get_config

        _store = create_store(get_config())
    return _store


def reset_store() -> None:
    """Reset the store instance (for testing)."""
    global _store
    _store = None
