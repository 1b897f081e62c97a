import logging
from collections import defaultdict
from typing import Dict, Iterator, Optional


class DatabaseError(Exception):
    """Base class for recoverable command errors"""
    message = "ERROR"

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.message)
        self.detail = detail


class UnrecognizedCommand(DatabaseError):
    message = "Unrecognized command. Please try again."


class MissingArgument(DatabaseError):
    message = "Not enough arguments. Please try again."


class NoActiveTransaction(DatabaseError):
    message = "NO TRANSACTION"


class _Tombstone:
    """Marks a key as unset inside a transaction layer"""

    def __repr__(self) -> str:
        return "TOMBSTONE"


TOMBSTONE = _Tombstone()


class InMemoryDB:
    def __init__(self):
        """
        Database initialization method

        _main_db - committed (base) layer, never holds tombstones
        _counts - number of base keys holding each value
        _transaction_stack - open transaction layers, oldest first;
            each layer is {"updates": key -> value or TOMBSTONE,
                           "deltas": value -> signed count adjustment}
        logger - logger for audit
        """
        self._main_db: Dict[str, str] = {}
        self._counts = defaultdict(int)
        self._transaction_stack = []
        self.logger = logging.getLogger("InMemoryDB")

    @property
    def db_size(self) -> int:
        """
        The method returns the number of committed keys
        (read-only)
        """
        return len(self._main_db)

    @property
    def transaction_depth(self) -> int:
        """
        The method returns the current transaction depth
        (read-only)
        """
        return len(self._transaction_stack)

    def _require(self, name: str, argument: Optional[str]) -> None:
        if argument is None or argument == "":
            raise MissingArgument(f"{name} is required")

    def _current_layer(self) -> dict:
        return self._transaction_stack[-1]

    def _layers_top_down(self) -> Iterator[dict]:
        return reversed(self._transaction_stack)

    def _effective_value(self, key: str) -> Optional[str]:
        """
        Resolve a key from the innermost layer down to the base.
        The first layer mentioning the key decides.
        """
        for layer in self._layers_top_down():
            if key in layer["updates"]:
                value = layer["updates"][key]
                return None if value is TOMBSTONE else value
        return self._main_db.get(key)

    def _shift_delta(self, old_value: Optional[str], new_value: Optional[str]) -> None:
        """
        Move one key from old_value to new_value in the current layer's deltas
        """
        if old_value == new_value:
            return
        deltas = self._current_layer()["deltas"]
        for value, step in ((old_value, -1), (new_value, 1)):
            if value is None:
                continue
            deltas[value] += step
            if deltas[value] == 0:
                del deltas[value]

    def _adjust_count(self, value: str, step: int) -> None:
        self._counts[value] += step
        if self._counts[value] == 0:
            del self._counts[value]

    def set_value(self, key: str, value: str) -> None:
        """
        Method to set a value
        """
        self._require("key", key)
        self._require("value", value)

        if self._transaction_stack:
            old_value = self._effective_value(key)
            self._current_layer()["updates"][key] = value
            self._shift_delta(old_value, value)
            self.logger.info(f"SET in transaction: {key} = {value}")
        else:
            self._update_main_db(key, value)
            self.logger.info(f"SET: {key} = {value}")

    def _update_main_db(self, key: str, value: str) -> None:
        """
        Method for updating the database
        """
        old_value = self._main_db.get(key)
        if old_value == value:
            return
        if old_value is not None:
            self._adjust_count(old_value, -1)

        self._main_db[key] = value
        self._adjust_count(value, 1)

    def _remove_from_main_db(self, key: str) -> None:
        if key in self._main_db:
            self._adjust_count(self._main_db.pop(key), -1)

    def get_value(self, key: str) -> Optional[str]:
        """
        Method to get value from database by key.
        Returns None when the key is unset or tombstoned.
        """
        self._require("key", key)
        value = self._effective_value(key)
        self.logger.debug(f"GET: {key} -> {value!r}")
        return value

    def unset_value(self, key: str) -> None:
        """
        Method to remove a value.
        Inside a transaction the tombstone is recorded even for keys
        that hold no value.
        """
        self._require("key", key)

        if self._transaction_stack:
            old_value = self._effective_value(key)
            self._current_layer()["updates"][key] = TOMBSTONE
            self._shift_delta(old_value, None)
            self.logger.info(f"UNSET in transaction: {key}")
        else:
            self._remove_from_main_db(key)
            self.logger.info(f"UNSET: {key}")

    def count_value(self, value: str) -> int:
        """
        Number of keys whose effective value equals value:
        base count plus the delta of every open layer
        """
        if value is None:
            raise MissingArgument("value is required")

        count = self._counts.get(value, 0)
        for layer in self._transaction_stack:
            count += layer["deltas"].get(value, 0)
        return count

    def begin_transaction(self) -> None:
        """
        Method to start a transaction
        """
        self._transaction_stack.append({"updates": {}, "deltas": defaultdict(int)})
        self.logger.info(f"BEGIN TRANSACTION (depth {self.transaction_depth})")

    def rollback_transaction(self) -> None:
        """
        Method for rolling back the innermost transaction
        """
        if not self._transaction_stack:
            self.logger.warning("ROLLBACK attempted with no active transactions")
            raise NoActiveTransaction("rollback")

        self._transaction_stack.pop()
        self.logger.info("ROLLBACK TRANSACTION")

    def commit_transaction(self) -> None:
        """
        Method to commit every open transaction into the base layer
        """
        if not self._transaction_stack:
            self.logger.warning("COMMIT attempted with no active transactions")
            raise NoActiveTransaction("commit")

        depth = self.transaction_depth
        for layer in self._transaction_stack:
            self._fold_into_main_db(layer)
        self._transaction_stack = []
        self.logger.info(f"COMMIT TRANSACTION ({depth} layers)")

    def _fold_into_main_db(self, layer: dict) -> None:
        """
        Apply one layer's writes and count deltas to the base.
        Layers must be folded oldest first.
        """
        for key, value in layer["updates"].items():
            if value is TOMBSTONE:
                self._main_db.pop(key, None)
            else:
                self._main_db[key] = value
        for value, delta in layer["deltas"].items():
            if delta:
                self._adjust_count(value, delta)
