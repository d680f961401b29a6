"""Batch-local symbol table for ``--id=@name`` row references.

A ``create --id=@sw`` command binds ``@sw`` to the row it inserts; later
commands in the same batch can use ``@sw`` wherever a row UUID is expected.
The table lives for exactly one executor attempt.
"""
import logging
import uuid as uuid_lib
from dataclasses import dataclass
from typing import Optional

from .errors import CommandError, SymbolError

logger = logging.getLogger(__name__)


@dataclass
class Symbol:
    """One ``@name`` and what the batch has done with it so far."""
    name: str
    uuid: Optional[str] = None
    created: bool = False
    strong_ref: bool = False
    weak_ref: bool = False
    referenced_early: bool = False


class SymbolTable:
    """Map from symbol name to Symbol, with end-of-attempt validation."""

    def __init__(self):
        self._symbols: dict[str, Symbol] = {}

    def __contains__(self, name: str) -> bool:
        return name in self._symbols

    def __len__(self) -> int:
        return len(self._symbols)

    def get(self, name: str) -> Optional[Symbol]:
        return self._symbols.get(name)

    def declare(self, name: str) -> Symbol:
        """Return the symbol called ``name``, creating an unresolved one if needed."""
        if not name.startswith("@"):
            raise CommandError(f"row id \"{name}\" does not begin with \"@\"")
        symbol = self._symbols.get(name)
        if symbol is None:
            symbol = Symbol(name)
            self._symbols[name] = symbol
        return symbol

    def mark_created(self, name: str, row_uuid: str) -> Symbol:
        symbol = self.declare(name)
        if symbol.created:
            raise SymbolError(f"row id \"{name}\" may only be specified on one --id option")
        symbol.created = True
        symbol.uuid = row_uuid
        return symbol

    def mark_strong_ref(self, name: str) -> Symbol:
        symbol = self.declare(name)
        symbol.strong_ref = True
        return symbol

    def mark_weak_ref(self, name: str) -> Symbol:
        symbol = self.declare(name)
        symbol.weak_ref = True
        return symbol

    def reference(self, name: str, strong: bool = True) -> str:
        """Record a reference to ``name`` and return the UUID to store.

        A symbol that is not created yet gets a placeholder UUID and is
        flagged; validate() then rejects the batch.
        """
        symbol = self.mark_strong_ref(name) if strong else self.mark_weak_ref(name)
        if not symbol.created:
            symbol.referenced_early = True
            if symbol.uuid is None:
                symbol.uuid = str(uuid_lib.uuid4())
        return symbol.uuid

    def validate(self) -> list[str]:
        """Check every symbol; returns warnings, raises SymbolError on failure."""
        warnings = []
        for name, symbol in self._symbols.items():
            if not symbol.created or symbol.referenced_early:
                raise SymbolError(
                    f"row id \"{name}\" is referenced but never created "
                    f"(e.g. with \"-- --id={name} create ...\")"
                )
            if not symbol.strong_ref:
                if symbol.weak_ref:
                    warnings.append(
                        f"row id \"{name}\" was created but only a weak reference to it "
                        f"was inserted, so it will not actually appear in the database"
                    )
                else:
                    warnings.append(
                        f"row id \"{name}\" was created but no reference to it was "
                        f"inserted, so it will not actually appear in the database"
                    )
        return warnings
