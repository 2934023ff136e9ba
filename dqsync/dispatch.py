"""
Check type dispatch - Route a definition to its compiler variant.

This module provides the dispatch layer between the store and the compiler:
1. Reads the current definition (and so its declared type) from the store
2. Resolves the declared type text against the closed CheckType set
3. Maps the CheckType to its compiler through an exhaustive registry

Unknown declared types resolve to CheckType.UNSUPPORTED and route to
compile_unsupported; dispatch never raises on a type. A CheckType member
without a registered compiler is a programming error caught at import.
"""

from dataclasses import dataclass

from dqsync.compiler import (
    DEFAULT_RESULTS_TABLE,
    CompilerFn,
    compile_check,
    compile_consistency,
    compile_freshness,
    compile_uniqueness,
    compile_unsupported,
)
from dqsync.errors import NotFoundError
from dqsync.schemas import CheckDefinition, CheckType, CompileOutcome
from dqsync.stores.base import DefinitionStore


COMPILERS: dict[CheckType, CompilerFn] = {
    CheckType.FRESHNESS: compile_freshness,
    CheckType.UNIQUENESS: compile_uniqueness,
    CheckType.CONSISTENCY: compile_consistency,
    CheckType.UNSUPPORTED: compile_unsupported,
}

_missing = set(CheckType) - set(COMPILERS)
if _missing:
    raise RuntimeError(f"No compiler registered for check types: {sorted(t.value for t in _missing)}")


def compiler_for(check_type: CheckType) -> CompilerFn:
    """Get the compiler variant for a resolved check type."""
    return COMPILERS[check_type]


@dataclass(frozen=True)
class Dispatched:
    """A definition read from the store together with its compile outcome."""
    definition: CheckDefinition
    check_type: CheckType
    outcome: CompileOutcome


class CheckDispatcher:
    """
    Resolves definition ids to compiled checks.

    Args:
        store: Definitions store to read current definitions from
        results_table: Results table path handed to every compiler
    """

    def __init__(self, store: DefinitionStore, results_table: str = DEFAULT_RESULTS_TABLE):
        self.store = store
        self.results_table = results_table

    def resolve(self, check_id: str) -> CheckDefinition:
        """
        Read the current definition for an id.

        Raises:
            NotFoundError: If the id is absent from the store
            StoreFailure: If the store is unavailable
        """
        definition = self.store.get(check_id)
        if definition is None:
            raise NotFoundError(check_id)
        return definition

    def dispatch(self, check_id: str) -> Dispatched:
        """Read, resolve and compile one definition."""
        definition = self.resolve(check_id)
        outcome = compile_check(definition, results_table=self.results_table)
        return Dispatched(definition=definition, check_type=definition.kind, outcome=outcome)
