#!/usr/bin/env python
# dbmigrate/ordering.py

"""
===============================================================================

    Original code copyright (C) 2009-2022 Rudolf Cardinal (rudolf@pobox.com).

    This file is part of dbmigrate.

    Licensed under the Apache License, Version 2.0 (the "License");
    you may not use this file except in compliance with the License.
    You may obtain a copy of the License at

        https://www.apache.org/licenses/LICENSE-2.0

    Unless required by applicable law or agreed to in writing, software
    distributed under the License is distributed on an "AS IS" BASIS,
    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
    See the License for the specific language governing permissions and
    limitations under the License.

===============================================================================

**Dependency ordering of tables by their foreign keys.**

If table B contains a foreign key to table A, B depends on A: A is the
"parent", B the "child". Parents must be written before children and deleted
after them.

Each table gets a *priority*: the length of the longest chain of foreign keys
leading out of it. A table with no (non-self-referencing) foreign keys has
priority 0; a table referring to one of priority ``n`` has priority at least
``n + 1``. Ascending priority is therefore a safe insert order, and descending
priority a safe delete order. Self-references don't count. A cycle between
distinct tables can't be ordered and raises
:exc:`dbmigrate.exceptions.CircularDependencyError`.

"""

from typing import Dict, List, Set, Tuple, TYPE_CHECKING

from dbmigrate.exceptions import CircularDependencyError
from dbmigrate.logs import get_brace_style_log_with_null_handler

if TYPE_CHECKING:
    from dbmigrate.schema import Table

log = get_brace_style_log_with_null_handler(__name__)


# =============================================================================
# TableDependency
# =============================================================================

class TableDependency(object):
    """
    One foreign-key edge between two tables: ``child`` has a field that
    refers to a field of ``parent``.
    """

    def __init__(self, parent_table: "Table",
                 child_table: "Table") -> None:
        self.parent_table = parent_table
        self.child_table = child_table

    def __str__(self) -> str:
        return f"{self.child_table.name} -> {self.parent_table.name}"

    def sort_key(self) -> Tuple[str, str]:
        return self.child_table.name, self.parent_table.name


def get_all_dependencies(tables: List["Table"],
                         sort: bool = False) -> List[TableDependency]:
    """
    Lists the table-to-table dependencies implied by the foreign keys of the
    schema model, one per (child, parent) pair. Self-references are ignored,
    as are references to tables outside ``tables``.

    Args:
        tables: the tables
        sort: sort by (child, parent) table names?
    """
    members = set(tables)
    dependencies = []  # type: List[TableDependency]
    seen = set()  # type: Set[Tuple[int, int]]
    for child in tables:
        for parent in child.referenced_tables:
            if parent is child or parent not in members:
                continue
            key = (id(parent), id(child))
            if key in seen:
                continue
            seen.add(key)
            dependencies.append(TableDependency(parent, child))
    if sort:
        dependencies.sort(key=TableDependency.sort_key)
    return dependencies


# =============================================================================
# TableDependencyClassification; classify_tables_by_dependency_type
# =============================================================================

class TableDependencyClassification(object):
    """
    A table together with its parents (tables it refers to) and children
    (tables referring to it), and the cycle it sits on, if any.
    """

    def __init__(self,
                 table: "Table",
                 children: List["Table"] = None,
                 parents: List["Table"] = None) -> None:
        self.table = table
        self.children = children or []  # type: List[Table]
        self.parents = parents or []  # type: List[Table]
        self.circular_chain = []  # type: List[Table]

    @property
    def tablename(self) -> str:
        return self.table.name

    @property
    def circular(self) -> bool:
        return bool(self.circular_chain)

    @property
    def standalone(self) -> bool:
        return not self.parents and not self.children

    @property
    def circular_description(self) -> str:
        return " -> ".join(t.name for t in self.circular_chain)

    @property
    def description(self) -> str:
        """
        e.g. ``"parent+child"``, ``"standalone"``, ``"child+CIRCULAR(a -> b
        -> a)"``.
        """
        roles = []  # type: List[str]
        if self.children:
            roles.append("parent")
        if self.parents:
            roles.append("child")
        desc = "+".join(roles) or "standalone"
        if self.circular:
            desc += f"+CIRCULAR({self.circular_description})"
        return desc

    def __str__(self) -> str:
        return f"{self.tablename}({self.description})"


def _find_cycle(start: "Table",
                parents_of: Dict["Table", List["Table"]]) -> List["Table"]:
    """
    Depth-first search up the parent links from ``start``. Returns the chain
    ``[start, ..., start]`` if ``start`` can reach itself, else ``[]``.
    """
    stack = [(start, [start])]  # type: List[Tuple[Table, List[Table]]]
    visited = set()  # type: Set[Table]
    while stack:
        table, path = stack.pop()
        for parent in parents_of[table]:
            if parent is start:
                return path + [start]
            if parent not in visited:
                visited.add(parent)
                stack.append((parent, path + [parent]))
    return []


def classify_tables_by_dependency_type(
        tables: List["Table"],
        all_dependencies: List[TableDependency] = None,
        sort: bool = False) -> List[TableDependencyClassification]:
    """
    Classifies each table by its dependencies, flagging those that sit on a
    foreign-key cycle.

    Args:
        tables:
            the tables to inspect
        all_dependencies:
            output of :func:`get_all_dependencies`, if already computed
        sort:
            sort the results by table name? (Otherwise, they are in the same
            order as ``tables``.)
    """
    if all_dependencies is None:
        all_dependencies = get_all_dependencies(tables)
    parents_of = {t: [] for t in tables}  # type: Dict[Table, List[Table]]
    children_of = {t: [] for t in tables}  # type: Dict[Table, List[Table]]
    for dep in all_dependencies:
        parents_of[dep.child_table].append(dep.parent_table)
        children_of[dep.parent_table].append(dep.child_table)
    classifications = []  # type: List[TableDependencyClassification]
    for table in tables:
        tdc = TableDependencyClassification(
            table, children=children_of[table], parents=parents_of[table])
        tdc.circular_chain = _find_cycle(table, parents_of)
        classifications.append(tdc)
    if sort:
        classifications.sort(key=lambda c: c.tablename)
    return classifications


# =============================================================================
# =============================================================================
# Priorities
# =============================================================================

def assign_priorities(tables: List["Table"]) -> List["Table"]:
    """
    Sets the ``priority`` attribute of every table (see module docstring).

    Args:
        tables: the tables, in the order the database enumerated them

    Returns:
        the tables sorted by ascending priority; ties keep their enumeration
        order

    Raises:
        :exc:`CircularDependencyError` if foreign keys form a cycle between
        distinct tables
    """
    all_deps = get_all_dependencies(tables)
    classified = classify_tables_by_dependency_type(
        tables, all_dependencies=all_deps)
    for tdc in classified:
        if tdc.circular:
            log.error("Circular dependency: {}", tdc.circular_description)
            raise CircularDependencyError(
                [t.name for t in tdc.circular_chain])

    # Iteratively: each pass takes every table whose parents have all been
    # placed. The pass number is the length of the longest chain of parents.
    to_do = list(classified)
    tables_done = set()  # type: Set[Table]
    priority = 0
    while to_do:
        suitable = [
            tdc for tdc in to_do
            if all(p in tables_done for p in tdc.parents)
        ]
        if not suitable:
            # Unreachable after the circularity check.
            raise CircularDependencyError([tdc.tablename for tdc in to_do])
        for tdc in suitable:
            tdc.table.priority = priority
        tables_done.update(tdc.table for tdc in suitable)
        to_do = [tdc for tdc in to_do if tdc not in suitable]
        priority += 1

    for tdc in classified:
        log.debug("Table {!r}: priority {}; {}",
                  tdc.tablename, tdc.table.priority, tdc.description)
    return sort_by_priority(tables)


def sort_by_priority(tables: List["Table"],
                     reverse: bool = False) -> List["Table"]:
    """
    Returns tables sorted by priority: ascending (insert order) or, with
    ``reverse=True``, the exact reverse of that (delete order).
    """
    ordered = sorted(tables, key=lambda t: t.priority)  # stable
    if reverse:
        ordered.reverse()
    return ordered
