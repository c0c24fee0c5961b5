"""
Test Method Collectors

Providers of the expected test set for a run. The driver compares this set
against the results it has seen to find tests the service never ran.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from testall.contracts.core import ExpectedSet, TestItem
from testall.contracts.protocols import TestCatalog
from testall.query import QueryHelper, chunked

logger = logging.getLogger(__name__)

# Class names per catalog lookup
CLASS_NAME_CHUNK_SIZE = 200


async def class_id_name_map_from_names(
    catalog: TestCatalog,
    namespace: str | None,
    class_names: Sequence[str],
    query_helper: QueryHelper,
) -> dict[str, str]:
    """
    Resolve class names to ids, or every class in the namespace when no names are given.

    Raises:
        QueryError: If a lookup fails after retries
    """
    if not class_names:
        return dict(
            await query_helper.run(
                lambda: catalog.list_classes(namespace, []),
                stage="test classes",
            )
        )

    classes: dict[str, str] = {}
    for names in chunked(list(class_names), CLASS_NAME_CHUNK_SIZE):
        classes.update(
            await query_helper.run(
                lambda names=names: catalog.list_classes(namespace, names),
                stage="test classes",
            )
        )
    return classes


class CatalogTestMethodCollector:
    """
    Discovers test methods by asking the catalog what each class declares.

    The class id map is resolved once and cached. Classes that declare no
    test methods are left out of the expected set.
    """

    def __init__(
        self,
        catalog: TestCatalog,
        namespace: str | None,
        class_names: Sequence[str],
        query_helper: QueryHelper | None = None,
    ):
        self._catalog = catalog
        self._namespace = namespace
        self._class_names = list(class_names)
        self._query = query_helper or QueryHelper()
        self._class_name_by_id: dict[str, str] | None = None

    async def class_id_name_map(self) -> dict[str, str]:
        if self._class_name_by_id is None:
            self._class_name_by_id = await class_id_name_map_from_names(
                self._catalog, self._namespace, self._class_names, self._query
            )
        return self._class_name_by_id

    async def expected_test_set(self) -> ExpectedSet:
        class_ids = list(await self.class_id_name_map())

        methods: ExpectedSet = {}
        for ids in chunked(class_ids, CLASS_NAME_CHUNK_SIZE):
            found = await self._query.run(
                lambda ids=ids: self._catalog.list_test_methods(ids),
                stage="test methods",
            )
            for class_name, names in found.items():
                if names:
                    methods.setdefault(class_name, set()).update(names)

        logger.debug(
            f"Found {sum(len(m) for m in methods.values())} test methods "
            f"in {len(methods)} classes"
        )
        return methods


class TestItemTestMethodCollector:
    """
    Expected test set taken directly from explicit test items.

    Use when the caller already knows which methods should run, for example
    when re-running the failures of an earlier run.
    """

    def __init__(
        self,
        items: Sequence[TestItem],
        catalog: TestCatalog | None = None,
        query_helper: QueryHelper | None = None,
    ):
        self._items = list(items)
        self._catalog = catalog
        self._query = query_helper or QueryHelper()

    async def class_id_name_map(self) -> dict[str, str]:
        known = {
            item.class_id: item.class_name
            for item in self._items
            if item.class_id and item.class_name
        }
        if self._catalog is None:
            return known

        missing = [
            item.class_name for item in self._items if item.class_name and not item.class_id
        ]
        if not missing:
            return known
        namespace = next((item.namespace for item in self._items if item.namespace), None)
        resolved = await class_id_name_map_from_names(
            self._catalog, namespace, list(dict.fromkeys(missing)), self._query
        )
        return {**known, **resolved}

    async def expected_test_set(self) -> ExpectedSet:
        methods: ExpectedSet = {}
        for item in self._items:
            if item.class_name and item.test_methods:
                methods.setdefault(item.class_name, set()).update(item.test_methods)
        return methods


__all__ = [
    "CLASS_NAME_CHUNK_SIZE",
    "CatalogTestMethodCollector",
    "TestItemTestMethodCollector",
    "class_id_name_map_from_names",
]
