"""
Tests for test method collectors.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from testall.collector.methods import (
    CatalogTestMethodCollector,
    TestItemTestMethodCollector,
)
from testall.contracts.core import TestItem
from testall.contracts.protocols import TestDiscovery


@pytest.fixture
def catalog():
    catalog = MagicMock()
    catalog.list_classes = AsyncMock()
    catalog.list_test_methods = AsyncMock()
    return catalog


class TestCatalogTestMethodCollector:
    """Tests for CatalogTestMethodCollector."""

    @pytest.mark.asyncio
    async def test_all_classes_when_no_names(self, catalog):
        catalog.list_classes.return_value = {"id1": "FooTest", "id2": "BarTest"}
        collector = CatalogTestMethodCollector(catalog, "ns", [])

        assert await collector.class_id_name_map() == {"id1": "FooTest", "id2": "BarTest"}
        catalog.list_classes.assert_awaited_once_with("ns", [])

    @pytest.mark.asyncio
    async def test_names_queried_in_chunks_of_200(self, catalog):
        names = [f"Test{i}" for i in range(450)]
        catalog.list_classes.side_effect = lambda ns, chunk: {f"id-{n}": n for n in chunk}
        collector = CatalogTestMethodCollector(catalog, None, names)

        classes = await collector.class_id_name_map()

        assert len(classes) == 450
        assert [len(c.args[1]) for c in catalog.list_classes.await_args_list] == [200, 200, 50]

    @pytest.mark.asyncio
    async def test_class_map_is_cached(self, catalog):
        catalog.list_classes.return_value = {"id1": "FooTest"}
        collector = CatalogTestMethodCollector(catalog, None, ["FooTest"])

        await collector.class_id_name_map()
        await collector.class_id_name_map()

        catalog.list_classes.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expected_set_omits_classes_without_tests(self, catalog):
        catalog.list_classes.return_value = {"id1": "FooTest", "id2": "Helper"}
        catalog.list_test_methods.return_value = {"FooTest": {"m1", "m2"}, "Helper": set()}
        collector = CatalogTestMethodCollector(catalog, None, [])

        expected = await collector.expected_test_set()

        assert expected == {"FooTest": {"m1", "m2"}}
        catalog.list_test_methods.assert_awaited_once_with(["id1", "id2"])

    def test_satisfies_discovery_protocol(self, catalog):
        assert isinstance(CatalogTestMethodCollector(catalog, None, []), TestDiscovery)


class TestTestItemTestMethodCollector:
    """Tests for TestItemTestMethodCollector."""

    @pytest.mark.asyncio
    async def test_expected_set_from_items(self):
        items = [
            TestItem(class_name="FooTest", test_methods=("m1",)),
            TestItem(class_name="FooTest", test_methods=("m2",)),
            TestItem(class_name="BarTest", test_methods=("m3", "m4")),
        ]
        collector = TestItemTestMethodCollector(items)

        assert await collector.expected_test_set() == {
            "FooTest": {"m1", "m2"},
            "BarTest": {"m3", "m4"},
        }

    @pytest.mark.asyncio
    async def test_class_map_from_item_ids(self):
        items = [TestItem(class_name="FooTest", class_id="id1", test_methods=("m1",))]

        assert await TestItemTestMethodCollector(items).class_id_name_map() == {"id1": "FooTest"}

    @pytest.mark.asyncio
    async def test_class_map_resolves_missing_ids(self, catalog):
        catalog.list_classes.return_value = {"id2": "BarTest"}
        items = [
            TestItem(class_name="FooTest", class_id="id1", test_methods=("m1",)),
            TestItem(class_name="BarTest", namespace="ns", test_methods=("m2",)),
        ]

        classes = await TestItemTestMethodCollector(items, catalog).class_id_name_map()

        assert classes == {"id1": "FooTest", "id2": "BarTest"}
        catalog.list_classes.assert_awaited_once_with("ns", ["BarTest"])
