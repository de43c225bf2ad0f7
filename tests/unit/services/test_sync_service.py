# Sync applier tests
from datetime import datetime

import pytest

from feedsync.core.enums import ItemStatus, PipelineStep, StepOutcome
from feedsync.core.exceptions import PartialCreateError, RemoteTransportError, RemoteUserError
from feedsync.schemas.remote import RemoteInventoryLevel
from feedsync.services.change_detector import ItemChange
from feedsync.services.sync_service import STEP_POLICY, ItemSyncResult, StepSkipped, SyncRunReport

from tests.mocks.factories import make_item, make_stored
from tests.mocks.mock_platform import LOCATION_ID

P1 = "gid://shopify/Product/1"
P2 = "gid://shopify/Product/2"


def _seed(remote, store, *items):
    """Put published items in the store and their products on the storefront."""
    for item in items:
        store.items[item.sku] = item
        if item.remote_id:
            remote.seed_product(item.sku, product_id=item.remote_id, image_count=item.image_count, title=item.title)


"""
1. Run orchestration
"""

@pytest.mark.asyncio
async def test_end_to_end_create_and_delete(sync_service, remote, store, feed, notifier):
    """Unchanged A is left alone, B is created and C is deleted"""
    _seed(remote, store, make_stored("A", remote_id=P1), make_stored("C", remote_id=P2))
    feed.items = [make_item("A"), make_item("B")]

    report = await sync_service.run_sync()

    assert not report.aborted
    assert report.change_counts == {"new": 1, "changed": 0, "deleted": 1, "unchanged": 1}
    assert remote.calls_to("delete_product") == [(P2,)]
    created = remote.calls_to("create_product")
    assert [args[0].variants[0].sku for args in created] == ["B"]
    assert remote.mutation_calls.index("delete_product") < remote.mutation_calls.index("create_product")
    assert all(P1 not in args for _, args in remote.calls)

    assert store.items["A"].status == ItemStatus.PUBLISHED
    assert store.items["A"].remote_id == P1
    assert store.items["B"].status == ItemStatus.PUBLISHED
    assert store.items["B"].remote_id in remote.products
    assert "C" not in store.items
    assert (report.count("create"), report.count("update"), report.count("delete")) == (1, 0, 1)
    assert ("B", "Published") in notifier.publish_alerts
    assert ("C", "Removed") in notifier.publish_alerts


@pytest.mark.asyncio
async def test_created_product_has_all_sub_resources(sync_service, remote, store, feed):
    feed.items = [make_item("B", web_status="Sold")]

    await sync_service.run_sync()

    product = remote.products[store.items["B"].remote_id]
    assert [o.name for o in product.options] == ["Color", "Size", "Material"]
    assert [i.src for i in product.images] == [
        "https://cdn.example.com/images/watches/B-1.jpg",
        "https://cdn.example.com/images/watches/B-2.jpg",
    ]
    assert remote.inventory[product.variants[0].inventory_item_id] == {LOCATION_ID: 0}
    assert len(product.collection_ids) == 5
    assert remote.calls_to("publish_to_all_channels") == [(product.id,)]


@pytest.mark.asyncio
async def test_safety_guard_aborts_with_no_remote_mutation(sync_service, remote, store, feed, notifier):
    _seed(remote, store, *[make_stored(f"OLD{n}", remote_id=f"gid://shopify/Product/{n}") for n in range(1, 7)])
    feed.items = [make_item("NEW")]

    report = await sync_service.run_sync()

    assert report.aborted
    assert "deleted=6" in report.message
    assert remote.mutation_calls == []
    assert len(store.items) == 6
    assert notifier.alerts[0]["subject"] == "Sync aborted by safety threshold"


@pytest.mark.asyncio
async def test_safety_guard_boundary_proceeds(sync_service, remote, store, feed):
    _seed(remote, store, *[make_stored(f"OLD{n}", remote_id=f"gid://shopify/Product/{n}") for n in range(1, 6)])
    feed.items = [make_item("NEW")]

    report = await sync_service.run_sync()

    assert not report.aborted
    assert len(remote.calls_to("delete_product")) == 5
    assert list(store.items) == ["NEW"]


@pytest.mark.asyncio
async def test_feed_unavailable_aborts(sync_service, remote, store, notifier):
    _seed(remote, store, make_stored("A", remote_id=P1))

    report = await sync_service.run_sync()

    assert report.aborted
    assert report.message.startswith("Feed is temporarily offline")
    assert remote.calls == []
    assert "A" in store.items
    assert notifier.alerts[0]["subject"] == "Feed unavailable"


@pytest.mark.asyncio
async def test_dry_run_touches_nothing(sync_service, remote, store, feed):
    _seed(remote, store, make_stored("C", remote_id=P2))
    feed.items = [make_item("B")]

    report = await sync_service.run_sync(dry_run=True)

    assert report.dry_run
    assert report.message.startswith("Dry run: new=1")
    assert remote.calls == []
    assert "C" in store.items


@pytest.mark.asyncio
async def test_no_changes(sync_service, remote, store, feed):
    _seed(remote, store, make_stored("A", remote_id=P1))
    feed.items = [make_item("A")]

    report = await sync_service.run_sync()

    assert report.message == "No changes detected"
    assert remote.mutation_calls == []


@pytest.mark.asyncio
async def test_dev_mode_caps_feed(sync_service, sync_options, remote, feed):
    sync_options.feed_read_cap = 2
    feed.items = [make_item("A"), make_item("B"), make_item("C")]

    report = await sync_service.run_sync()

    assert report.feed_count == 2
    assert len(remote.calls_to("create_product")) == 2


@pytest.mark.asyncio
async def test_collection_lookup_failure_aborts(sync_service, remote, feed):
    remote.failures["get_all_collections"] = RemoteTransportError("connection reset")
    feed.items = [make_item("B")]

    report = await sync_service.run_sync()

    assert report.aborted
    assert "connection reset" in report.message
    assert remote.mutation_calls == []


@pytest.mark.asyncio
async def test_duplicates_reported(sync_service, feed):
    feed.items = [make_item("A"), make_item("A", price_keystone="1")]

    report = await sync_service.run_sync()

    assert [d.sku for d in report.duplicates] == ["A"]
    assert report.to_dict()["duplicates"] == ["A"]
    assert report.count("create") == 1


"""
2. Create path failures
"""

@pytest.mark.asyncio
async def test_create_rejected_marks_publish_failed(sync_service, remote, store, feed, notifier):
    remote.failures["create_product"] = RemoteUserError(
        "productCreate rejected", [{"field": ["title"], "message": "can't be blank"}]
    )
    feed.items = [make_item("B")]

    report = await sync_service.run_sync()

    item = store.items["B"]
    assert item.status == ItemStatus.PUBLISH_FAILED
    assert item.remote_id is None
    assert "title: can't be blank" in item.last_error
    assert report.failures[0].sku == "B"
    subjects = [a["subject"] for a in notifier.alerts]
    assert "Failed to publish B" in subjects
    assert "Sync completed with 1 failure(s)" in subjects


@pytest.mark.asyncio
async def test_image_failure_does_not_fail_create(sync_service, remote, store, feed):
    remote.failures["add_images"] = RemoteTransportError("timeout")
    remote.failures["publish_to_all_channels"] = RemoteUserError("publish rejected")
    feed.items = [make_item("B")]

    report = await sync_service.run_sync()

    result = report.results[0]
    assert result.success
    assert store.items["B"].status == ItemStatus.PUBLISHED
    warnings = {(s.step, s.outcome) for s in result.warnings}
    assert warnings == {
        (PipelineStep.ADD_IMAGES, StepOutcome.RETRYABLE_FAILURE),
        (PipelineStep.PUBLISH_CHANNELS, StepOutcome.FATAL_FAILURE),
    }


@pytest.mark.asyncio
async def test_failure_after_create_keeps_remote_id_and_is_repaired_next_run(sync_service, remote, store, feed):
    """A product that exists remotely is never created twice"""
    remote.failures["add_options"] = RemoteUserError("option rejected")
    feed.items = [make_item("B")]

    await sync_service.run_sync()

    item = store.items["B"]
    assert item.status == ItemStatus.UPDATE_FAILED
    assert item.remote_id in remote.products
    remote_id = item.remote_id

    del remote.failures["add_options"]
    report = await sync_service.run_sync()

    assert report.change_counts["changed"] == 1
    assert len(remote.calls_to("create_product")) == 1
    assert store.items["B"].status == ItemStatus.UPDATED
    assert store.items["B"].remote_id == remote_id


@pytest.mark.asyncio
async def test_publish_failed_item_is_recreated_next_run(sync_service, remote, store, feed):
    store.items["B"] = make_stored("B", remote_id=None, status=ItemStatus.PUBLISH_FAILED, last_error="boom")
    feed.items = [make_item("B")]

    await sync_service.run_sync()

    assert store.items["B"].status == ItemStatus.PUBLISHED
    assert store.items["B"].last_error is None


@pytest.mark.asyncio
async def test_partial_create_keeps_product_id(sync_service, remote, store, feed):
    """The product exists even though setting its variant failed"""
    partial_id = "gid://shopify/Product/900"
    remote.seed_product("B", product_id=partial_id)
    remote.failures["create_product"] = PartialCreateError("productVariantsBulkUpdate rejected", partial_id)
    feed.items = [make_item("B")]

    report = await sync_service.run_sync()

    item = store.items["B"]
    assert not report.results[0].success
    assert item.status == ItemStatus.UPDATE_FAILED
    assert item.remote_id == partial_id

    del remote.failures["create_product"]
    report = await sync_service.run_sync()

    assert report.change_counts["changed"] == 1
    assert len(remote.calls_to("create_product")) == 1
    assert store.items["B"].status == ItemStatus.UPDATED
    assert store.items["B"].remote_id == partial_id


@pytest.mark.asyncio
async def test_location_failure_marks_new_item_publish_failed(sync_service, remote, store, feed):
    remote.failures["get_locations"] = RemoteTransportError("timeout")
    feed.items = [make_item("B")]

    report = await sync_service.run_sync()

    item = store.items["B"]
    assert report.results[0].steps[-1].step == PipelineStep.BUILD_PROPOSAL
    assert item.status == ItemStatus.PUBLISH_FAILED
    assert item.last_error == "timeout"
    assert remote.calls_to("create_product") == []


@pytest.mark.asyncio
async def test_location_failure_marks_changed_item_update_failed(sync_service, remote, store, feed):
    _seed(remote, store, make_stored("A", remote_id=P1, price_keystone="1"))
    remote.failures["get_locations"] = RemoteTransportError("timeout")
    feed.items = [make_item("A", price_keystone="2")]

    report = await sync_service.run_sync()

    item = store.items["A"]
    assert not report.results[0].success
    assert item.status == ItemStatus.UPDATE_FAILED
    assert item.last_error == "timeout"
    assert item.remote_id == P1
    assert remote.calls_to("update_product") == []


@pytest.mark.asyncio
async def test_store_failure_after_create_reports_product_id(sync_service, remote, store, feed, notifier):
    store.fail_on_upsert.add("B")
    feed.items = [make_item("B")]

    report = await sync_service.run_sync()

    created_id = next(iter(remote.products))
    result = report.results[0]
    assert not result.success
    assert created_id in result.message
    assert "B" not in store.items
    assert "Failed to record B" in [a["subject"] for a in notifier.alerts]


@pytest.mark.asyncio
async def test_publish_alert_failure_keeps_create_successful(sync_service, store, feed, notifier, mocker):
    mocker.patch.object(notifier, "send_publish_alert", side_effect=RuntimeError("smtp down"))
    feed.items = [make_item("B")]

    report = await sync_service.run_sync()

    assert report.results[0].success
    assert store.items["B"].status == ItemStatus.PUBLISHED


@pytest.mark.asyncio
async def test_unexpected_error_isolated_to_item(sync_context, sync_service, store, feed, mocker):
    build = sync_context.product_factory.build

    def failing_build(item, locations):
        if item.sku == "A":
            raise KeyError("dial")
        return build(item, locations)

    mocker.patch.object(sync_context.product_factory, "build", side_effect=failing_build)
    feed.items = [make_item("A"), make_item("B")]

    report = await sync_service.run_sync()

    assert [(r.sku, r.success) for r in report.results] == [("A", False), ("B", True)]
    assert report.results[0].message.startswith("Unexpected error")


"""
3. Update path
"""

@pytest.mark.asyncio
async def test_update_carries_remote_ids(sync_service, remote, store, feed):
    _seed(remote, store, make_stored("A", remote_id=P1, price_keystone="9000"))
    seeded = remote.products[P1]
    variant_id = seeded.variants[0].id
    inventory_item_id = seeded.variants[0].inventory_item_id
    feed.items = [make_item("A", price_keystone="8500", web_status="Sold", image_paths=["x.jpg"])]

    report = await sync_service.run_sync()

    assert report.results[0].success
    submitted = remote.calls_to("update_product")[0][0]
    assert submitted.id == P1
    assert submitted.variants[0].id == variant_id
    assert submitted.variants[0].price == "8500"

    # Images are replaced wholesale, re-added without ids
    assert remote.mutation_calls.index("delete_all_images") < remote.mutation_calls.index("add_images")
    re_added = remote.calls_to("add_images")[0][1]
    assert [i.id for i in re_added] == [None]
    assert [i.src for i in remote.products[P1].images] == ["https://cdn.example.com/images/watches/A-1.jpg"]

    assert remote.inventory[inventory_item_id] == {LOCATION_ID: 0}
    assert remote.calls_to("delete_all_collects") == [(P1,)]

    item = store.items["A"]
    assert item.status == ItemStatus.UPDATED
    assert item.price_keystone == "8500"
    assert item.remote_id == P1


@pytest.mark.asyncio
async def test_update_of_missing_remote_product_fails(sync_service, store, feed):
    store.items["A"] = make_stored("A", remote_id="gid://shopify/Product/999", price_keystone="1")
    feed.items = [make_item("A", price_keystone="2")]

    report = await sync_service.run_sync()

    item = store.items["A"]
    assert not report.results[0].success
    assert item.status == ItemStatus.UPDATE_FAILED
    assert "not found" in item.last_error
    assert item.price_keystone == "2"


@pytest.mark.asyncio
async def test_update_without_remote_id_fails(sync_service, store):
    result = await sync_service.update_item(ItemChange(stored=make_item("A"), feed=make_item("A", price_keystone="2")))

    assert not result.success
    assert result.steps[0].step == PipelineStep.REQUIRE_REMOTE_ID
    assert store.items["A"].status == ItemStatus.PUBLISH_FAILED


@pytest.mark.asyncio
async def test_update_fails_when_variants_missing_after_submit(sync_service, remote, store, feed):
    _seed(remote, store, make_stored("A", remote_id=P1, price_keystone="1"))
    remote.omit_variants_on_get = True
    feed.items = [make_item("A", price_keystone="2")]

    report = await sync_service.run_sync()

    assert not report.results[0].success
    assert store.items["A"].status == ItemStatus.UPDATE_FAILED
    assert report.results[0].steps[-1].step == PipelineStep.REFRESH_INVENTORY


@pytest.mark.asyncio
async def test_force_update_pushes_unchanged_items(sync_service, sync_options, remote, store, feed):
    sync_options.force_update = True
    _seed(remote, store, make_stored("A", remote_id=P1))
    feed.items = [make_item("A")]

    report = await sync_service.run_sync()

    assert report.count("update") == 1
    assert len(remote.calls_to("update_product")) == 1


"""
4. Delete path
"""

@pytest.mark.asyncio
async def test_failed_remote_delete_keeps_store_record(sync_service, store, feed, notifier):
    store.items["C"] = make_stored("C", remote_id="gid://shopify/Product/404")
    feed.items = [make_item("B")]

    report = await sync_service.run_sync()

    delete_result = report.results[0]
    assert delete_result.action == "delete"
    assert not delete_result.success
    assert "C" in store.items
    assert "Failed to delete C" in [a["subject"] for a in notifier.alerts]


@pytest.mark.asyncio
async def test_delete_of_never_published_item_is_local_only(sync_service, remote, store, feed):
    store.items["C"] = make_stored("C", remote_id=None, status=ItemStatus.PUBLISH_FAILED)
    feed.items = [make_item("B")]

    await sync_service.run_sync()

    assert "C" not in store.items
    assert remote.calls_to("delete_product") == []


"""
5. Step policy and helpers
"""

def test_step_policy_covers_every_step():
    assert set(STEP_POLICY) == set(PipelineStep)


def test_step_policy_fatality():
    assert STEP_POLICY[PipelineStep.CREATE_PRODUCT]
    assert STEP_POLICY[PipelineStep.REQUIRE_REMOTE_ID]
    assert not STEP_POLICY[PipelineStep.ADD_IMAGES]
    assert not STEP_POLICY[PipelineStep.PUBLISH_CHANNELS]


@pytest.mark.asyncio
async def test_incomplete_inventory_levels_are_skipped(sync_service, remote):
    levels = [
        RemoteInventoryLevel(inventory_item_id="I1", location_id=LOCATION_ID, available=1),
        RemoteInventoryLevel(inventory_item_id=None, location_id="L2", available=1),
    ]

    submitted = await sync_service._submit_levels(levels, "A")

    assert submitted == 1
    assert remote.calls_to("update_inventory_levels")[0][0] == [levels[0]]


@pytest.mark.asyncio
async def test_no_valid_inventory_levels_skips_step(sync_service, remote):
    with pytest.raises(StepSkipped):
        await sync_service._submit_levels([RemoteInventoryLevel(location_id="L1")], "A")
    assert remote.calls_to("update_inventory_levels") == []


@pytest.mark.asyncio
async def test_image_downloader_runs_before_create(sync_context, sync_service, feed, mocker):
    downloader = mocker.Mock()
    downloader.download_images = mocker.AsyncMock()
    sync_context.image_downloader = downloader
    feed.items = [make_item("B")]

    report = await sync_service.run_sync()

    downloader.download_images.assert_awaited_once()
    assert report.results[0].steps[0].step == PipelineStep.DOWNLOAD_IMAGES


@pytest.mark.asyncio
async def test_image_download_can_be_switched_off(sync_context, sync_options, sync_service, feed, mocker):
    downloader = mocker.Mock()
    downloader.download_images = mocker.AsyncMock()
    sync_context.image_downloader = downloader
    sync_options.skip_image_download = True
    feed.items = [make_item("B")]

    await sync_service.run_sync()

    downloader.download_images.assert_not_awaited()


@pytest.mark.asyncio
async def test_correct_remote_id_publishes_unpublished_item(sync_service, store):
    item = make_stored("A", remote_id=None, status=ItemStatus.PUBLISH_FAILED)

    await sync_service.correct_remote_id(item, P1)

    assert store.items["A"].remote_id == P1
    assert store.items["A"].status == ItemStatus.PUBLISHED


def test_report_to_dict():
    report = SyncRunReport(started_at=datetime(2026, 1, 1))
    report.results = [ItemSyncResult("A", "create"), ItemSyncResult("B", "update").fail("boom")]

    data = report.to_dict()

    assert data["created"] == 1
    assert data["updated"] == 0
    assert data["failures"] == [{"sku": "B", "action": "update", "message": "boom"}]
