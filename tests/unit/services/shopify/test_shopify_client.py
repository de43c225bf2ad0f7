# Shopify GraphQL client unit tests
import json

import httpx
import pytest

from feedsync.core.exceptions import PartialCreateError, RemoteTransportError, RemoteUserError, ShopifyAPIError
from feedsync.schemas.remote import Collect, RemoteInventoryLevel, RemoteProduct, RemoteVariant
from feedsync.services.shopify.client import ShopifyGraphQLClient


class GraphQLRecorder:
    """MockTransport handler answering queued responses and keeping the requests."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        response = self.responses.pop(0)
        if isinstance(response, httpx.Response):
            return response
        if isinstance(response, Exception):
            raise response
        return httpx.Response(200, json=response)


def _client(recorder: GraphQLRecorder) -> ShopifyGraphQLClient:
    return ShopifyGraphQLClient(
        shop_url="test-shop.myshopify.com",
        access_token="shpat_test",
        transport=httpx.MockTransport(recorder),
    )


"""
1. Transport and error mapping
"""

def test_client_requires_credentials():
    with pytest.raises(ValueError):
        ShopifyGraphQLClient(shop_url="", access_token="token")


@pytest.mark.asyncio
async def test_execute_returns_data():
    recorder = GraphQLRecorder({"data": {"shop": {"name": "Test"}}})
    client = _client(recorder)

    data = await client.execute("query { shop { name } }")

    assert data == {"shop": {"name": "Test"}}
    assert recorder.requests[0] == {"query": "query { shop { name } }"}
    await client.aclose()


@pytest.mark.asyncio
async def test_server_error_is_transport_error():
    client = _client(GraphQLRecorder(httpx.Response(503, text="unavailable")))
    with pytest.raises(RemoteTransportError):
        await client.execute("query { shop { name } }")


@pytest.mark.asyncio
async def test_client_error_is_api_error():
    client = _client(GraphQLRecorder(httpx.Response(403, text="forbidden")))
    with pytest.raises(ShopifyAPIError):
        await client.execute("query { shop { name } }")


@pytest.mark.asyncio
async def test_network_error_is_transport_error():
    client = _client(GraphQLRecorder(httpx.ConnectError("refused")))
    with pytest.raises(RemoteTransportError):
        await client.execute("query { shop { name } }")


@pytest.mark.asyncio
async def test_throttled_error_is_transport_error():
    client = _client(GraphQLRecorder({"errors": [{"message": "Throttled", "extensions": {"code": "THROTTLED"}}]}))
    with pytest.raises(RemoteTransportError):
        await client.execute("query { shop { name } }")


@pytest.mark.asyncio
async def test_graphql_errors_are_api_errors():
    client = _client(GraphQLRecorder({"errors": [{"message": "Field 'x' doesn't exist", "path": ["x"]}]}))
    with pytest.raises(ShopifyAPIError) as exc_info:
        await client.execute("query { x }")
    assert "Field 'x' doesn't exist" in str(exc_info.value)


@pytest.mark.asyncio
async def test_user_errors_raise_remote_user_error():
    recorder = GraphQLRecorder({"data": {"productDelete": {
        "deletedProductId": None,
        "userErrors": [{"field": ["id"], "message": "Product does not exist"}],
    }}})
    client = _client(recorder)

    with pytest.raises(RemoteUserError) as exc_info:
        await client.delete_product("gid://shopify/Product/1")

    assert exc_info.value.user_errors[0]["message"] == "Product does not exist"
    assert "id: Product does not exist" in str(exc_info.value)


@pytest.mark.asyncio
async def test_throttle_status_is_tracked_and_waited_on(mocker):
    sleep = mocker.patch("feedsync.services.shopify.client.asyncio.sleep", new=mocker.AsyncMock())
    recorder = GraphQLRecorder(
        {"data": {}, "extensions": {"cost": {"throttleStatus": {
            "maximumAvailable": 1000.0, "currentlyAvailable": 100.0, "restoreRate": 50.0,
        }}}},
        {"data": {}},
    )
    client = _client(recorder)

    await client.execute("query { a }")
    assert client.currently_available_points == 100.0
    await client.execute("query { b }")

    sleep.assert_awaited_once()


"""
2. Product operations
"""

PRODUCT_NODE = {
    "id": "gid://shopify/Product/1",
    "title": "Rolex Submariner",
    "handle": "rolex-submariner",
    "status": "ACTIVE",
    "descriptionHtml": "<p>Rolex</p>",
    "options": [{"id": "gid://shopify/ProductOption/1", "name": "Color", "position": 1, "values": ["Black"]}],
    "variants": {"nodes": [{
        "id": "gid://shopify/ProductVariant/1",
        "sku": "GW-1",
        "price": "11800.00",
        "selectedOptions": [{"name": "Color", "value": "Black"}],
        "inventoryItem": {
            "id": "gid://shopify/InventoryItem/1",
            "inventoryLevels": {"nodes": [{
                "location": {"id": "gid://shopify/Location/1"},
                "quantities": [{"name": "available", "quantity": 1}],
            }]},
        },
    }]},
    "images": {"nodes": [{"id": "gid://shopify/MediaImage/1", "url": "https://cdn/1.jpg", "altText": None}]},
    "metafields": {"nodes": [{"id": "gid://shopify/Metafield/1", "namespace": "custom", "key": "year",
                              "value": "2015", "type": "single_line_text_field"}]},
    "collections": {"nodes": [{"id": "gid://shopify/Collection/1"}]},
}


@pytest.mark.asyncio
async def test_get_product_parses_nested_resources():
    client = _client(GraphQLRecorder({"data": {"product": PRODUCT_NODE}}))

    product = await client.get_product("gid://shopify/Product/1")

    assert product.sku == "GW-1"
    variant = product.first_variant
    assert variant.inventory_item_id == "gid://shopify/InventoryItem/1"
    assert variant.inventory_levels[0].available == 1
    assert variant.inventory_levels[0].location_id == "gid://shopify/Location/1"
    assert product.options[0].values == ["Black"]
    assert product.images[0].src == "https://cdn/1.jpg"
    assert product.metafields[0].qualified_key == "custom.year"
    assert product.collection_ids == ["gid://shopify/Collection/1"]


@pytest.mark.asyncio
async def test_get_product_missing_returns_none():
    client = _client(GraphQLRecorder({"data": {"product": None}}))
    assert await client.get_product("gid://shopify/Product/404") is None


@pytest.mark.asyncio
async def test_summary_listing_leaves_unfetched_lists_unknown():
    node = {"id": "gid://shopify/Product/1", "title": "X", "variants": {"nodes": [{"id": "V", "sku": ""}]}}
    client = _client(GraphQLRecorder({"data": {"products": {"nodes": [node], "pageInfo": {"hasNextPage": False}}}}))

    products = await client.get_all_products()

    assert products[0].sku is None
    assert products[0].images is None
    assert products[0].options is None


@pytest.mark.asyncio
async def test_get_all_products_paginates():
    recorder = GraphQLRecorder(
        {"data": {"products": {"nodes": [{"id": "P1"}], "pageInfo": {"hasNextPage": True, "endCursor": "c1"}}}},
        {"data": {"products": {"nodes": [{"id": "P2"}], "pageInfo": {"hasNextPage": False}}}},
    )
    client = _client(recorder)

    products = await client.get_all_products()

    assert [p.id for p in products] == ["P1", "P2"]
    assert recorder.requests[1]["variables"]["after"] == "c1"


@pytest.mark.asyncio
async def test_create_product_sets_default_variant():
    recorder = GraphQLRecorder(
        {"data": {"productCreate": {"product": {
            "id": "gid://shopify/Product/9",
            "handle": "x",
            "variants": {"nodes": [{"id": "gid://shopify/ProductVariant/9", "sku": "", "inventoryItem": {"id": "I9"}}]},
        }, "userErrors": []}}},
        {"data": {"productVariantsBulkUpdate": {"productVariants": [], "userErrors": []}}},
    )
    client = _client(recorder)
    proposal = RemoteProduct(title="Rolex", variants=[RemoteVariant(sku="GW-9", price="100")])

    created = await client.create_product(proposal)

    assert created.id == "gid://shopify/Product/9"
    assert created.first_variant.sku == "GW-9"
    assert created.first_variant.inventory_item_id == "I9"
    bulk = recorder.requests[1]["variables"]
    assert bulk["variants"] == [{"id": "gid://shopify/ProductVariant/9", "price": "100",
                                 "inventoryItem": {"sku": "GW-9", "tracked": True}}]


@pytest.mark.asyncio
async def test_create_product_variant_failure_carries_product_id():
    recorder = GraphQLRecorder(
        {"data": {"productCreate": {"product": {
            "id": "gid://shopify/Product/900",
            "handle": "x",
            "variants": {"nodes": [{"id": "gid://shopify/ProductVariant/900", "sku": "", "inventoryItem": {"id": "I900"}}]},
        }, "userErrors": []}}},
        {"data": {"productVariantsBulkUpdate": {
            "productVariants": [],
            "userErrors": [{"field": ["variants", "0", "price"], "message": "Price is invalid"}],
        }}},
    )
    client = _client(recorder)
    proposal = RemoteProduct(title="Rolex", variants=[RemoteVariant(sku="GW-9", price="-1")])

    with pytest.raises(PartialCreateError) as exc_info:
        await client.create_product(proposal)

    assert exc_info.value.product_id == "gid://shopify/Product/900"
    assert "Price is invalid" in str(exc_info.value)
    assert len(recorder.requests) == 2


@pytest.mark.asyncio
async def test_publish_collection_uses_cached_publications():
    recorder = GraphQLRecorder(
        {"data": {"publications": {"nodes": [{"id": "Pub1"}, {"id": "Pub2"}]}}},
        {"data": {"publishablePublish": {"publishable": {"id": "C1"}, "userErrors": []}}},
        {"data": {"publishablePublish": {"publishable": {"id": "P1"}, "userErrors": []}}},
    )
    client = _client(recorder)

    await client.publish_collection("C1")
    await client.publish_to_all_channels("P1")

    assert len(recorder.requests) == 3
    assert recorder.requests[1]["variables"] == {
        "id": "C1",
        "input": [{"publicationId": "Pub1"}, {"publicationId": "Pub2"}],
    }
    assert recorder.requests[2]["variables"]["id"] == "P1"


@pytest.mark.asyncio
async def test_update_inventory_levels_payload():
    recorder = GraphQLRecorder({"data": {"inventorySetQuantities": {"userErrors": []}}})
    client = _client(recorder)

    await client.update_inventory_levels([RemoteInventoryLevel(inventory_item_id="I1", location_id="L1", available=0)])

    variables = recorder.requests[0]["variables"]["input"]
    assert variables["name"] == "available"
    assert variables["quantities"] == [{"inventoryItemId": "I1", "locationId": "L1", "quantity": 0}]


@pytest.mark.asyncio
async def test_add_collects_groups_by_collection():
    recorder = GraphQLRecorder(
        {"data": {"collectionAddProducts": {"userErrors": []}}},
        {"data": {"collectionAddProducts": {"userErrors": []}}},
    )
    client = _client(recorder)

    await client.add_collects([
        Collect(product_id="P1", collection_id="C1"),
        Collect(product_id="P2", collection_id="C1"),
        Collect(product_id="P1", collection_id="C2"),
    ])

    assert [r["variables"] for r in recorder.requests] == [
        {"id": "C1", "productIds": ["P1", "P2"]},
        {"id": "C2", "productIds": ["P1"]},
    ]


@pytest.mark.asyncio
async def test_delete_all_images_without_media_is_a_single_query():
    recorder = GraphQLRecorder({"data": {"product": {"media": {"nodes": []}}}})
    client = _client(recorder)

    await client.delete_all_images("P1")

    assert len(recorder.requests) == 1


@pytest.mark.asyncio
async def test_publication_ids_are_cached():
    recorder = GraphQLRecorder(
        {"data": {"publications": {"nodes": [{"id": "Pub1"}]}}},
        {"data": {"publishablePublish": {"userErrors": []}}},
        {"data": {"publishablePublish": {"userErrors": []}}},
    )
    client = _client(recorder)

    await client.publish_to_all_channels("P1")
    await client.publish_to_all_channels("P2")

    assert len(recorder.requests) == 3
    assert recorder.requests[2]["variables"] == {"id": "P2", "input": [{"publicationId": "Pub1"}]}
