# feedsync/services/shopify/client.py
"""
Async Shopify Admin GraphQL client implementing ``RemotePlatformClient``.

Transport problems (timeouts, connection errors, 429/5xx, THROTTLED) raise
``RemoteTransportError``; rejected mutations raise ``RemoteUserError`` with the
``userErrors`` list; any other GraphQL error raises ``ShopifyAPIError``.
"""

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

import httpx

from feedsync.core.config import Settings
from feedsync.core.exceptions import (
    PartialCreateError,
    RemotePlatformError,
    RemoteTransportError,
    RemoteUserError,
    ShopifyAPIError,
)
from feedsync.integrations.base import RemotePlatformClient
from feedsync.schemas.remote import (
    Collect,
    RemoteCollection,
    RemoteImage,
    RemoteInventoryLevel,
    RemoteLocation,
    RemoteMetafield,
    RemoteOption,
    RemoteProduct,
    RemoteVariant,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 50

PRODUCT_FIELDS = """
    id
    title
    handle
    vendor
    productType
    status
    descriptionHtml
    options { id name position values }
    variants(first: 10) {
      nodes {
        id
        sku
        price
        selectedOptions { name value }
        inventoryItem {
          id
          inventoryLevels(first: 10) {
            nodes { location { id } quantities(names: ["available"]) { name quantity } }
          }
        }
      }
    }
    images(first: 50) { nodes { id url altText } }
    metafields(first: 50) { nodes { id namespace key value type } }
    collections(first: 50) { nodes { id } }
"""

# Lighter shape for the full catalog listing used by reconciliation
PRODUCT_SUMMARY_FIELDS = """
    id
    title
    handle
    status
    variants(first: 10) { nodes { id sku inventoryItem { id } } }
    images(first: 50) { nodes { id url } }
"""


def format_graphql_errors(errors: List[Dict[str, Any]]) -> str:
    message = "GraphQL query failed with errors:\n"
    for error in errors:
        message += f"- Message: {error.get('message', 'Unknown error')}, Path: {error.get('path', [])}\n"
    return message


class ShopifyGraphQLClient(RemotePlatformClient):
    """Shopify Admin API over GraphQL with cost-based throttling."""

    def __init__(
        self,
        shop_url: str,
        access_token: str,
        api_version: str = "2024-10",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        safety_buffer_percentage: float = 0.25,
    ):
        if not shop_url or not access_token:
            raise ValueError("SHOPIFY_SHOP_URL and SHOPIFY_ADMIN_API_ACCESS_TOKEN must be set")

        self.graphql_url = f"https://{shop_url}/admin/api/{api_version}/graphql.json"
        self._http = httpx.AsyncClient(
            headers={"X-Shopify-Access-Token": access_token, "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

        # Throttle status, refreshed from every response
        self.max_available_points = 1000.0
        self.currently_available_points = self.max_available_points
        self.restore_rate = 50.0
        self.safety_buffer_percentage = safety_buffer_percentage

        self._publication_ids: Optional[List[str]] = None
        logger.info(f"ShopifyGraphQLClient initialized for {shop_url} (API {api_version})")

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "ShopifyGraphQLClient":
        return cls(
            shop_url=settings.SHOPIFY_SHOP_URL,
            access_token=settings.SHOPIFY_ADMIN_API_ACCESS_TOKEN,
            api_version=settings.SHOPIFY_API_VERSION,
            timeout=settings.SHOPIFY_REQUEST_TIMEOUT,
            **kwargs,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Infrastructure
    # ------------------------------------------------------------------

    async def execute(self, query: str, variables: Optional[Dict[str, Any]] = None, estimated_cost: int = 10) -> Dict[str, Any]:
        """Run a GraphQL document and return its ``data``."""
        await self._wait_for_budget(estimated_cost)

        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        try:
            response = await self._http.post(self.graphql_url, json=payload)
        except httpx.TimeoutException as e:
            raise RemoteTransportError(f"Shopify request timed out: {e}") from e
        except httpx.RequestError as e:
            raise RemoteTransportError(f"Network error talking to Shopify: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            self.currently_available_points = 0
            raise RemoteTransportError(f"Shopify returned HTTP {response.status_code}: {response.text[:500]}")
        if response.status_code >= 400:
            raise ShopifyAPIError(f"Shopify returned HTTP {response.status_code}: {response.text[:500]}")

        try:
            body = response.json()
        except json.JSONDecodeError as e:
            raise ShopifyAPIError(f"Failed to decode Shopify response: {response.text[:500]}") from e

        self._update_throttle_status(body.get("extensions"))

        errors = body.get("errors")
        if errors:
            if any((err.get("extensions") or {}).get("code") == "THROTTLED" for err in errors):
                raise RemoteTransportError("Shopify throttled the request")
            raise ShopifyAPIError(format_graphql_errors(errors))

        return body.get("data") or {}

    async def _mutate(self, mutation: str, variables: Dict[str, Any], root: str, estimated_cost: int = 10,
                      errors_key: str = "userErrors") -> Dict[str, Any]:
        data = await self.execute(mutation, variables, estimated_cost)
        result = data.get(root) or {}
        user_errors = result.get(errors_key) or []
        if user_errors:
            raise RemoteUserError(f"{root} rejected", user_errors)
        return result

    def _update_throttle_status(self, extensions: Optional[Dict[str, Any]]) -> None:
        if not extensions or "cost" not in extensions:
            return
        throttle = extensions["cost"].get("throttleStatus") or {}
        self.max_available_points = float(throttle.get("maximumAvailable", self.max_available_points))
        self.currently_available_points = float(throttle.get("currentlyAvailable", self.currently_available_points))
        self.restore_rate = float(throttle.get("restoreRate", self.restore_rate))

    async def _wait_for_budget(self, estimated_cost: int) -> None:
        required = estimated_cost + self.max_available_points * self.safety_buffer_percentage
        if self.currently_available_points >= required:
            return
        points_needed = required - self.currently_available_points
        wait_time = (points_needed / self.restore_rate if self.restore_rate > 0 else 10) + 0.5
        logger.info(
            "Rate limit approaching: %.0f points available, need ~%.0f. Waiting %.2fs",
            self.currently_available_points, required, wait_time,
        )
        await asyncio.sleep(wait_time)
        self.currently_available_points = min(
            self.max_available_points, self.currently_available_points + self.restore_rate * wait_time
        )

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _nodes(connection: Optional[Dict[str, Any]]) -> Optional[List[Dict[str, Any]]]:
        if connection is None:
            return None
        return connection.get("nodes") or []

    def _parse_levels(self, inventory_item: Optional[Dict[str, Any]]) -> Optional[List[RemoteInventoryLevel]]:
        if not inventory_item:
            return None
        nodes = self._nodes(inventory_item.get("inventoryLevels"))
        if nodes is None:
            return None
        levels = []
        for node in nodes:
            available = next(
                (q.get("quantity") for q in node.get("quantities") or [] if q.get("name") == "available"),
                None,
            )
            levels.append(RemoteInventoryLevel(
                inventory_item_id=inventory_item.get("id"),
                location_id=(node.get("location") or {}).get("id"),
                available=available,
            ))
        return levels

    def _parse_product(self, node: Dict[str, Any]) -> RemoteProduct:
        variants = None
        variant_nodes = self._nodes(node.get("variants"))
        if variant_nodes is not None:
            variants = [
                RemoteVariant(
                    id=v.get("id"),
                    sku=v.get("sku") or None,
                    price=v.get("price"),
                    inventory_item_id=(v.get("inventoryItem") or {}).get("id"),
                    option_values=[o.get("value") for o in v.get("selectedOptions") or []],
                    inventory_levels=self._parse_levels(v.get("inventoryItem")),
                )
                for v in variant_nodes
            ]

        images = None
        image_nodes = self._nodes(node.get("images"))
        if image_nodes is not None:
            images = [
                RemoteImage(id=i.get("id"), product_id=node.get("id"), src=i.get("url"), position=idx, alt=i.get("altText"))
                for idx, i in enumerate(image_nodes, start=1)
            ]

        options = None
        if node.get("options") is not None:
            options = [
                RemoteOption(id=o.get("id"), name=o.get("name"), position=o.get("position"), values=o.get("values") or [])
                for o in node["options"]
            ]

        metafields = None
        metafield_nodes = self._nodes(node.get("metafields"))
        if metafield_nodes is not None:
            metafields = [RemoteMetafield(**m) for m in metafield_nodes]

        collection_nodes = self._nodes(node.get("collections"))
        return RemoteProduct(
            id=node.get("id"),
            title=node.get("title"),
            body_html=node.get("descriptionHtml"),
            vendor=node.get("vendor"),
            product_type=node.get("productType"),
            handle=node.get("handle"),
            status=node.get("status") or "ACTIVE",
            variants=variants,
            options=options,
            images=images,
            metafields=metafields,
            collection_ids=[c["id"] for c in collection_nodes] if collection_nodes is not None else None,
        )

    @staticmethod
    def _metafield_input(metafield: RemoteMetafield) -> Dict[str, Any]:
        data = {"namespace": metafield.namespace, "key": metafield.key, "value": metafield.value, "type": metafield.type}
        if metafield.id:
            data["id"] = metafield.id
        return data

    def _product_input(self, product: RemoteProduct) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "title": product.title,
            "descriptionHtml": product.body_html,
            "vendor": product.vendor,
            "productType": product.product_type,
            "status": product.status,
        }
        if product.id:
            data["id"] = product.id
        if product.metafields:
            data["metafields"] = [self._metafield_input(m) for m in product.metafields if m.value is not None]
        return data

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def create_product(self, proposal: RemoteProduct) -> RemoteProduct:
        mutation = """
        mutation productCreate($input: ProductInput!) {
          productCreate(input: $input) {
            product {
              id
              handle
              variants(first: 1) { nodes { id sku inventoryItem { id } } }
            }
            userErrors { field message }
          }
        }
        """
        result = await self._mutate(mutation, {"input": self._product_input(proposal)}, "productCreate", estimated_cost=50)
        product_node = result.get("product")
        if not product_node:
            raise ShopifyAPIError("productCreate returned no product")

        created = self._parse_product(product_node)
        default_variant = created.first_variant
        wanted = proposal.first_variant
        if default_variant is not None and wanted is not None:
            try:
                await self._update_variants(created.id, [wanted.model_copy(update={"id": default_variant.id})])
            except RemotePlatformError as e:
                raise PartialCreateError(f"Setting the default variant failed: {e}", created.id) from e
            default_variant.sku = wanted.sku
            default_variant.price = wanted.price
        logger.info("Created Shopify product %s (%s)", created.id, wanted.sku if wanted else proposal.title)
        return created

    async def get_product(self, product_id: str) -> Optional[RemoteProduct]:
        query = f"query getProduct($id: ID!) {{ product(id: $id) {{ {PRODUCT_FIELDS} }} }}"
        data = await self.execute(query, {"id": product_id}, estimated_cost=60)
        node = data.get("product")
        return self._parse_product(node) if node else None

    async def get_all_products(self) -> List[RemoteProduct]:
        query = f"""
        query listProducts($first: Int!, $after: String) {{
          products(first: $first, after: $after) {{
            nodes {{ {PRODUCT_SUMMARY_FIELDS} }}
            pageInfo {{ hasNextPage endCursor }}
          }}
        }}
        """
        products: List[RemoteProduct] = []
        cursor = None
        while True:
            data = await self.execute(query, {"first": PAGE_SIZE, "after": cursor}, estimated_cost=60)
            connection = data.get("products") or {}
            products.extend(self._parse_product(node) for node in connection.get("nodes") or [])
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                break
            cursor = page_info.get("endCursor")
        logger.info("Fetched %d products from Shopify", len(products))
        return products

    async def update_product(self, proposal: RemoteProduct) -> RemoteProduct:
        if not proposal.id:
            raise ValueError("update_product requires a product id")
        mutation = """
        mutation productUpdate($input: ProductInput!) {
          productUpdate(input: $input) {
            product { id }
            userErrors { field message }
          }
        }
        """
        await self._mutate(mutation, {"input": self._product_input(proposal)}, "productUpdate", estimated_cost=30)
        variants = [v for v in proposal.variants or [] if v.id]
        if variants:
            await self._update_variants(proposal.id, variants)
        return proposal

    async def _update_variants(self, product_id: str, variants: List[RemoteVariant]) -> None:
        mutation = """
        mutation productVariantsBulkUpdate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
          productVariantsBulkUpdate(productId: $productId, variants: $variants) {
            productVariants { id }
            userErrors { field message }
          }
        }
        """
        payload = [
            {"id": v.id, "price": v.price, "inventoryItem": {"sku": v.sku, "tracked": True}}
            for v in variants
        ]
        await self._mutate(mutation, {"productId": product_id, "variants": payload}, "productVariantsBulkUpdate")

    async def delete_product(self, product_id: str) -> None:
        mutation = """
        mutation productDelete($input: ProductDeleteInput!) {
          productDelete(input: $input) {
            deletedProductId
            userErrors { field message }
          }
        }
        """
        await self._mutate(mutation, {"input": {"id": product_id}}, "productDelete", estimated_cost=20)

    # ------------------------------------------------------------------
    # Sub-resources
    # ------------------------------------------------------------------

    async def add_options(self, product_id: str, options: List[RemoteOption]) -> List[RemoteOption]:
        mutation = """
        mutation productOptionsCreate($productId: ID!, $options: [OptionCreateInput!]!) {
          productOptionsCreate(productId: $productId, options: $options, variantStrategy: LEAVE_AS_IS) {
            product { options { id name position values } }
            userErrors { field message code }
          }
        }
        """
        payload = [
            {"name": o.name, "position": o.position, "values": [{"name": v} for v in o.values]}
            for o in options
        ]
        result = await self._mutate(mutation, {"productId": product_id, "options": payload}, "productOptionsCreate")
        nodes = (result.get("product") or {}).get("options") or []
        return [RemoteOption(id=o.get("id"), name=o.get("name"), position=o.get("position"), values=o.get("values") or []) for o in nodes]

    async def add_images(self, product_id: str, images: List[RemoteImage]) -> List[RemoteImage]:
        mutation = """
        mutation productCreateMedia($productId: ID!, $media: [CreateMediaInput!]!) {
          productCreateMedia(productId: $productId, media: $media) {
            media { id alt }
            mediaUserErrors { field message code }
          }
        }
        """
        payload = [{"originalSource": i.src, "alt": i.alt, "mediaContentType": "IMAGE"} for i in images]
        result = await self._mutate(
            mutation, {"productId": product_id, "media": payload}, "productCreateMedia",
            estimated_cost=10 + 5 * len(images), errors_key="mediaUserErrors",
        )
        created = result.get("media") or []
        return [
            image.model_copy(update={"id": node.get("id"), "product_id": product_id})
            for image, node in zip(images, created)
        ]

    async def delete_all_images(self, product_id: str) -> None:
        query = """
        query productMedia($id: ID!) {
          product(id: $id) { media(first: 100) { nodes { id } } }
        }
        """
        data = await self.execute(query, {"id": product_id})
        media_ids = [n["id"] for n in ((data.get("product") or {}).get("media") or {}).get("nodes") or []]
        if not media_ids:
            return
        mutation = """
        mutation productDeleteMedia($productId: ID!, $mediaIds: [ID!]!) {
          productDeleteMedia(productId: $productId, mediaIds: $mediaIds) {
            deletedMediaIds
            mediaUserErrors { field message }
          }
        }
        """
        await self._mutate(
            mutation, {"productId": product_id, "mediaIds": media_ids}, "productDeleteMedia",
            errors_key="mediaUserErrors",
        )

    async def get_inventory_levels(self, inventory_item_id: str) -> List[RemoteInventoryLevel]:
        query = """
        query inventoryLevels($id: ID!) {
          inventoryItem(id: $id) {
            id
            inventoryLevels(first: 50) {
              nodes { location { id } quantities(names: ["available"]) { name quantity } }
            }
          }
        }
        """
        data = await self.execute(query, {"id": inventory_item_id})
        return self._parse_levels(data.get("inventoryItem")) or []

    async def update_inventory_levels(self, levels: List[RemoteInventoryLevel]) -> None:
        mutation = """
        mutation inventorySetQuantities($input: InventorySetQuantitiesInput!) {
          inventorySetQuantities(input: $input) {
            inventoryAdjustmentGroup { id }
            userErrors { field message code }
          }
        }
        """
        variables = {
            "input": {
                "name": "available",
                "reason": "correction",
                "ignoreCompareQuantity": True,
                "quantities": [
                    {"inventoryItemId": l.inventory_item_id, "locationId": l.location_id, "quantity": l.available}
                    for l in levels
                ],
            }
        }
        await self._mutate(mutation, variables, "inventorySetQuantities")

    async def get_locations(self) -> List[RemoteLocation]:
        query = "query { locations(first: 50) { nodes { id name } } }"
        data = await self.execute(query)
        return [RemoteLocation(**n) for n in (data.get("locations") or {}).get("nodes") or []]

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    async def get_all_collections(self) -> List[RemoteCollection]:
        query = """
        query listCollections($first: Int!, $after: String) {
          collections(first: $first, after: $after) {
            nodes { id title }
            pageInfo { hasNextPage endCursor }
          }
        }
        """
        collections: List[RemoteCollection] = []
        cursor = None
        while True:
            data = await self.execute(query, {"first": 250, "after": cursor})
            connection = data.get("collections") or {}
            collections.extend(RemoteCollection(**n) for n in connection.get("nodes") or [])
            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return collections
            cursor = page_info.get("endCursor")

    async def create_collection(self, title: str) -> RemoteCollection:
        mutation = """
        mutation collectionCreate($input: CollectionInput!) {
          collectionCreate(input: $input) {
            collection { id title }
            userErrors { field message }
          }
        }
        """
        result = await self._mutate(mutation, {"input": {"title": title}}, "collectionCreate")
        return RemoteCollection(**result["collection"])

    async def add_collects(self, collects: List[Collect]) -> None:
        by_collection: Dict[str, List[str]] = defaultdict(list)
        for collect in collects:
            by_collection[collect.collection_id].append(collect.product_id)

        mutation = """
        mutation collectionAddProducts($id: ID!, $productIds: [ID!]!) {
          collectionAddProducts(id: $id, productIds: $productIds) {
            collection { id }
            userErrors { field message }
          }
        }
        """
        for collection_id, product_ids in by_collection.items():
            await self._mutate(mutation, {"id": collection_id, "productIds": product_ids}, "collectionAddProducts")

    async def delete_all_collects(self, product_id: str) -> None:
        query = "query productCollections($id: ID!) { product(id: $id) { collections(first: 100) { nodes { id } } } }"
        data = await self.execute(query, {"id": product_id})
        collection_ids = [n["id"] for n in ((data.get("product") or {}).get("collections") or {}).get("nodes") or []]

        mutation = """
        mutation collectionRemoveProducts($id: ID!, $productIds: [ID!]!) {
          collectionRemoveProducts(id: $id, productIds: $productIds) {
            job { id }
            userErrors { field message }
          }
        }
        """
        for collection_id in collection_ids:
            await self._mutate(mutation, {"id": collection_id, "productIds": [product_id]}, "collectionRemoveProducts")

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    async def _get_publication_ids(self) -> List[str]:
        if self._publication_ids is None:
            data = await self.execute("query { publications(first: 50) { nodes { id } } }")
            self._publication_ids = [n["id"] for n in (data.get("publications") or {}).get("nodes") or []]
        return self._publication_ids

    async def _publish(self, publishable_id: str) -> None:
        publication_ids = await self._get_publication_ids()
        if not publication_ids:
            logger.warning("No sales channels found; %s not published", publishable_id)
            return
        mutation = """
        mutation publishablePublish($id: ID!, $input: [PublicationInput!]!) {
          publishablePublish(id: $id, input: $input) {
            publishable { ... on Product { id } ... on Collection { id } }
            userErrors { field message }
          }
        }
        """
        variables = {"id": publishable_id, "input": [{"publicationId": p} for p in publication_ids]}
        await self._mutate(mutation, variables, "publishablePublish")

    async def publish_to_all_channels(self, product_id: str) -> None:
        await self._publish(product_id)

    async def publish_collection(self, collection_id: str) -> None:
        await self._publish(collection_id)
