import base64
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import requests

from errors import AuthorizationError, CatalogError, UploadError

logger = logging.getLogger("ShopifyClient")

DEFAULT_API_VERSION = "2024-10"
DEFAULT_TIMEOUT = 30
PRODUCT_IMAGE_GID_PREFIX = "gid://shopify/ProductImage/"

PRODUCTS_QUERY = """
query getProducts($cursor: String, $first: Int!, $imagesFirst: Int!) {
    products(first: $first, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
            id
            title
            images(first: $imagesFirst) {
                nodes { id url width height altText }
            }
        }
    }
}
"""


@dataclass(frozen=True)
class ShopCredentials:
    shop: Optional[str]
    access_token: Optional[str]

    @property
    def is_valid(self) -> bool:
        return bool(self.shop and self.access_token)

    def require(self):
        if not self.is_valid:
            raise AuthorizationError("Invalid session: shop domain and access token are required")


@dataclass(frozen=True)
class CatalogImage:
    id: str
    url: str
    width: Optional[int] = None
    height: Optional[int] = None
    alt_text: Optional[str] = None


@dataclass(frozen=True)
class CatalogProduct:
    id: str
    title: str
    images: List[CatalogImage] = field(default_factory=list)


@dataclass(frozen=True)
class CatalogPage:
    products: List[CatalogProduct]
    has_next_page: bool
    end_cursor: Optional[str]


def numeric_id(gid: str) -> str:
    """Trailing numeric part of a Shopify GID"""
    return str(gid).rstrip("/").split("/")[-1]


def _admin_headers(credentials: ShopCredentials) -> Dict[str, str]:
    return {
        "X-Shopify-Access-Token": credentials.access_token,
        "Content-Type": "application/json",
    }


class CatalogClient:
    """Pages the shop's products and their images over the Admin GraphQL API"""

    def __init__(
        self,
        credentials: ShopCredentials,
        api_version: str = DEFAULT_API_VERSION,
        page_size: int = 50,
        images_per_product: int = 20,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.credentials = credentials
        self.api_version = api_version
        self.page_size = page_size
        self.images_per_product = images_per_product
        self.timeout = timeout

    @property
    def graphql_url(self) -> str:
        return f"https://{self.credentials.shop}/admin/api/{self.api_version}/graphql.json"

    def fetch_products_page(self, cursor: Optional[str] = None) -> CatalogPage:
        self.credentials.require()
        variables = {
            "cursor": cursor,
            "first": self.page_size,
            "imagesFirst": self.images_per_product,
        }
        try:
            response = requests.post(
                self.graphql_url,
                json={"query": PRODUCTS_QUERY, "variables": variables},
                headers=_admin_headers(self.credentials),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise CatalogError(f"Catalog request failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthorizationError(f"Catalog request rejected: {response.status_code}")
        if response.status_code != 200:
            raise CatalogError(f"Catalog request failed: {response.status_code} - {response.text[:200]}")

        payload = response.json()
        if payload.get("errors"):
            raise CatalogError(f"Catalog query returned errors: {payload['errors']}")
        return self._parse_page(payload)

    def _parse_page(self, payload: Dict[str, Any]) -> CatalogPage:
        products_data = ((payload.get("data") or {}).get("products")) or {}
        page_info = products_data.get("pageInfo") or {}
        products = []
        for node in products_data.get("nodes") or []:
            images = [
                CatalogImage(
                    id=img["id"],
                    url=img["url"],
                    width=img.get("width"),
                    height=img.get("height"),
                    alt_text=img.get("altText"),
                )
                for img in ((node.get("images") or {}).get("nodes") or [])
            ]
            products.append(CatalogProduct(id=node["id"], title=node.get("title") or "", images=images))
        return CatalogPage(
            products=products,
            has_next_page=bool(page_info.get("hasNextPage")),
            end_cursor=page_info.get("endCursor"),
        )


class MutationClient:
    """Replaces product images over the Admin REST API.

    Shopify assigns a new image id on every attachment upload, so
    replace_image returns the new GID alongside the resolved source URL.
    """

    def __init__(self, api_version: str = DEFAULT_API_VERSION, timeout: float = DEFAULT_TIMEOUT):
        self.api_version = api_version
        self.timeout = timeout

    def image_url(self, credentials: ShopCredentials, product_id: str, image_id: str) -> str:
        return (
            f"https://{credentials.shop}/admin/api/{self.api_version}"
            f"/products/{numeric_id(product_id)}/images/{numeric_id(image_id)}.json"
        )

    def replace_image(
        self,
        credentials: ShopCredentials,
        product_id: str,
        image_id: str,
        data: bytes,
        filename: str,
    ) -> Tuple[str, Optional[str]]:
        """Upload new bytes for an image. Returns (new image GID, new src URL)."""
        body = {
            "image": {
                "id": int(numeric_id(image_id)),
                "attachment": base64.b64encode(data).decode("ascii"),
                "filename": filename,
            }
        }
        response = self._put(credentials, product_id, image_id, body, action="Upload")
        image = response.json().get("image") or {}
        new_id = image.get("id")
        if not new_id:
            raise UploadError("No image ID returned from upload", status_code=response.status_code)
        return f"{PRODUCT_IMAGE_GID_PREFIX}{new_id}", image.get("src")

    def restore_image(self, credentials: ShopCredentials, product_id: str, image_id: str, src_url: str) -> int:
        """Point an image back at its original source URL. Returns the HTTP status."""
        body = {"image": {"id": int(numeric_id(image_id)), "src": src_url}}
        response = self._put(credentials, product_id, image_id, body, action="Restore")
        return response.status_code

    def _put(self, credentials: ShopCredentials, product_id: str, image_id: str, body: Dict[str, Any], action: str):
        credentials.require()
        url = self.image_url(credentials, product_id, image_id)
        try:
            response = requests.put(url, json=body, headers=_admin_headers(credentials), timeout=self.timeout)
        except requests.RequestException as e:
            raise UploadError(f"{action} failed: {e}") from e

        if response.status_code in (401, 403):
            raise AuthorizationError(f"{action} rejected: {response.status_code}")
        if not response.ok:
            logger.error("%s failed: %s %s", action, response.status_code, response.text[:500])
            raise UploadError(f"{action} failed: {response.status_code}", status_code=response.status_code)
        return response
