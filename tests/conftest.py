"""Shared fixtures for the image optimizer tests"""

from io import BytesIO
from unittest.mock import MagicMock

import pytest
from PIL import Image

from managers.record_store import RecordStore
from models.asset import Candidate
from shopify_client import CatalogImage, CatalogPage, CatalogProduct, ShopCredentials


def make_image_bytes(size=(64, 48), color="red", format="PNG", **save_kwargs) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, color=color).save(buf, format=format, **save_kwargs)
    return buf.getvalue()


def make_page(products, has_next_page=False, end_cursor=None) -> CatalogPage:
    """products: list of (product_id, title, [image_id, ...])"""
    return CatalogPage(
        products=[
            CatalogProduct(
                id=pid,
                title=title,
                images=[CatalogImage(id=iid, url=f"https://cdn.example/{iid.split('/')[-1]}.jpg", width=800, height=600)
                        for iid in image_ids],
            )
            for pid, title, image_ids in products
        ],
        has_next_page=has_next_page,
        end_cursor=end_cursor,
    )


def make_candidate(image_id="gid://shopify/ProductImage/1", **overrides) -> Candidate:
    values = {
        "id": image_id,
        "url": f"https://cdn.example/{image_id.split('/')[-1]}.jpg",
        "parent_id": "gid://shopify/Product/10",
        "parent_title": "Blue Shirt",
        "width": 800,
        "height": 600,
    }
    values.update(overrides)
    return Candidate(**values)


class FakeMCP:
    """Collects functions registered with @mcp.tool()"""

    def __init__(self):
        self.tools = {}

    def tool(self, *args, **kwargs):
        def decorator(fn):
            self.tools[kwargs.get("name") or fn.__name__] = fn
            return fn
        return decorator


@pytest.fixture
def record_store():
    return RecordStore.from_url("sqlite:///:memory:")


@pytest.fixture
def credentials():
    return ShopCredentials(shop="test-shop.myshopify.com", access_token="shpat_test")


@pytest.fixture
def catalog_client():
    client = MagicMock()
    client.fetch_products_page.return_value = make_page([])
    return client


@pytest.fixture
def fake_mcp():
    return FakeMCP()
