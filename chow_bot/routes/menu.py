"""
Public menu endpoint.

- GET /menu: categories and currently available items
"""

from fastapi import APIRouter, Depends

from ..dependencies import get_menu_catalog
from ..menu_catalog import MenuCatalog
from ..schemas.orders import MenuItemOut, MenuOut

menu_router = APIRouter(prefix="/menu", tags=["Menu"])


@menu_router.get("", response_model=MenuOut)
def get_menu(catalog: MenuCatalog = Depends(get_menu_catalog)) -> MenuOut:
    return MenuOut(
        categories=catalog.sorted_categories(),
        items=[
            MenuItemOut(
                id=item.id,
                name=item.name,
                description=item.description,
                price=item.price,
                category=item.category,
            )
            for item in catalog.list_items()
        ],
    )
