from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.database import get_db
from storefront.schemas.product import ProductResponse
from storefront.services.stock_ledger import get_product

router = APIRouter()


@router.get("/{product_id}", response_model=ProductResponse)
async def read_product(product_id: int, db: AsyncSession = Depends(get_db)) -> ProductResponse:
    return ProductResponse.model_validate(await get_product(db, product_id))
