from storefront.schemas.base import CamelModel


class ProductResponse(CamelModel):
    id: int
    name: str
    description: str
    price: int
    stock: int
