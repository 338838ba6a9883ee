"""Hot-deal storefront order and payment service."""
