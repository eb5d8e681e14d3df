from fastapi import APIRouter, Depends
from atelier.admin.routes import admin_carts_router, admin_orders_router, admin_sessions_router
from atelier.api import version_prefix
from atelier.auth.dependencies import require_admin
from atelier.auth.routes import auth_router
from atelier.cart.routes import carts_router
from atelier.common.routes import home_router
from atelier.orders.routes import orders_router
from atelier.products.routes import catalog_router, prods_admin_router, prods_public_router, stock_admin_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(auth_router, prefix="/auth", tags=["auth"])
public_routers.include_router(prods_public_router, prefix="/products", tags=["products-public"])
public_routers.include_router(catalog_router, tags=["catalog"])
public_routers.include_router(carts_router, prefix="/cart", tags=["cart"])
public_routers.include_router(orders_router, prefix="/orders", tags=["orders"])
public_routers.include_router(home_router, tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin", dependencies=[Depends(require_admin)])

admin_routers.include_router(admin_orders_router, prefix="/orders", tags=["orders-admin"])
admin_routers.include_router(prods_admin_router, prefix="/products", tags=["products-admin"])
admin_routers.include_router(stock_admin_router, prefix="/variations", tags=["stock-admin"])
admin_routers.include_router(admin_sessions_router, prefix="/sessions", tags=["sessions-admin"])
admin_routers.include_router(admin_carts_router, prefix="/carts", tags=["carts-admin"])
