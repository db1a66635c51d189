"""Flask API Blueprints package.

This package contains Flask Blueprint modules for each API domain:
- health: Health check and metadata endpoints
- auth: Customer and admin sessions, admin accounts
- categories / products / parameters: Catalog browsing and admin CRUD
- images: Product image upload, ordering and delivery
- specials: Discounted product bundles
- cart: Guest and customer carts
- orders: Checkout, order history and admin order editing
- projects: Showcase projects and custom design requests
- admin: Stats, audit history and data export
"""

# Import blueprints for convenient registration
from apps.flask_api.blueprints.admin import admin_bp
from apps.flask_api.blueprints.auth import auth_bp
from apps.flask_api.blueprints.cart import cart_bp
from apps.flask_api.blueprints.categories import categories_bp
from apps.flask_api.blueprints.health import health_bp
from apps.flask_api.blueprints.images import images_bp
from apps.flask_api.blueprints.orders import orders_bp
from apps.flask_api.blueprints.parameters import parameters_bp
from apps.flask_api.blueprints.products import products_bp
from apps.flask_api.blueprints.projects import projects_bp
from apps.flask_api.blueprints.specials import specials_bp

ALL_BLUEPRINTS = [
    health_bp,
    auth_bp,
    categories_bp,
    products_bp,
    parameters_bp,
    images_bp,
    specials_bp,
    cart_bp,
    orders_bp,
    projects_bp,
    admin_bp,
]

__all__ = [
    "ALL_BLUEPRINTS",
    "health_bp",
    "auth_bp",
    "categories_bp",
    "products_bp",
    "parameters_bp",
    "images_bp",
    "specials_bp",
    "cart_bp",
    "orders_bp",
    "projects_bp",
    "admin_bp",
]
