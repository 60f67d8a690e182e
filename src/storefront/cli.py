"""Command-line interface for storefront."""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from . import __version__
from .auth import AuthService
from .catalog import CatalogStore
from .config import get_settings
from .errors import StorefrontError
from .store import Database


def get_database(args: argparse.Namespace) -> Database:
    """Get the Database, honouring --data-dir."""
    return Database(Path(args.data_dir) if args.data_dir else None)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_create_admin(args: argparse.Namespace) -> int:
    """Create an admin account."""
    try:
        user = AuthService(get_database(args)).create_admin(args.name, args.email, args.password)
        print(f"Created admin: {user.email} ({user.id})")
        return 0

    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_add_collection(args: argparse.Namespace) -> int:
    """Add a collection."""
    try:
        with get_database(args).session() as session:
            collection = CatalogStore(session).add_collection(args.name, args.description)

        print(f"Added collection: {collection.name}")
        print(f"  ID: {collection.id}")
        print(f"  Slug: {collection.slug}")
        return 0

    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_add_product(args: argparse.Namespace) -> int:
    """Add a product to a collection."""
    try:
        tags = args.tags.split(",") if args.tags else []
        with get_database(args).session() as session:
            product = CatalogStore(session).add_product(
                name=args.name,
                price=args.price,
                collection_id=args.collection,
                description=args.desc or "",
                discount_price=args.discount_price,
                stock=args.stock,
                sku=args.sku,
                tags=tags,
            )

        print(f"Added product: {product.name}")
        print(f"  ID: {product.id}")
        print(f"  Price: {product.effective_price:.2f}  Stock: {product.stock}")
        return 0

    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_products(args: argparse.Namespace) -> int:
    """List products."""
    try:
        with get_database(args).session() as session:
            result = CatalogStore(session).list_products(
                limit=args.limit,
                collection_id=args.collection,
                is_active=None if args.all else True,
            )

        products = result.items
        if not products:
            print("No products found.")
            return 0

        if args.json:
            data = [p.to_dict() for p in products]
            print(json.dumps(data, indent=2))
        else:
            print(f"Products ({len(products)} of {result.total}):")
            for p in products:
                flag = "" if p.is_active else " [inactive]"
                print(f"  {p.id[:8]}  {p.name:<30} {p.effective_price:>9.2f}  stock={p.stock}{flag}")

        return 0

    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_stock(args: argparse.Namespace) -> int:
    """Adjust a product's stock by a signed amount."""
    try:
        with get_database(args).session() as session:
            product = CatalogStore(session).adjust_stock(args.product_id, args.delta)

        print(f"Stock for {product.name}: {product.stock}")
        return 0

    except StorefrontError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        if args.data_dir:
            # The app builds its Database from settings, so pass the override through the env
            os.environ["STOREFRONT_DATA_DIR"] = args.data_dir
            get_settings.cache_clear()
        settings = get_settings()
        configure_logging(settings.log_level)

        print("Starting storefront API server...")
        print(f"Data directory: {settings.data_dir}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "storefront.api:app" if args.reload else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=1,  # One process; the file lock serializes writes within it
            log_level=settings.log_level.lower(),
        )
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="storefront",
        description="Run and administer the storefront service.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--data-dir", help="Data directory (default: $STOREFRONT_DATA_DIR or ./data)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # create-admin
    admin_parser = subparsers.add_parser("create-admin", help="Create an admin account")
    admin_parser.add_argument("email", help="Admin email")
    admin_parser.add_argument("password", help="Admin password (min 6 characters)")
    admin_parser.add_argument("--name", "-n", default="Admin", help="Display name")

    # add-collection
    collection_parser = subparsers.add_parser("add-collection", help="Add a collection")
    collection_parser.add_argument("name", help="Collection name")
    collection_parser.add_argument("--description", "-d", default="", help="Description")

    # add-product
    product_parser = subparsers.add_parser("add-product", help="Add a product")
    product_parser.add_argument("name", help="Product name")
    product_parser.add_argument("--price", type=float, required=True, help="List price")
    product_parser.add_argument(
        "--collection", "-c", required=True, help="Collection ID"
    )
    product_parser.add_argument("--stock", "-s", type=int, default=0, help="Initial stock")
    product_parser.add_argument("--discount-price", type=float, help="Discounted price")
    product_parser.add_argument("--sku", help="Stock keeping unit")
    product_parser.add_argument("--tags", help="Comma-separated tags")
    product_parser.add_argument("--desc", help="Description")

    # products
    products_parser = subparsers.add_parser("products", help="List products")
    products_parser.add_argument("--collection", "-c", help="Filter by collection ID")
    products_parser.add_argument(
        "--limit", type=int, default=100, help="Maximum number of products (default: 100)"
    )
    products_parser.add_argument(
        "--all", "-a", action="store_true", help="Include inactive products"
    )
    products_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # stock
    stock_parser = subparsers.add_parser(
        "stock", help="Adjust a product's stock (negative to remove)"
    )
    stock_parser.add_argument("product_id", help="Product ID")
    stock_parser.add_argument("delta", type=int, help="Signed change, e.g. 10 or -3")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    commands = {
        "serve": cmd_serve,
        "create-admin": cmd_create_admin,
        "add-collection": cmd_add_collection,
        "add-product": cmd_add_product,
        "products": cmd_products,
        "stock": cmd_stock,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
