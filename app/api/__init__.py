import importlib
import pkgutil


def include_routers(app, package_name, package_path):
    """Mount the `router` of every module in the API package"""
    for _, module_name, _ in pkgutil.iter_modules(package_path):
        module = importlib.import_module(f"app.{package_name}.{module_name}")
        router = getattr(module, "router", None)
        if router is not None:
            app.include_router(router)
