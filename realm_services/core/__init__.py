"""Service registry core: realm state tree, registrar, accessor and lifecycle hooks.

Kept free of FastAPI concerns; it only talks to the host through `Server` views and
the realm tree.
"""
