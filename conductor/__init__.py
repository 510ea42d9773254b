"""Top-level package for the Conductor mode runtime.

Subpackages mirror the runtime layers: ``storage`` owns physical files,
``config`` resolves layered settings, ``runtime`` persists mode state and
``modes`` drives mode lifecycles through the registry.
"""

__version__ = "0.1.0"

__all__: list[str] = ["__version__"]
