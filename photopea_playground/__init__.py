from .server_extension import _jupyter_server_extension_points, load_jupyter_server_extension

__version__ = "0.1.0"

__all__ = [
    "_jupyter_server_extension_points",
    "load_jupyter_server_extension",
]
