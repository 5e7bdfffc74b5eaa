from jupyter_server.utils import url_path_join

from .config import load_config
from .handlers import PlaygroundWSHandler, PreviewHandler, SessionHandler, SessionsHandler
from .previews import PreviewRegistry
from .sessions import SessionStore

_SESSION_ID_PATTERN = r"(?P<session_id>[A-Za-z0-9_-]+)"
_PREVIEW_TOKEN_PATTERN = r"(?P<token>[A-Za-z0-9_-]+)"


def _jupyter_server_extension_points():
    return [{"module": "photopea_playground.server_extension"}]


def _load_jupyter_server_extension(server_app):
    web_app = server_app.web_app
    base_url = web_app.settings.get("base_url", "/")
    root_dir = getattr(server_app, "root_dir", "") or None

    config = load_config(root_dir)
    store = SessionStore(config.sessions_dir)
    previews = PreviewRegistry()

    api_route = url_path_join(base_url, "photopea", "api", "sessions")
    web_app.add_handlers(
        ".*$",
        [
            (api_route, SessionsHandler, {"store": store}),
            (url_path_join(api_route, _SESSION_ID_PATTERN), SessionHandler, {"store": store}),
            (
                url_path_join(base_url, "photopea", "previews", _PREVIEW_TOKEN_PATTERN),
                PreviewHandler,
                {"previews": previews},
            ),
            (
                url_path_join(base_url, "photopea", "ws"),
                PlaygroundWSHandler,
                {"store": store, "previews": previews, "config": config},
            ),
        ],
    )
    server_app.log.info("Photopea playground sessions stored in %s", store.base_dir)


# Backwards compatibility alias
load_jupyter_server_extension = _load_jupyter_server_extension
