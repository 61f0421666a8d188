"""
Remote Gateway - UI Bootstrap
===============================
Builds the document served at GET / from the same index.html the desktop
shell uses, adapted for a browser on another device.

Three independent transformations are applied to the base markup:

    override_title()        -> <title> marks the page as remote access
    inject_login_overlay()  -> remote-mode styles in <head>, plus a login
                               overlay right after <body> that blocks the UI
                               until a token is obtained
    inject_api_shim()       -> script before </body> that caches the token,
                               attaches it to every /api/ call and maps the
                               desktop "local API" onto the REST endpoints

The transformations are pure string functions. The snippets they insert
are rendered from Jinja2 templates in web/templates/.
"""

import html
import logging
import os
import re

from jinja2 import Environment, FileSystemLoader, select_autoescape


logger = logging.getLogger(__name__)

TOKEN_STORAGE_KEY = "gateway_token"

_TITLE_RE = re.compile(r"<title>.*?</title>", re.IGNORECASE | re.DOTALL)
_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
_BODY_OPEN_RE = re.compile(r"<body\b[^>]*>", re.IGNORECASE)
_BODY_CLOSE_RE = re.compile(r"</body\s*>", re.IGNORECASE)


# =============================================================================
# Pure transformations
# =============================================================================

def override_title(markup: str, title: str) -> str:
    """
    Replace the first <title> element. If there is none, one is added to
    the head.
    """
    tag = f"<title>{html.escape(title)}</title>"
    if _TITLE_RE.search(markup):
        return _TITLE_RE.sub(lambda _: tag, markup, count=1)
    return _insert_before(markup, _HEAD_CLOSE_RE, tag)


def inject_login_overlay(markup: str, styles: str, overlay: str) -> str:
    """
    Insert remote-mode styles before </head> and the login overlay right
    after the opening <body> tag.
    """
    markup = _insert_before(markup, _HEAD_CLOSE_RE, styles)

    match = _BODY_OPEN_RE.search(markup)
    if match is None:
        return overlay + markup
    return markup[:match.end()] + overlay + markup[match.end():]


def inject_api_shim(markup: str, script: str) -> str:
    """Insert the API shim script just before </body>."""
    matches = list(_BODY_CLOSE_RE.finditer(markup))
    if not matches:
        return markup + script
    last = matches[-1]
    return markup[:last.start()] + script + markup[last.start():]


def _insert_before(markup: str, pattern: re.Pattern, snippet: str) -> str:
    match = pattern.search(markup)
    if match is None:
        return snippet + markup
    return markup[:match.start()] + snippet + markup[match.start():]


# =============================================================================
# Renderer
# =============================================================================

class UIBootstrapper:
    """
    Renders the remote UI document.

    Attributes:
        ui_dir:    Directory containing the desktop index.html.
        title:     Page title shown in remote mode.
        token_key: localStorage key the client caches its token under.
    """

    def __init__(
        self,
        ui_dir: str,
        templates_dir: str,
        title: str = "Remote Access",
        token_key: str = TOKEN_STORAGE_KEY,
    ):
        self.ui_dir = ui_dir
        self.title = title
        self.token_key = token_key
        self.env = Environment(
            loader=FileSystemLoader(templates_dir),
            autoescape=select_autoescape(["html"]),
        )

    @property
    def index_path(self) -> str:
        return os.path.join(self.ui_dir, "index.html")

    def render_snippets(self) -> tuple[str, str, str]:
        """Render (styles, overlay, script) for the current settings."""
        context = {"title": self.title, "token_key": self.token_key}
        return (
            self.env.get_template("remote_styles.html").render(**context),
            self.env.get_template("login_overlay.html").render(**context),
            self.env.get_template("api_shim.html").render(**context),
        )

    def transform(self, base_markup: str) -> str:
        """Apply all three transformations to `base_markup`."""
        styles, overlay, script = self.render_snippets()
        markup = override_title(base_markup, self.title)
        markup = inject_login_overlay(markup, styles, overlay)
        return inject_api_shim(markup, script)

    def render(self) -> tuple[str, int]:
        """
        Build the remote document.

        Returns:
            (html, status_code). If the base document cannot be read, a
            generic error page is returned with status 500; the underlying
            error is only logged.
        """
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                base_markup = f.read()
        except OSError:
            logger.exception("Failed to read UI document %s", self.index_path)
            page = self.env.get_template("error.html").render(title=self.title)
            return page, 500

        return self.transform(base_markup), 200
