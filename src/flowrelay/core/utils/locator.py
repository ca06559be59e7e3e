from urllib.parse import urljoin, urlparse


def resolve_locator(base_url: str, locator: str, rewrite_host: bool = True) -> str:
    """
    Turn a status-check locator from the remote engine into a URL we can GET.
    - Relative locators are joined onto the engine base URL.
    - Absolute locators keep their host unless `rewrite_host` is set; then
      path and query are rebased onto the engine base URL (engines behind a
      proxy often report an internal host in `executionUrl`).
    """
    base = base_url.rstrip("/") + "/"
    locator = locator.strip()
    parsed = urlparse(locator)

    if not parsed.scheme or not parsed.netloc:
        return urljoin(base, locator.lstrip("/"))

    if not rewrite_host:
        return locator

    relative = parsed.path.lstrip("/")
    if parsed.query:
        relative += f"?{parsed.query}"
    return urljoin(base, relative)


def resolve_trigger_url(base_url: str, trigger_path: str) -> str:
    """Absolute trigger paths are used as is; anything else hangs off the base URL."""
    parsed = urlparse(trigger_path)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return trigger_path
    return urljoin(base_url.rstrip("/") + "/", trigger_path.lstrip("/"))
