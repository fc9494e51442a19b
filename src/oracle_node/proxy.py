import requests

from oracle_node.config import ProxyConfig


def get_requests_proxy_url(proxy: ProxyConfig | None) -> str | None:
    if proxy is None or proxy.host == "":
        return None

    if "://" in proxy.host:
        scheme, host = proxy.host.split("://", 1)
    else:
        scheme, host = "", proxy.host

    proxy_str = ""
    if scheme != "":
        proxy_str += f"{scheme}://"

    if proxy.username != "":
        proxy_str += proxy.username
        if proxy.password != "":
            proxy_str += f":{proxy.password}"
        proxy_str += "@"

    proxy_str += f"{host}:{proxy.port}"
    return proxy_str


def make_session(proxy: ProxyConfig | None = None) -> requests.Session:
    """A requests session routed through the configured proxy, if any.

    Sessions are shared between pipeline threads, so the proxy is set on the
    session instead of through HTTP(S)_PROXY environment variables.
    """
    session = requests.Session()
    proxy_url = get_requests_proxy_url(proxy)
    if proxy_url is not None:
        session.proxies = {"http": proxy_url, "https": proxy_url}
    return session
