"""Environment overrides that send a child process's own traffic through the proxy."""

from __future__ import annotations

from pathlib import Path


def proxy_env_vars(proxy_port: int, cert_path: Path | None) -> dict[str, str]:
    """Variables understood by Node, Electron, curl, Python and most HTTP clients."""
    proxy_url = f"http://127.0.0.1:{proxy_port}"
    env = {
        "HTTP_PROXY": proxy_url,
        "HTTPS_PROXY": proxy_url,
        "http_proxy": proxy_url,
        "https_proxy": proxy_url,
        # global-agent, used by Electron apps that don't honour HTTP_PROXY directly.
        "GLOBAL_AGENT_HTTP_PROXY": proxy_url,
    }
    if cert_path is not None:
        cert = str(cert_path)
        env.update(
            {
                "NODE_EXTRA_CA_CERTS": cert,
                "SSL_CERT_FILE": cert,
                "REQUESTS_CA_BUNDLE": cert,
                "CURL_CA_BUNDLE": cert,
            }
        )
    return env
