from __future__ import annotations

from n8n_cloudrun._logging import log

DEFAULT_BASE_IMAGE = "n8nio/n8n:latest"
EXPOSED_PORT = 5678

_TEMPLATE = """\
FROM {base_image}

USER root

RUN apk add --no-cache python3 py3-pip

COPY pyproject.toml README.md /opt/n8n-cloudrun/
COPY src /opt/n8n-cloudrun/src
RUN pip3 install --no-cache-dir --break-system-packages /opt/n8n-cloudrun

USER node

EXPOSE {port}

ENTRYPOINT ["n8n-cloudrun-start"]
"""


@log
def render_dockerfile(base_image: str = DEFAULT_BASE_IMAGE, port: int = EXPOSED_PORT) -> str:
    """
    Renders the container wrapper around the stock n8n image. The entrypoint is the port-adapter shim, which hands
    over to ``tini -- /docker-entrypoint.sh`` from the base image.
    """
    return _TEMPLATE.format(base_image=base_image, port=port)
