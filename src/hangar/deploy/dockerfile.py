"""Default build descriptor for staged agent bundles.

The template archive merged into each build context normally ships its
own Dockerfile; the rendered default is written first so a bundle
without one still builds.
"""

from datetime import datetime, timezone

from jinja2 import Template

# Jinja2 template for the default agent Dockerfile
AGENT_DOCKERFILE_TEMPLATE = """\
# Hangar Agent Container
# Auto-generated Dockerfile for {{ project_name }}
# Generated at: {{ created }}

FROM {{ base_image }}

LABEL org.opencontainers.image.title="{{ project_name }}"
LABEL org.opencontainers.image.version="{{ version }}"
LABEL org.opencontainers.image.created="{{ created }}"
LABEL com.hangar.managed="true"

WORKDIR /app

# Agent runtime and uploaded configuration
COPY . /app

RUN if [ -f package.json ]; then npm install --omit=dev; fi

ENV PORT="{{ port }}"
ENV NODE_ENV="production"

EXPOSE {{ port }}

CMD ["npm", "start"]
"""


def generate_dockerfile(
    project_name: str,
    version: str,
    *,
    port: int = 3000,
    base_image: str = "node:20-slim",
) -> str:
    """Render the default Dockerfile for an agent bundle.

    Args:
        project_name: Project name used for labels
        version: Project version used for labels
        port: Port the agent runtime listens on
        base_image: Base image for the runtime

    Returns:
        Dockerfile content
    """
    template = Template(AGENT_DOCKERFILE_TEMPLATE)
    created = datetime.now(timezone.utc).isoformat()

    return template.render(
        project_name=project_name,
        version=version,
        port=port,
        base_image=base_image,
        created=created,
    )
