import os

from pydantic import BaseModel, Field

# Names and paths shared with the service and analyzer images
SERVICE_IMAGE = "service"
KYTHE_IMAGE = "kythe"
SERVICE_CONTAINER = "shipping_container"
KYTHE_CONTAINER = "kythe"
WORKSPACE = "/shipshape-workspace"
LOGS_DIR = "/shipshape-output"
LOCAL_LOGS = "/tmp"

SERVICE_PORT = 10007
ANALYZER_PORT_BASE = 10010
ANALYZER_CONTAINER_PORT = 10010
RUN_ENDPOINT = "/ShipshapeService/Run"

LOCAL_TAG = "local"
DEFAULT_EVENT = "manual"
DEFAULT_REPO = "gcr.io/shipshape_releases"
DEFAULT_TAG = "prod"


class ShipshapeConfig(BaseModel):
    """Runtime settings for talking to docker and the analysis service."""

    # Image settings
    default_repo: str = Field(default_factory=lambda: os.environ.get("SHIPSHAPE_REPO", DEFAULT_REPO))
    default_tag: str = Field(default_factory=lambda: os.environ.get("SHIPSHAPE_TAG", DEFAULT_TAG))

    # Service settings
    service_address: str = Field(
        default_factory=lambda: os.environ.get("SHIPSHAPE_SERVICE_ADDRESS", f"localhost:{SERVICE_PORT}")
    )
    service_ready_timeout: float = Field(
        default_factory=lambda: float(os.environ.get("SHIPSHAPE_READY_TIMEOUT", "10")),
        description="Seconds to wait for the service to report healthy.",
    )
    health_poll_interval: float = 0.25

    # Container stop settings
    stop_grace_seconds: int = Field(default=0, description="Grace period before SIGKILL for service and analyzers.")
    kythe_stop_grace_seconds: int = 10

    # Timeout settings (seconds) for docker commands
    pull_timeout: int = 900
    run_timeout: int = 120
    kythe_timeout: int = 3600

    def get_full_image_name(self, repo: str, image: str, tag: str) -> str:
        """
        Build a fully-qualified image reference.

        Args:
            repo: Registry and path prefix (e.g. 'gcr.io/shipshape_releases'); may be empty
            image: Short image name (e.g. 'service')
            tag: Image tag

        Returns:
            Image reference in format {repo}/{image}:{tag}
        """
        name = f"{repo.rstrip('/')}/{image}" if repo else image
        return f"{name}:{tag}" if tag else name
