"""Dependencies shared by every connection worker."""

from dataclasses import dataclass
from typing import Optional

from frontdoor.bootstrap.config import HostingConfiguration
from frontdoor.lifecycle.state import ServerLifecycle
from frontdoor.pipeline.stages import RequestPipeline


@dataclass
class WorkerContext:
    """What a worker needs to serve one accepted connection."""

    pipeline: RequestPipeline
    config: HostingConfiguration
    scheme: str = "http"
    lifecycle: Optional[ServerLifecycle] = None
