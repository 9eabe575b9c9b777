"""Read gateway: cache-through public reads and primary-only preview reads."""

from content_pipeline.gateway.read_gateway import ContentKey, ReadGateway, ReadMode
from content_pipeline.gateway.server import ReadGatewayApp, ReadGatewayWorker

__all__ = [
    "ContentKey",
    "ReadGateway",
    "ReadGatewayApp",
    "ReadGatewayWorker",
    "ReadMode",
]
