"""Asset upload pipelines."""
from chatrelay.services.gateway.uploads.image_hosting import ImageHostingClient
from chatrelay.services.gateway.uploads.juma import JumaAssetUploader, RequestAssetCache
from chatrelay.services.gateway.uploads.remote import fetch_remote_image_as_data_url, parse_data_url

__all__ = [
    "ImageHostingClient",
    "JumaAssetUploader",
    "RequestAssetCache",
    "fetch_remote_image_as_data_url",
    "parse_data_url",
]
