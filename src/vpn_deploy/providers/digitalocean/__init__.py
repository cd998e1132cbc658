"""DigitalOcean provider: API client and six-step pipeline."""

from .client import DigitalOceanApi, DigitalOceanClient
from .pipeline import DigitalOceanPipeline

__all__ = ["DigitalOceanApi", "DigitalOceanClient", "DigitalOceanPipeline"]
