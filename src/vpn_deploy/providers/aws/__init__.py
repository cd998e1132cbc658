"""AWS provider: EC2 capability and nine-step pipeline."""

from .ec2 import Boto3Ec2Capability, Ec2Capability
from .pipeline import AwsPipeline

__all__ = ["Boto3Ec2Capability", "Ec2Capability", "AwsPipeline"]
