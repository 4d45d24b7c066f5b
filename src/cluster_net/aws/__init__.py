"""AWS access: boto3 clients and the EC2 provider."""

from .client import create_boto_client
from .provider import Ec2Provider, translate_client_error

__all__ = ["Ec2Provider", "create_boto_client", "translate_client_error"]
