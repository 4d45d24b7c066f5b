"""Cluster network provisioner.

Plans non-overlapping VPC address space and provisions (and tears down) the
dependent AWS resources of an isolated cluster network.
"""

__version__ = "0.3.0"
